"""Balance service tests — façade operations, concurrent scenarios, and ledger properties.

Invariants:
    - Scenario A: 500 / 100 x withdraw 5 → all succeed, balance 0, 100 rows
    - Scenario B: 100 / 10 x withdraw 20 → 5 succeed, 5 InsufficientFunds, balance 0
    - Scenario C: 1000 / 50 x deposit 50 sharing one key → 1 row, balance 1050
    - Scenario D: unknown account → AccountNotFound after exactly one attempt
    - Conservation, non-negativity, and gap-free version sequence hold after load

Design Decisions:
    - Real concurrency: asyncio.gather over separate sessions on a SQLite file,
      so version races and lock waits actually happen
"""

import asyncio
from decimal import Decimal

import pytest

from balance_engine.core.domain_types import TransactionType
from balance_engine.core.errors import (
    AccountAlreadyExistsError, AccountNotFoundError, ExhaustedRetriesError,
    InsufficientFundsError, InvalidAmountError, InvalidIdempotencyKeyError,
    VersionConflictError,
)
from balance_engine.core.retry_policy import RetryPolicy
from balance_engine.services.atomic_update import AtomicUpdateExecutor
from balance_engine.services.balance_service import BalanceService

DEPOSIT = TransactionType.DEPOSIT
WITHDRAW = TransactionType.WITHDRAW


async def _gather(*calls):
    return await asyncio.gather(*calls, return_exceptions=True)


def _assert_ledger_consistent(transactions, initial, final):
    """Conservation, per-row arithmetic, and gap-free versions starting at 2."""
    ordered = sorted(transactions, key=lambda t: t.version)
    assert [t.version for t in ordered] == list(range(2, len(ordered) + 2))
    for tx in ordered:
        assert tx.balance_after == tx.balance_before + tx.amount
        assert tx.balance_after >= 0
    for prev, nxt in zip(ordered, ordered[1:]):
        assert nxt.balance_before == prev.balance_after
    net = sum((t.balance_after - t.balance_before for t in ordered), Decimal("0"))
    assert net == final - initial


# --- create / read / list -----------------------------------------------------

async def test_create_account_starts_at_version_one(balance_service):
    account = await balance_service.create_account("A", Decimal("100.50"))
    assert account.account_id == "A"
    assert account.balance == Decimal("100.50")
    assert account.version == 1


async def test_create_account_mints_id_when_missing(balance_service):
    account = await balance_service.create_account(None, 0)
    assert len(account.account_id) == 36


async def test_create_duplicate_account_rejected(balance_service, seed_account):
    await seed_account("A", 1)
    with pytest.raises(AccountAlreadyExistsError):
        await balance_service.create_account("A", 5)


async def test_create_account_rejects_negative_balance(balance_service):
    with pytest.raises(InvalidAmountError):
        await balance_service.create_account("A", -1)


async def test_read_balance(balance_service, seed_account):
    await seed_account("A", 42)
    assert await balance_service.read_balance("A") == Decimal("42.00")


async def test_read_balance_unknown_account(balance_service):
    with pytest.raises(AccountNotFoundError):
        await balance_service.read_balance("nope")


async def test_list_accounts(balance_service, seed_account):
    await seed_account("A", 1)
    await seed_account("B", 2)
    ids = {a.account_id for a in await balance_service.list_accounts()}
    assert ids == {"A", "B"}


async def test_list_transactions_newest_first(balance_service, seed_account):
    await seed_account("A", 100)
    await balance_service.apply_delta("A", 10, DEPOSIT)
    await balance_service.apply_delta("A", 5, WITHDRAW)

    history = await balance_service.list_transactions("A")

    assert [t.version for t in history] == [3, 2]
    assert history[0].type == WITHDRAW
    assert history[0].amount == Decimal("-5.00")


async def test_list_transactions_unknown_account_is_empty(balance_service):
    assert await balance_service.list_transactions("nope") == []


# --- apply_delta --------------------------------------------------------------

async def test_version_increments_per_update(balance_service, seed_account):
    await seed_account("A", 100)
    await balance_service.apply_delta("A", 10, DEPOSIT)
    result = await balance_service.apply_delta("A", 5, WITHDRAW)
    assert result.version == 3
    assert result.balance_after == Decimal("105.00")
    assert result.was_retried is False


async def test_decimal_precision(balance_service, seed_account):
    await seed_account("A", "100.50")
    await balance_service.apply_delta("A", "0.25", WITHDRAW)
    assert await balance_service.read_balance("A") == Decimal("100.25")


async def test_withdraw_accepts_string_type(balance_service, seed_account):
    await seed_account("A", 10)
    result = await balance_service.apply_delta("A", 4, "withdraw")
    assert result.balance_after == Decimal("6.00")


async def test_zero_amount_rejected(balance_service, seed_account):
    await seed_account("A", 10)
    with pytest.raises(InvalidAmountError):
        await balance_service.apply_delta("A", 0, DEPOSIT)


async def test_overlong_idempotency_key_rejected(balance_service, seed_account):
    await seed_account("A", 10)
    with pytest.raises(InvalidIdempotencyKeyError):
        await balance_service.apply_delta("A", 1, DEPOSIT, "k" * 51)


async def test_sequential_replay_short_circuits(balance_service, seed_account):
    await seed_account("A", 10)
    first = await balance_service.apply_delta("A", 5, DEPOSIT, "same")
    second = await balance_service.apply_delta("A", 5, DEPOSIT, "same")
    assert second.transaction_id == first.transaction_id
    assert second.was_retried is False
    assert await balance_service.read_balance("A") == Decimal("15.00")
    assert len(await balance_service.list_transactions("A")) == 1


async def test_calls_without_key_are_not_deduplicated(balance_service, seed_account):
    await seed_account("A", 10)
    await balance_service.apply_delta("A", 5, DEPOSIT)
    await balance_service.apply_delta("A", 5, DEPOSIT)
    assert await balance_service.read_balance("A") == Decimal("20.00")


async def test_was_retried_reports_multiple_attempts(sessions, seed_account, monkeypatch):
    service = BalanceService(
        sessions, RetryPolicy(max_attempts=5, base_backoff_ms=0, max_backoff_ms=0, jitter_ms=0),
    )
    await seed_account("A", 10)
    original = AtomicUpdateExecutor.execute
    calls = []

    async def conflict_once(self, *args):
        calls.append(args)
        if len(calls) == 1:
            raise VersionConflictError("A", 1)
        return await original(self, *args)

    monkeypatch.setattr(AtomicUpdateExecutor, "execute", conflict_once)

    result = await service.apply_delta("A", 1, DEPOSIT)

    assert result.was_retried is True
    assert len(calls) == 2


async def test_persistent_conflict_surfaces_exhausted_retries(
    sessions, seed_account, monkeypatch,
):
    service = BalanceService(
        sessions, RetryPolicy(max_attempts=4, base_backoff_ms=0, max_backoff_ms=0, jitter_ms=0),
    )
    await seed_account("A", 10)

    async def always_conflict(self, account_id, *args):
        raise VersionConflictError(account_id, 1)

    monkeypatch.setattr(AtomicUpdateExecutor, "execute", always_conflict)

    with pytest.raises(ExhaustedRetriesError) as exc_info:
        await service.apply_delta("A", 1, DEPOSIT)
    assert isinstance(exc_info.value.__cause__, VersionConflictError)
    assert exc_info.value.context.account_id == "A"


# --- Scenarios ----------------------------------------------------------------

async def test_scenario_a_concurrent_withdrawals_drain_exactly(
    balance_service, seed_account,
):
    await seed_account("A", 500)

    results = await _gather(*[
        balance_service.apply_delta("A", 5, WITHDRAW) for _ in range(100)
    ])

    failures = [r for r in results if isinstance(r, BaseException)]
    assert failures == []
    assert await balance_service.read_balance("A") == Decimal("0")
    history = await balance_service.list_transactions("A")
    assert len(history) == 100
    _assert_ledger_consistent(history, Decimal("500"), Decimal("0"))
    assert sorted(r.version for r in results) == list(range(2, 102))


async def test_scenario_b_overdraft_attempts_rejected(balance_service, seed_account):
    await seed_account("B", 100)

    results = await _gather(*[
        balance_service.apply_delta("B", 20, WITHDRAW) for _ in range(10)
    ])

    successes = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, InsufficientFundsError)]
    assert len(successes) == 5
    assert len(rejected) == 5
    assert await balance_service.read_balance("B") == Decimal("0")
    history = await balance_service.list_transactions("B")
    assert len(history) == 5
    _assert_ledger_consistent(history, Decimal("100"), Decimal("0"))


async def test_scenario_c_shared_key_applies_once(balance_service, seed_account):
    await seed_account("C", 1000)

    results = await _gather(*[
        balance_service.apply_delta("C", 50, DEPOSIT, "K") for _ in range(50)
    ])

    assert all(not isinstance(r, BaseException) for r in results)
    assert len({r.transaction_id for r in results}) == 1
    assert {r.balance_after for r in results} == {Decimal("1050.00")}
    assert await balance_service.read_balance("C") == Decimal("1050.00")
    history = await balance_service.list_transactions("C")
    assert len(history) == 1
    assert history[0].idempotency_key == "K"


async def test_scenario_d_unknown_account_single_attempt(
    balance_service, monkeypatch,
):
    original = AtomicUpdateExecutor.execute
    attempts = []

    async def counting(self, *args):
        attempts.append(args)
        return await original(self, *args)

    monkeypatch.setattr(AtomicUpdateExecutor, "execute", counting)

    with pytest.raises(AccountNotFoundError):
        await balance_service.apply_delta("missing", 10, DEPOSIT)
    assert len(attempts) == 1


# --- Properties under mixed load ----------------------------------------------

async def test_mixed_load_preserves_invariants(balance_service, seed_account):
    await seed_account("M", 1000)
    ops = [(10, DEPOSIT)] * 50 + [(15, WITHDRAW)] * 50

    results = await _gather(*[
        balance_service.apply_delta("M", amount, tx_type) for amount, tx_type in ops
    ])

    assert all(not isinstance(r, BaseException) for r in results)
    final = await balance_service.read_balance("M")
    assert final == Decimal("1000") + 50 * 10 - 50 * 15
    history = await balance_service.list_transactions("M")
    assert len(history) == 100
    _assert_ledger_consistent(history, Decimal("1000"), final)


async def test_accounts_do_not_interfere(balance_service, seed_account):
    await seed_account("X", 100)
    await seed_account("Y", 100)

    await _gather(*(
        [balance_service.apply_delta("X", 1, WITHDRAW) for _ in range(20)]
        + [balance_service.apply_delta("Y", 2, DEPOSIT) for _ in range(20)]
    ))

    assert await balance_service.read_balance("X") == Decimal("80.00")
    assert await balance_service.read_balance("Y") == Decimal("140.00")


async def test_mixed_keys_and_duplicates_apply_once_per_key(
    balance_service, seed_account,
):
    await seed_account("I", 0)
    keys = [f"dep-{n}" for n in range(10)]

    await _gather(*[
        balance_service.apply_delta("I", 1, DEPOSIT, key)
        for key in keys for _ in range(3)
    ])

    assert await balance_service.read_balance("I") == Decimal("10.00")
    history = await balance_service.list_transactions("I")
    assert sorted(t.idempotency_key for t in history) == sorted(keys)

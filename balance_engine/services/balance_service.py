"""Balance Service — façade over idempotency, conflict retries, and the atomic executor.

Invariants:
    - apply_delta: idempotency hit short-circuits before any write (was_retried=False)
    - apply_delta: withdraw is always a negative delta, deposit always positive
    - apply_delta: the executor only ever runs under the conflict retry coordinator
    - VersionConflict never escapes; exhaustion surfaces as ExhaustedRetriesError
    - No lock of any kind is held here; concurrent calls share only the store

Design Decisions:
    - One service instance can be shared by any number of concurrent callers:
      it keeps no per-call state, each attempt opens its own session
    - list_transactions on an unknown account returns [] (read-only, nothing to protect)
"""

import logging
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from balance_engine.core.domain_types import (
    AccountId, BalanceUpdate, TransactionType, signed_delta, to_amount,
)
from balance_engine.core.errors import (
    AccountAlreadyExistsError, AccountNotFoundError, ErrorContext,
    InvalidAmountError, InvalidIdempotencyKeyError,
)
from balance_engine.core.repository_protocols import SessionFactory
from balance_engine.core.retry_policy import RetryPolicy
from balance_engine.models.account import Account
from balance_engine.models.transaction import Transaction
from balance_engine.services.atomic_update import AtomicUpdateExecutor
from balance_engine.services.conflict_retry import ConflictRetryCoordinator
from balance_engine.services.idempotency import IdempotencyResolver

logger = logging.getLogger(__name__)


class BalanceService:
    """Accounts, balances, and concurrent-safe balance mutations."""

    def __init__(
        self,
        sessions: SessionFactory,
        retry_policy: RetryPolicy | None = None,
        coordinator: ConflictRetryCoordinator | None = None,
    ):
        self._sessions = sessions
        self.idempotency = IdempotencyResolver(sessions)
        self.executor = AtomicUpdateExecutor(sessions, self.idempotency)
        self.coordinator = coordinator or ConflictRetryCoordinator(retry_policy)

    async def create_account(
        self,
        account_id: AccountId | None = None,
        initial_balance: Decimal | int | float | str = 0,
    ) -> Account:
        balance = to_amount(initial_balance)
        if balance < 0:
            raise InvalidAmountError("Initial balance cannot be negative")
        account_id = account_id or AccountId(str(uuid4()))

        logger.info(
            f"Creating account {account_id} with balance {balance}",
            extra={"account_id": account_id},
        )
        account = Account(account_id=account_id, balance=balance, version=1)
        async with self._sessions() as db:
            db.add(account)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise AccountAlreadyExistsError(account_id)
        return account

    async def list_accounts(self) -> list[Account]:
        async with self._sessions() as db:
            result = await db.execute(
                select(Account).order_by(Account.created_at, Account.account_id),
            )
            return list(result.scalars().all())

    async def read_balance(self, account_id: AccountId) -> Decimal:
        async with self._sessions() as db:
            result = await db.execute(
                select(Account.balance).where(Account.account_id == account_id),
            )
            balance = result.scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError(account_id)
        return balance

    async def apply_delta(
        self,
        account_id: AccountId,
        amount: Decimal | int | float | str,
        tx_type: TransactionType,
        idempotency_key: str | None = None,
    ) -> BalanceUpdate:
        """Deposit or withdraw `amount`, exactly once per idempotency key."""
        tx_type = TransactionType(tx_type)
        delta = signed_delta(to_amount(amount), tx_type)
        if idempotency_key is not None and not self.idempotency.is_valid_key(
            idempotency_key,
        ):
            raise InvalidIdempotencyKeyError(
                ErrorContext(account_id=account_id),
            )
        key = self.idempotency.ensure_key(idempotency_key)

        logger.info(
            f"Update balance request: {tx_type.value} {abs(delta)}",
            extra={"account_id": account_id, "idempotency_key": key},
        )

        prior = await self.idempotency.lookup(key)
        if prior is not None:
            logger.info(
                "Idempotent replay",
                extra={
                    "account_id": account_id,
                    "idempotency_key": key,
                    "transaction_id": prior.transaction_id,
                },
            )
            return BalanceUpdate.from_mutation(prior, was_retried=False)

        async def attempt(_: int):
            return await self.executor.execute(account_id, delta, tx_type, key)

        outcome = await self.coordinator.run(
            attempt,
            context=ErrorContext(account_id=account_id, idempotency_key=key),
        )
        return BalanceUpdate.from_mutation(
            outcome.value, was_retried=outcome.was_retried,
        )

    async def list_transactions(self, account_id: AccountId) -> list[Transaction]:
        """Audit trail for an account, newest (highest version) first."""
        async with self._sessions() as db:
            result = await db.execute(
                select(Transaction)
                .where(Transaction.account_id == account_id)
                .order_by(Transaction.version.desc()),
            )
            return list(result.scalars().all())

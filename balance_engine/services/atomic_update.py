"""Atomic Update Executor — one conditional balance mutation plus its audit row, all or nothing.

Invariants:
    - No lock is ever taken on the account row; the version check in the UPDATE arbitrates
    - Guard conditions (account, expected version, balance + delta >= 0) live in the
      UPDATE's WHERE clause, never in application code between read and write
    - The Transaction insert commits in the same database transaction as the UPDATE
    - balance_before/balance_after/version on the audit row come from the UPDATE's RETURNING
    - Zero rows touched: InsufficientFunds if the snapshot cannot absorb delta,
      otherwise VersionConflict
    - A recorded idempotency key short-circuits to the stored result (pure read)

Design Decisions:
    - PostgreSQL runs UPDATE ... RETURNING and INSERT ... SELECT as one statement
      (data-modifying CTE), one round trip per attempt
    - Other dialects (SQLite in tests) run UPDATE ... RETURNING then INSERT inside one
      transaction; same guards, one extra statement
    - Each attempt opens its own session: attempts share nothing but the store
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Integer, Numeric, String, bindparam, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from balance_engine.core.domain_types import (
    AccountId, BalanceMutation, IdempotencyKey, TransactionType,
)
from balance_engine.core.errors import (
    AccountNotFoundError, ErrorContext, InsufficientFundsError, VersionConflictError,
)
from balance_engine.core.repository_protocols import SessionFactory
from balance_engine.models.account import Account
from balance_engine.models.transaction import Transaction
from balance_engine.services.idempotency import IdempotencyResolver

logger = logging.getLogger(__name__)

_MONEY = Numeric(18, 2)

_COMBINED_MUTATION = text(
    """
    WITH updated AS (
        UPDATE accounts
           SET balance = balance + :delta,
               version = version + 1,
               updated_at = now()
         WHERE account_id = :account_id
           AND version = :expected_version
           AND balance + :delta >= 0
     RETURNING account_id, balance, version
    )
    INSERT INTO transactions (
        account_id, amount, type, balance_before, balance_after,
        version, idempotency_key, created_at
    )
    SELECT account_id, :delta, CAST(:tx_type AS transaction_type),
           balance - :delta, balance, version, :idempotency_key, now()
      FROM updated
    RETURNING id, balance_after, version
    """
).bindparams(
    bindparam("delta", type_=_MONEY),
    bindparam("account_id", type_=String(50)),
    bindparam("expected_version", type_=Integer),
    bindparam("tx_type", type_=String(16)),
    bindparam("idempotency_key", type_=String(50)),
).columns(id=Integer, balance_after=_MONEY, version=Integer)


class AtomicUpdateExecutor:
    """Runs exactly one optimistic mutation attempt against the store."""

    def __init__(self, sessions: SessionFactory, idempotency: IdempotencyResolver):
        self._sessions = sessions
        self._idempotency = idempotency

    async def execute(
        self,
        account_id: AccountId,
        delta: Decimal,
        tx_type: TransactionType,
        idempotency_key: IdempotencyKey,
    ) -> BalanceMutation:
        async with self._sessions() as db:
            prior = await self._idempotency.lookup(idempotency_key, db)
            if prior is not None:
                return prior

            expected_version, balance_before = await self._read_snapshot(
                db, account_id,
            )
            try:
                mutation = await self._apply(
                    db, account_id, delta, tx_type,
                    idempotency_key, expected_version,
                )
                if mutation is not None:
                    await db.commit()
            except IntegrityError:
                await db.rollback()
                prior = await self._idempotency.resolve_duplicate(
                    idempotency_key, db,
                )
                if prior is None:
                    raise
                return prior

            if mutation is None:
                await db.rollback()
                ctx = ErrorContext(idempotency_key=idempotency_key)
                if balance_before + delta < 0:
                    raise InsufficientFundsError(
                        account_id, balance_before, delta, context=ctx,
                    )
                raise VersionConflictError(
                    account_id, expected_version, context=ctx,
                )

        logger.info(
            "Balance mutation committed",
            extra={
                "account_id": account_id,
                "transaction_id": mutation.transaction_id,
                "version": mutation.version,
            },
        )
        return mutation

    async def _read_snapshot(
        self, db: AsyncSession, account_id: AccountId,
    ) -> tuple[int, Decimal]:
        """Plain read of (version, balance); no FOR UPDATE."""
        result = await db.execute(
            select(Account.version, Account.balance).where(
                Account.account_id == account_id,
            ),
        )
        row = result.one_or_none()
        if row is None:
            raise AccountNotFoundError(account_id)
        return row.version, row.balance

    async def _apply(
        self,
        db: AsyncSession,
        account_id: AccountId,
        delta: Decimal,
        tx_type: TransactionType,
        idempotency_key: IdempotencyKey,
        expected_version: int,
    ) -> BalanceMutation | None:
        if db.get_bind().dialect.name == "postgresql":
            return await self._apply_combined(
                db, account_id, delta, tx_type, idempotency_key, expected_version,
            )
        return await self._apply_in_transaction(
            db, account_id, delta, tx_type, idempotency_key, expected_version,
        )

    async def _apply_combined(
        self,
        db: AsyncSession,
        account_id: AccountId,
        delta: Decimal,
        tx_type: TransactionType,
        idempotency_key: IdempotencyKey,
        expected_version: int,
    ) -> BalanceMutation | None:
        result = await db.execute(
            _COMBINED_MUTATION,
            {
                "delta": delta,
                "account_id": account_id,
                "expected_version": expected_version,
                "tx_type": tx_type.value,
                "idempotency_key": idempotency_key,
            },
        )
        row = result.one_or_none()
        if row is None:
            return None
        return BalanceMutation(
            transaction_id=row.id,
            balance_after=row.balance_after,
            version=row.version,
        )

    async def _apply_in_transaction(
        self,
        db: AsyncSession,
        account_id: AccountId,
        delta: Decimal,
        tx_type: TransactionType,
        idempotency_key: IdempotencyKey,
        expected_version: int,
    ) -> BalanceMutation | None:
        result = await db.execute(
            update(Account)
            .where(
                Account.account_id == account_id,
                Account.version == expected_version,
                Account.balance + delta >= 0,
            )
            .values(
                balance=Account.balance + delta,
                version=Account.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(Account.balance, Account.version)
            .execution_options(synchronize_session=False),
        )
        row = result.one_or_none()
        if row is None:
            return None

        entry = Transaction(
            account_id=account_id,
            amount=delta,
            type=tx_type,
            balance_before=row.balance - delta,
            balance_after=row.balance,
            version=row.version,
            idempotency_key=idempotency_key,
        )
        db.add(entry)
        await db.flush()
        return BalanceMutation(
            transaction_id=entry.id,
            balance_after=entry.balance_after,
            version=entry.version,
        )

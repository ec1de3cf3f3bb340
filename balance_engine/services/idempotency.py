"""Idempotency Resolver — mints request tokens and replays results already recorded for them.

Invariants:
    - A key maps to at most one Transaction row (UNIQUE in storage)
    - lookup() is a pure read; it never writes
    - Losing a concurrent first-insert race is not an error: the winner's row is returned

Design Decisions:
    - Callers without a key get a fresh UUID4, so uncorrelated calls are never deduplicated
    - Methods accept an optional open session so the executor can check and write
      in one workflow; standalone calls open their own session
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from balance_engine.core.domain_types import (
    MAX_KEY_LENGTH, BalanceMutation, IdempotencyKey,
)
from balance_engine.core.repository_protocols import SessionFactory
from balance_engine.models.transaction import Transaction

logger = logging.getLogger(__name__)


class IdempotencyResolver:
    """Looks up and recovers results recorded under an idempotency key."""

    def __init__(self, sessions: SessionFactory):
        self._sessions = sessions

    @staticmethod
    def ensure_key(key: str | None = None) -> IdempotencyKey:
        return IdempotencyKey(key or str(uuid4()))

    @staticmethod
    def is_valid_key(key: object) -> bool:
        return isinstance(key, str) and 0 < len(key) <= MAX_KEY_LENGTH

    async def lookup(
        self, key: IdempotencyKey, db: AsyncSession | None = None,
    ) -> BalanceMutation | None:
        """Return the result stored for `key`, or None if it was never used."""
        async with self._use(db) as session:
            result = await session.execute(
                select(
                    Transaction.id, Transaction.balance_after, Transaction.version,
                ).where(Transaction.idempotency_key == key),
            )
            row = result.one_or_none()
        if row is None:
            return None
        return BalanceMutation(
            transaction_id=row.id,
            balance_after=row.balance_after,
            version=row.version,
        )

    async def resolve_duplicate(
        self, key: IdempotencyKey, db: AsyncSession | None = None,
    ) -> BalanceMutation | None:
        """Re-read after a uniqueness violation on `key`.

        The caller must already have rolled back its own write. None means the
        violation was not caused by this key and should be surfaced.
        """
        prior = await self.lookup(key, db)
        if prior is not None:
            logger.info(
                "Idempotency race lost, returning recorded result",
                extra={
                    "idempotency_key": key,
                    "transaction_id": prior.transaction_id,
                },
            )
        return prior

    @asynccontextmanager
    async def _use(
        self, db: AsyncSession | None,
    ) -> AsyncGenerator[AsyncSession, None]:
        if db is not None:
            yield db
            return
        async with self._sessions() as session:
            yield session

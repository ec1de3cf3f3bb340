"""Transaction ORM — immutable audit record of one committed balance mutation.

Invariants:
    - balance_after == balance_before + amount
    - version equals the account version right after this mutation
    - (account_id, version) unique: no repeated versions per account
    - idempotency_key unique when present: at most one row per key

Design Decisions:
    - Enum stored by value (`deposit`/`withdraw`) as native `transaction_type` on PostgreSQL
    - Integer autoincrement id: transaction ids are returned to callers as ints
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DateTime, Enum, ForeignKey, Integer, Numeric, String, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from balance_engine.core.domain_types import TransactionType
from balance_engine.db.base import Base


transaction_type_enum = Enum(
    TransactionType,
    name="transaction_type",
    values_callable=lambda members: [m.value for m in members],
)


class Transaction(Base):
    """Append-only ledger entry for an account."""
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", name="uq_transactions_idempotency_key",
        ),
        UniqueConstraint(
            "account_id", "version", name="uq_transactions_account_version",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("accounts.account_id"), nullable=False, index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        transaction_type_enum, nullable=False,
    )
    balance_before: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(50), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

"""Account ORM — the balance row guarded by an optimistic-lock version.

Invariants:
    - account_id is the primary key (<= 50 chars)
    - balance >= 0 enforced by a CHECK constraint, not only by application code
    - version starts at 1 and is bumped by exactly 1 per committed mutation
    - Only AtomicUpdateExecutor writes balance/version after creation

Design Decisions:
    - No ORM version_id_col: the version bump is part of the conditional UPDATE itself
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from balance_engine.db.base import Base


class Account(Base):
    """Account with a non-negative balance and an optimistic-lock version."""
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    account_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - AccountId and IdempotencyKey are at most 50 characters
    - Amounts are Decimal with at most two decimal places (NUMERIC(18,2) in storage)
    - TransactionType values match the `transaction_type` enum in the schema
    - BalanceMutation / BalanceUpdate are immutable result records

Design Decisions:
    - NewType over dataclass wrappers for identifiers: zero runtime cost
    - str Enum: serializes to JSON and binds to the DB enum without custom encoders
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import NewType

from balance_engine.core.errors import InvalidAmountError


# ─── Identity Types ──────────────────────────────────────────────

AccountId = NewType("AccountId", str)
IdempotencyKey = NewType("IdempotencyKey", str)

MAX_KEY_LENGTH = 50
CENT = Decimal("0.01")


# ─── Enums ───────────────────────────────────────────────────────

class TransactionType(str, Enum):
    """Direction of a balance mutation."""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


# ─── Result Records ──────────────────────────────────────────────

@dataclass(frozen=True)
class BalanceMutation:
    """Committed effect of one logical operation (one Transaction row)."""
    transaction_id: int
    balance_after: Decimal
    version: int


@dataclass(frozen=True)
class BalanceUpdate:
    """Façade result: the committed mutation plus retry bookkeeping."""
    transaction_id: int
    balance_after: Decimal
    version: int
    was_retried: bool

    @classmethod
    def from_mutation(
        cls, mutation: BalanceMutation, was_retried: bool,
    ) -> "BalanceUpdate":
        return cls(
            transaction_id=mutation.transaction_id,
            balance_after=mutation.balance_after,
            version=mutation.version,
            was_retried=was_retried,
        )


# ─── Pure helpers ────────────────────────────────────────────────

def to_amount(value: Decimal | int | float | str) -> Decimal:
    """Coerce to Decimal; reject non-finite values and sub-cent precision."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmountError(f"Amount '{value}' is not a number")
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount '{value}' is not finite")
    if amount != amount.quantize(CENT):
        raise InvalidAmountError(
            f"Amount '{value}' has more than two decimal places",
        )
    return amount.quantize(CENT)


def signed_delta(amount: Decimal, tx_type: TransactionType) -> Decimal:
    """Withdrawals are negative, deposits positive, whatever sign came in."""
    magnitude = abs(amount)
    if magnitude == 0:
        raise InvalidAmountError("Amount must be greater than zero")
    return -magnitude if tx_type == TransactionType.WITHDRAW else magnitude

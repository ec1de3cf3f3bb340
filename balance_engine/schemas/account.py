"""Account Schemas — Pydantic models with field-level validation for API boundaries.

Invariants:
    - AccountCreate.account_id: 1-50 chars, stripped; initial_balance >= 0, 2 decimals
    - BalanceUpdateRequest.amount: > 0, 2 decimals; sign comes from `type`
    - Decimal fields serialize as strings in JSON (no float rounding on the wire)
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from balance_engine.core.domain_types import TransactionType


class AccountCreate(BaseModel):
    """Account creation — id is minted server-side when omitted."""
    account_id: str | None = Field(None, min_length=1, max_length=50)
    initial_balance: Decimal = Field(
        Decimal("0"), ge=0, max_digits=18, decimal_places=2,
    )

    @field_validator("account_id")
    @classmethod
    def strip_account_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("account_id cannot be empty or whitespace")
        return v


class AccountResponse(BaseModel):
    """Account response — public-facing account data."""
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    balance: Decimal
    version: int
    created_at: datetime
    updated_at: datetime


class BalanceUpdateRequest(BaseModel):
    """Deposit or withdraw a positive amount."""
    type: TransactionType
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=2)


class BalanceUpdateResponse(BaseModel):
    success: bool = True
    transaction_id: int
    balance_after: Decimal
    version: int
    was_retried: bool


class BalanceResponse(BaseModel):
    account_id: str
    balance: Decimal


class TransactionResponse(BaseModel):
    """Audit row as exposed to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: str
    amount: Decimal
    type: TransactionType
    balance_before: Decimal
    balance_after: Decimal
    version: int
    idempotency_key: str | None
    created_at: datetime

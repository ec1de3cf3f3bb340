"""Account Routes — create accounts, read balances, apply deposits/withdrawals, list history.

Invariants:
    - Every handler delegates to BalanceService; no SQL here
    - Idempotency-Key header is optional, 1-50 chars when present
    - Domain errors propagate to the global BalanceEngineError handler

Design Decisions:
    - get_balance_service is a dependency so tests swap in a service bound to a test DB
    - Building a BalanceService is cheap and stateless; one per request is fine
"""

from fastapi import APIRouter, Depends, Header, status

from balance_engine.config import get_settings
from balance_engine.infrastructure.database import get_db_manager
from balance_engine.schemas.account import (
    AccountCreate, AccountResponse, BalanceResponse,
    BalanceUpdateRequest, BalanceUpdateResponse, TransactionResponse,
)
from balance_engine.services.balance_service import BalanceService

router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


def get_balance_service() -> BalanceService:
    """Service bound to the initialized db_manager and configured retry policy."""
    return BalanceService(
        get_db_manager().session,
        retry_policy=get_settings().retry_policy(),
    )


@router.post(
    "", response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_account(
    body: AccountCreate,
    service: BalanceService = Depends(get_balance_service),
):
    """Open an account with an optional id and initial balance."""
    account = await service.create_account(
        body.account_id, body.initial_balance,
    )
    return AccountResponse.model_validate(account)


@router.get("", response_model=list[AccountResponse])
async def list_accounts(
    service: BalanceService = Depends(get_balance_service),
):
    accounts = await service.list_accounts()
    return [AccountResponse.model_validate(a) for a in accounts]


@router.post("/{account_id}/balance", response_model=BalanceUpdateResponse)
async def update_balance(
    account_id: str,
    body: BalanceUpdateRequest,
    idempotency_key: str | None = Header(
        default=None, alias="Idempotency-Key", min_length=1, max_length=50,
    ),
    service: BalanceService = Depends(get_balance_service),
):
    """Deposit or withdraw; replays the recorded result for a reused key."""
    result = await service.apply_delta(
        account_id, body.amount, body.type, idempotency_key,
    )
    return BalanceUpdateResponse(
        transaction_id=result.transaction_id,
        balance_after=result.balance_after,
        version=result.version,
        was_retried=result.was_retried,
    )


@router.get("/{account_id}/balance", response_model=BalanceResponse)
async def get_balance(
    account_id: str,
    service: BalanceService = Depends(get_balance_service),
):
    balance = await service.read_balance(account_id)
    return BalanceResponse(account_id=account_id, balance=balance)


@router.get(
    "/{account_id}/transactions", response_model=list[TransactionResponse],
)
async def get_transactions(
    account_id: str,
    service: BalanceService = Depends(get_balance_service),
):
    """Transaction history, newest first."""
    transactions = await service.list_transactions(account_id)
    return [TransactionResponse.model_validate(t) for t in transactions]

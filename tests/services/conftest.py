"""Service test fixtures — seeded accounts and helpers for concurrent load.

Invariants:
    - seed_account commits through BalanceService.create_account (version starts at 1)
"""

from decimal import Decimal

import pytest


@pytest.fixture
def seed_account(balance_service):
    """Factory: await seed_account("A", 500) -> Account."""
    async def _seed(account_id: str, balance: int | str = 0):
        return await balance_service.create_account(account_id, Decimal(str(balance)))
    return _seed

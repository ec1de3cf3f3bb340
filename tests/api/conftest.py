"""API test fixtures — FastAPI test client bound to the per-test SQLite database.

Invariants:
    - get_balance_service overridden to use the test BalanceService
    - db_manager singleton patched so readiness checks hit the test DB
    - Overrides and the singleton restored after each test

Design Decisions:
    - httpx ASGITransport: no server process, lifespan not run (no Postgres needed)
"""

import pytest
from httpx import ASGITransport, AsyncClient

import balance_engine.infrastructure.database as db_module
from balance_engine.api.routes.accounts import get_balance_service
from balance_engine.main import app


@pytest.fixture
async def client(db_manager, balance_service):
    """FastAPI test client with the service dependency overridden."""
    app.dependency_overrides[get_balance_service] = lambda: balance_service

    original_manager = db_module.db_manager
    db_module.db_manager = db_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager

"""Root conftest — shared test configuration and database fixtures.

Invariants:
    - Every test gets a fresh SQLite database file under tmp_path
    - Tables come from Base.metadata, so CHECK/UNIQUE constraints match the models
    - Retry policy uses millisecond backoff so contention tests finish quickly

Design Decisions:
    - File database, not :memory:: each session gets its own connection, so
      concurrent writers really race on the store instead of sharing one connection
    - DatabaseSessionManager used as-is: tests exercise the same rollback/mapping path
      the app uses
"""

import os

import pytest

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("LOG_FORMAT", "text")

from balance_engine.core.retry_policy import RetryPolicy  # noqa: E402
from balance_engine.db.base import Base  # noqa: E402
from balance_engine.infrastructure.database import DatabaseSessionManager  # noqa: E402
import balance_engine.models  # noqa: E402,F401
from balance_engine.services.balance_service import BalanceService  # noqa: E402


FAST_RETRY = RetryPolicy(
    max_attempts=500, base_backoff_ms=1, max_backoff_ms=20, jitter_ms=5,
)


@pytest.fixture
async def db_manager(tmp_path):
    manager = DatabaseSessionManager(
        f"sqlite+aiosqlite:///{tmp_path / 'balance.db'}",
        busy_timeout_seconds=30,
    )
    async with manager.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield manager
    await manager.dispose()


@pytest.fixture
def sessions(db_manager):
    return db_manager.session


@pytest.fixture
def balance_service(sessions):
    return BalanceService(sessions, retry_policy=FAST_RETRY)

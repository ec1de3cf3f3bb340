"""Database Session Manager — async engine, per-attempt sessions, and error mapping.

Invariants:
    - A session that exits with an exception is rolled back, then closed
    - SQLAlchemy exceptions escaping a session surface as DatabaseError (core/errors.py)
    - Only OperationalError becomes retryable (lock timeouts, dropped connections)
    - Exceptions raised by callers inside a session (domain errors) pass through untouched

Design Decisions:
    - Singleton db_manager created by the FastAPI lifespan; tests build their own
    - expire_on_commit=False: committed ORM rows stay readable after the session closes
    - SQLite URLs get a busy timeout instead of pool sizing: concurrent writers wait
      on the file lock rather than failing immediately
    - IntegrityError the executor expects (duplicate idempotency key) is caught inside
      the session block, so only unexpected constraint failures reach the mapping here
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import (
    DBAPIError, IntegrityError, OperationalError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

from balance_engine.core.errors import DatabaseError

logger = logging.getLogger(__name__)

# Most specific first: IntegrityError and OperationalError subclass DBAPIError.
_ERROR_MAP: tuple[tuple[type[SQLAlchemyError], str, str, bool], ...] = (
    (IntegrityError, "Integrity constraint violated", "commit", False),
    (OperationalError, "Connection or lock unavailable", "execute", True),
    (DBAPIError, "Database driver error", "query", False),
    (SQLAlchemyError, "Database operation failed", "unknown", False),
)


def to_database_error(exc: SQLAlchemyError) -> DatabaseError:
    for exc_type, message, operation, retryable in _ERROR_MAP:
        if isinstance(exc, exc_type):
            return DatabaseError(message, operation, retryable=retryable)
    return DatabaseError("Database operation failed", "unknown")


class DatabaseSessionManager:
    """Owns the engine; hands out short-lived sessions with rollback on failure."""

    def __init__(
        self,
        database_url: str,
        pool_size: int = 20,
        max_overflow: int = 10,
        busy_timeout_seconds: float = 30.0,
    ):
        if database_url.startswith("sqlite"):
            engine_kwargs = {
                "connect_args": {"timeout": busy_timeout_seconds},
            }
        else:
            engine_kwargs = {
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            }
        self.engine = create_async_engine(database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            mapped = to_database_error(e)
            logger.error(
                f"{type(e).__name__} during {mapped.operation}: {e}",
                extra={"error_code": mapped.code},
            )
            raise mapped from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def health_check(self) -> bool:
        """True when a trivial query round-trips (readiness probe)."""
        try:
            async with self.session() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"DB health check failed: {e}")
            return False


# Singleton (initialized on startup)
db_manager: DatabaseSessionManager | None = None


def init_db(database_url: str, **kwargs) -> DatabaseSessionManager:
    global db_manager
    db_manager = DatabaseSessionManager(database_url, **kwargs)
    return db_manager


def get_db_manager() -> DatabaseSessionManager:
    if db_manager is None:
        raise RuntimeError("Database not initialized")
    return db_manager

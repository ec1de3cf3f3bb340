"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - Retry knobs map 1:1 onto core.retry_policy.RetryPolicy

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from balance_engine.core.retry_policy import RetryPolicy


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://balance:balance@db:5432/balance"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10
    # SQLite only: seconds a writer waits on the database lock
    database_busy_timeout_seconds: float = 30.0

    # Conflict retries
    retry_max_attempts: int = 500
    retry_base_backoff_ms: float = 5.0
    retry_max_backoff_ms: float = 1000.0
    retry_jitter_ms: float = 10.0

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_backoff_ms=self.retry_base_backoff_ms,
            max_backoff_ms=self.retry_max_backoff_ms,
            jitter_ms=self.retry_jitter_ms,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()

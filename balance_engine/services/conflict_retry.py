"""Conflict Retry Coordinator — re-runs an async operation through version races with backoff.

Invariants:
    - Non-retryable errors (retryable=False) propagate unchanged on first occurrence
    - Any other failure schedules another attempt after compute_delay_ms(attempt)
    - When the last permitted attempt fails, ExhaustedRetriesError is raised, chained
      to the final cause; the cause itself is never surfaced
    - ExhaustedRetriesError carries retry_after_ms = policy.max_backoff_ms as a client hint
    - Sleeps are asyncio awaits: other operations keep running during backoff
    - CancelledError (BaseException) is never caught

Design Decisions:
    - The operation receives its 0-indexed attempt number and the coordinator reports
      how many attempts ran, so callers can tell a retried result from a first-try one
    - sleep and uniform are injectable: tests run the state machine without waiting
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Generic, TypeVar

from balance_engine.core.errors import ErrorContext, ExhaustedRetriesError
from balance_engine.core.retry_policy import (
    RetryPolicy, compute_delay_ms, is_retryable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Successful result plus the number of physical attempts it took."""
    value: T
    attempts: int

    @property
    def was_retried(self) -> bool:
        return self.attempts > 1


class ConflictRetryCoordinator:
    """Retries transient failures with capped exponential backoff and jitter."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._uniform = uniform

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        context: ErrorContext | None = None,
    ) -> RetryOutcome[T]:
        max_attempts = self.policy.max_attempts
        for attempt in range(max_attempts):
            try:
                value = await operation(attempt)
                return RetryOutcome(value=value, attempts=attempt + 1)
            except Exception as e:
                if not is_retryable(e):
                    raise
                if attempt >= max_attempts - 1:
                    self._log_exhausted(max_attempts, context)
                    ctx = replace(
                        context or ErrorContext(),
                        attempt=attempt + 1,
                        retry_after_ms=int(self.policy.max_backoff_ms),
                    )
                    raise ExhaustedRetriesError(max_attempts, context=ctx) from e
                await self._backoff(attempt, e, context)
        # range(max_attempts) is never empty (RetryPolicy enforces >= 1)
        raise AssertionError("unreachable")

    async def _backoff(
        self, attempt: int, error: Exception, context: ErrorContext | None,
    ) -> None:
        delay_ms = compute_delay_ms(attempt, self.policy, self._uniform)
        logger.warning(
            f"Retryable failure, retry after {delay_ms:.1f}ms: {error}",
            extra={
                "attempt": attempt + 1,
                "delay_ms": round(delay_ms, 3),
                "error_code": getattr(error, "code", None),
                "account_id": context.account_id if context else None,
            },
        )
        await self._sleep(delay_ms / 1000)

    def _log_exhausted(
        self, max_attempts: int, context: ErrorContext | None,
    ) -> None:
        logger.error(
            f"Max attempts ({max_attempts}) exceeded",
            extra={
                "attempt": max_attempts,
                "error_code": "EXHAUSTED_RETRIES",
                "account_id": context.account_id if context else None,
            },
        )

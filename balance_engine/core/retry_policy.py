"""Retry Policy — pure backoff arithmetic and error classification for conflict retries.

Invariants:
    - delay(n) = min(base * 2**n, max) + uniform(0, jitter), n 0-indexed, in milliseconds
    - max_attempts >= 1; all durations >= 0
    - is_retryable() reads the error's `retryable` flag; errors without one are retryable

Design Decisions:
    - Random source injected: tests pin jitter without patching the random module
    - Exponent clamped so huge attempt counts never overflow float conversion
"""

import random
from collections.abc import Callable
from dataclasses import dataclass

# 2**64 * any positive base already exceeds every sane max_backoff_ms
_MAX_EXPONENT = 64


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for the conflict retry coordinator."""
    max_attempts: int = 500
    base_backoff_ms: float = 5.0
    max_backoff_ms: float = 1000.0
    jitter_ms: float = 10.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if min(self.base_backoff_ms, self.max_backoff_ms, self.jitter_ms) < 0:
            raise ValueError("backoff durations must be non-negative")

    @property
    def worst_case_ms(self) -> float:
        """Upper bound on total sleep time across all attempts."""
        return (self.max_attempts - 1) * (self.max_backoff_ms + self.jitter_ms)


def compute_delay_ms(
    attempt: int,
    policy: RetryPolicy,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """Exponential backoff capped at max_backoff_ms, plus additive jitter."""
    exponential = policy.base_backoff_ms * (2 ** min(attempt, _MAX_EXPONENT))
    capped = min(exponential, policy.max_backoff_ms)
    return capped + uniform(0, policy.jitter_ms)  # nosec B311


def is_retryable(error: BaseException) -> bool:
    """Terminal errors opt out by declaring retryable=False."""
    return bool(getattr(error, "retryable", True))

"""Error Hierarchy — typed, categorized exceptions for every balance-engine failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Every error declares `retryable`; the conflict retry coordinator queries it directly
    - AccountNotFound and InsufficientFunds are terminal (retryable=False)
    - VersionConflict is retryable and never leaves the coordinator
    - ExhaustedRetries is retryable for the caller, distinct from terminal failures
    - to_response() produces the REST envelope; no internal details leaked

Design Decisions:
    - Single hierarchy with BalanceEngineError base: FastAPI global handler catches all
    - Retry classification via attribute, not isinstance checks: infrastructure errors
      opt in or out with the same flag
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    INTERNAL = "internal"
    CONFLICT = "conflict"
    CONTENTION = "contention"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    account_id: str | None = None
    idempotency_key: str | None = None
    attempt: int | None = None
    retry_after_ms: int | None = None


class BalanceEngineError(Exception):
    """Base exception for all balance-engine errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status
        self.retryable = retryable

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "retryable": self.retryable,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "account_id": self.context.account_id,
                    "idempotency_key": self.context.idempotency_key,
                    "attempt": self.context.attempt,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class AccountNotFoundError(BalanceEngineError):
    """Operation targeted an account that does not exist."""
    def __init__(self, account_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.account_id = account_id
        super().__init__(
            f"Account with ID '{account_id}' not found",
            "ACCOUNT_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, ctx, 404,
        )
        self.account_id = account_id


class InsufficientFundsError(BalanceEngineError):
    """Withdrawal would drive the balance below zero."""
    def __init__(
        self, account_id: str, balance: Any, delta: Any,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.account_id = account_id
        super().__init__(
            f"Insufficient funds: balance {balance} cannot absorb {delta}",
            "INSUFFICIENT_FUNDS", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, ctx, 422,
        )
        self.account_id = account_id


class AccountAlreadyExistsError(BalanceEngineError):
    """Account id is already taken."""
    def __init__(self, account_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.account_id = account_id
        super().__init__(
            f"Account with ID '{account_id}' already exists",
            "ACCOUNT_ALREADY_EXISTS", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, ctx, 409,
        )


class InvalidAmountError(BalanceEngineError):
    """Amount is not a positive value with at most two decimal places."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_AMOUNT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )


class InvalidIdempotencyKeyError(BalanceEngineError):
    """Idempotency key is empty or longer than 50 characters."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Idempotency key must be 1-50 characters",
            "INVALID_IDEMPOTENCY_KEY", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )


# ─── Concurrency Errors ─────────────────────────────────────────

class VersionConflictError(BalanceEngineError):
    """Expected account version no longer matches: a concurrent writer won."""
    def __init__(
        self, account_id: str, expected_version: int,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.account_id = account_id
        super().__init__(
            f"Version conflict on account '{account_id}' "
            f"(expected version {expected_version})",
            "VERSION_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.INFO, ctx, 409, retryable=True,
        )
        self.expected_version = expected_version


class ExhaustedRetriesError(BalanceEngineError):
    """All permitted attempts hit retryable failures. Caller may retry later."""
    def __init__(self, max_attempts: int, context: ErrorContext | None = None):
        super().__init__(
            f"Service under contention: failed after {max_attempts} attempts, retry later",
            "EXHAUSTED_RETRIES", ErrorCategory.CONTENTION,
            ErrorSeverity.WARNING, context, 503, retryable=True,
        )
        self.max_attempts = max_attempts


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(BalanceEngineError):
    """Database operation failed."""
    def __init__(
        self,
        message: str,
        operation: str,
        retryable: bool = False,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503, retryable=retryable,
        )
        self.operation = operation

"""Error Handlers — map balance-engine failures onto HTTP responses.

Invariants:
    - BalanceEngineError → its own http_status with the to_response() envelope
    - Retryable errors (409 conflict, 503 contention/DB) carry a Retry-After header
    - RequestValidationError → 400 VALIDATION_ERROR with one detail per bad field
    - Anything else → 500 INTERNAL_ERROR; exception text stays in the logs

Design Decisions:
    - Client mistakes log at WARNING, contention and infrastructure at ERROR
    - Retry-After is whole seconds, at least 1, rounded up from context.retry_after_ms
"""

import logging
import math

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from balance_engine.core.errors import (
    BalanceEngineError, ErrorCategory, ErrorSeverity,
)

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BalanceEngineError, _handle_engine_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)


async def _handle_engine_error(
    request: Request, exc: BalanceEngineError,
) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
        extra={
            "error_code": exc.code,
            "path": request.url.path,
            "account_id": exc.context.account_id,
            "idempotency_key": exc.context.idempotency_key,
        },
    )
    headers = None
    if exc.retryable:
        headers = {"Retry-After": str(retry_after_seconds(exc))}
    return JSONResponse(
        status_code=exc.http_status, content=exc.to_response(), headers=headers,
    )


async def _handle_validation_error(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.warning(
        f"Rejected request on {request.url.path}: {len(details)} invalid field(s)",
        extra={"error_code": "VALIDATION_ERROR", "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_envelope(
            "VALIDATION_ERROR", "Invalid request data",
            ErrorCategory.VALIDATION, ErrorSeverity.ERROR, details=details,
        ),
    )


async def _handle_unexpected_error(
    request: Request, exc: Exception,
) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}",
        exc_info=True,
        extra={"error_code": "INTERNAL_ERROR", "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(
            "INTERNAL_ERROR", "An unexpected error occurred",
            ErrorCategory.INTERNAL, ErrorSeverity.CRITICAL,
        ),
    )


def retry_after_seconds(exc: BalanceEngineError) -> int:
    """Seconds a client should wait before resubmitting."""
    hint_ms = exc.context.retry_after_ms
    if not hint_ms:
        return 1
    return max(1, math.ceil(hint_ms / 1000))


def _envelope(
    code: str,
    message: str,
    category: ErrorCategory,
    severity: ErrorSeverity,
    **extra,
) -> dict:
    """Same outer shape as BalanceEngineError.to_response()."""
    return {
        "error": {
            "code": code,
            "message": message,
            "category": category.value,
            "severity": severity.value,
            "retryable": False,
            **extra,
        },
    }

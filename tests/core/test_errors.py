"""Error taxonomy tests — codes, HTTP mapping, retryable flag, response envelope."""

from balance_engine.core.errors import (
    AccountAlreadyExistsError, AccountNotFoundError, ErrorCategory, ErrorContext,
    ExhaustedRetriesError, InsufficientFundsError, InvalidAmountError,
    InvalidIdempotencyKeyError, VersionConflictError,
)


def test_account_not_found_is_terminal_404():
    err = AccountNotFoundError("missing")
    assert err.code == "ACCOUNT_NOT_FOUND"
    assert err.http_status == 404
    assert err.retryable is False
    assert err.context.account_id == "missing"
    assert "missing" in err.message


def test_insufficient_funds_is_terminal_422():
    err = InsufficientFundsError("A", 10, -20)
    assert err.code == "INSUFFICIENT_FUNDS"
    assert err.http_status == 422
    assert err.retryable is False
    assert err.category == ErrorCategory.BUSINESS_RULE


def test_version_conflict_is_retryable():
    err = VersionConflictError("A", 4)
    assert err.retryable is True
    assert err.expected_version == 4


def test_exhausted_retries_distinct_from_terminal():
    err = ExhaustedRetriesError(500)
    assert err.code == "EXHAUSTED_RETRIES"
    assert err.http_status == 503
    assert err.retryable is True
    assert err.category == ErrorCategory.CONTENTION


def test_validation_errors_are_400():
    assert InvalidAmountError("bad").http_status == 400
    assert InvalidIdempotencyKeyError().http_status == 400
    assert AccountAlreadyExistsError("A").http_status == 409


def test_to_response_envelope():
    ctx = ErrorContext(account_id="A", idempotency_key="K", attempt=3)
    body = ExhaustedRetriesError(3, context=ctx).to_response()["error"]
    assert body["code"] == "EXHAUSTED_RETRIES"
    assert body["retryable"] is True
    assert body["category"] == "contention"
    assert body["context"]["account_id"] == "A"
    assert body["context"]["idempotency_key"] == "K"
    assert body["context"]["attempt"] == 3
    assert "timestamp" in body

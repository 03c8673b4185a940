import pytest

from ai_router.errors import (
    RETRYABLE_ERROR_TYPES,
    AllBackendsFailedError,
    BackendError,
    ErrorType,
    NoBackendAvailableError,
)


class TestBackendError:
    @pytest.mark.parametrize("error_type", list(ErrorType))
    def test_retryable_follows_type(self, error_type):
        error = BackendError("x", error_type=error_type)
        assert error.retryable is (error_type in RETRYABLE_ERROR_TYPES)

    def test_explicit_retryable_wins(self):
        assert BackendError("x", error_type=ErrorType.API_ERROR, retryable=False).retryable is False

    def test_to_dict(self):
        error = BackendError(
            "slow down",
            backend="alpha",
            error_type=ErrorType.RATE_LIMIT,
            status_code=429,
            retry_after=3.0,
        )
        assert error.to_dict() == {
            "error": "rate_limit",
            "message": "slow down",
            "backend": "alpha",
            "status_code": 429,
            "retryable": True,
            "retry_after": 3.0,
        }


class TestAggregateErrors:
    def test_all_backends_failed_wraps_last(self):
        last = BackendError("down", backend="beta", error_type=ErrorType.TIMEOUT)
        error = AllBackendsFailedError(last, attempts=3)
        assert error.last_error is last
        assert error.attempts == 3
        assert error.error_type == ErrorType.TIMEOUT
        assert error.retryable is False
        assert "3 attempt(s)" in str(error)

    def test_no_backend_available(self):
        error = NoBackendAvailableError()
        assert error.retryable is False
        assert str(error) == "No backend available"

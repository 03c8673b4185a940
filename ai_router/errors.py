"""Closed error taxonomy shared by provider clients and the orchestrator.

Provider clients translate every backend-native failure into a
``BackendError`` before it leaves the adapter. The orchestrator only ever
inspects ``retryable``, ``error_type`` and ``retry_after``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorType(StrEnum):
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    CONTEXT_LIMIT = "context_limit"
    AUTHENTICATION = "authentication"
    CONTENT_FILTER = "content_filter"
    API_ERROR = "api_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


RETRYABLE_ERROR_TYPES: frozenset[ErrorType] = frozenset(
    {ErrorType.RATE_LIMIT, ErrorType.API_ERROR, ErrorType.TIMEOUT}
)


class BackendError(Exception):
    """A failure attributed to one backend, classified into ``ErrorType``."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        error_type: ErrorType = ErrorType.UNKNOWN,
        status_code: int | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.error_type = error_type
        self.status_code = status_code
        self.retryable = error_type in RETRYABLE_ERROR_TYPES if retryable is None else retryable
        self.retry_after = retry_after
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_type.value,
            "message": self.message,
            "backend": self.backend,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, backend={self.backend!r}, "
            f"error_type={self.error_type.value!r})"
        )


class AllBackendsFailedError(BackendError):
    """Raised when the whole fallback chain is exhausted.

    Wraps the last underlying error so callers can tell "nothing could serve
    this request" apart from a single backend refusing the content.
    """

    def __init__(self, last_error: BackendError, attempts: int) -> None:
        super().__init__(
            f"All backends failed after {attempts} attempt(s): {last_error.message}",
            backend=last_error.backend,
            error_type=last_error.error_type,
            status_code=last_error.status_code,
            retryable=False,
            retry_after=last_error.retry_after,
            original_error=last_error,
        )
        self.last_error = last_error
        self.attempts = attempts


class NoBackendAvailableError(BackendError):
    """Raised before any network call when no backend is enabled and admissible."""

    def __init__(self, message: str = "No backend available", backend: str | None = None) -> None:
        super().__init__(
            message,
            backend=backend,
            error_type=ErrorType.UNKNOWN,
            retryable=False,
        )


class ConfigError(Exception):
    pass

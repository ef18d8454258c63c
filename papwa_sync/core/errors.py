"""Error taxonomy for connectors, reconciliation and the job runtime.

Connectors raise these; reconciliation catches them at the record or tick
boundary and reports the outcome. Nothing here is surfaced to an end user.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    """Classification of provider errors for handling decisions."""

    AUTH = "auth"  # token invalid/unrefreshable - deactivate, reconnect
    RATE_LIMIT = "rate_limit"  # abandon tick, next tick retries
    TRANSIENT = "transient"  # network/5xx - abandon tick
    NOT_FOUND = "not_found"  # idempotent delete target already gone
    VALIDATION = "validation"  # single bad record - skip it
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base class for engine errors."""

    category = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AuthError(SyncError):
    """Token invalid or unrefreshable. The integration must be reconnected."""

    category = ErrorCategory.AUTH


class TransientNetworkError(SyncError):
    category = ErrorCategory.TRANSIENT


class RateLimitError(TransientNetworkError):
    category = ErrorCategory.RATE_LIMIT


class NotFoundError(SyncError):
    category = ErrorCategory.NOT_FOUND


class RecordValidationError(SyncError):
    """A single remote or local record could not be mapped."""

    category = ErrorCategory.VALIDATION


class SagaRetryableError(Exception):
    """Raised by a saga step to request a retry through the job backoff."""


def classify_status(status_code: int) -> ErrorCategory | None:
    """Map an HTTP status to an error category (None for success/304)."""
    if 200 <= status_code < 300 or status_code == 304:
        return None
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code == 404:
        return ErrorCategory.NOT_FOUND
    if status_code == 0 or status_code >= 500:
        return ErrorCategory.TRANSIENT
    if 400 <= status_code < 500:
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


_ERROR_FOR_CATEGORY: dict[ErrorCategory, type[SyncError]] = {
    ErrorCategory.AUTH: AuthError,
    ErrorCategory.RATE_LIMIT: RateLimitError,
    ErrorCategory.TRANSIENT: TransientNetworkError,
    ErrorCategory.NOT_FOUND: NotFoundError,
    ErrorCategory.VALIDATION: RecordValidationError,
    ErrorCategory.UNKNOWN: SyncError,
}


def error_for_status(
    status_code: int, message: str, *, provider: str | None = None
) -> SyncError:
    """Build the typed error for a non-success HTTP status."""
    category = classify_status(status_code) or ErrorCategory.UNKNOWN
    error_cls = _ERROR_FOR_CATEGORY[category]
    return error_cls(message, provider=provider, status_code=status_code)

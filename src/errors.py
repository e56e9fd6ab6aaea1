"""
Date Consensus - Error Taxonomy

Every failure the engine can report to a caller is a PredictionError
subclass carrying a stable machine-readable code, a user-facing message
and the HTTP status the API layer should answer with.

None of these conditions is fatal to the process: a rejected request
never leaves the ledger or the aggregate cache in a bad state.
"""

from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Stable error codes exposed to API clients."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_IDENTITY = "DUPLICATE_IDENTITY"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    BOT_DETECTED = "BOT_DETECTED"
    VERIFICATION_UNAVAILABLE = "VERIFICATION_UNAVAILABLE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    SERVER_ERROR = "SERVER_ERROR"


class PredictionError(Exception):
    """
    Base exception for all engine-level errors.

    Attributes:
        code: ErrorCode identifying the condition
        message: Actionable, user-facing description
        http_status: Status code the HTTP layer should use
        details: Optional structured context (never contains raw identities)
    """

    code = ErrorCode.SERVER_ERROR
    http_status = 500
    default_message = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details or {}
        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the API error envelope body."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            error.update(self.details)
        return {"success": False, "error": error}


class ValidationError(PredictionError):
    """Malformed or out-of-range input (dates, identities, weights)."""

    code = ErrorCode.VALIDATION_ERROR
    http_status = 400
    default_message = "Invalid input."

    def __init__(self, message: str | None = None, field: str | None = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field


class DuplicateIdentityError(PredictionError):
    """The identity already has a live observation."""

    code = ErrorCode.DUPLICATE_IDENTITY
    http_status = 409
    default_message = (
        "You've already submitted a prediction. Use your update token to change it."
    )


class TokenNotFoundError(PredictionError):
    """No live observation matches the supplied update token."""

    code = ErrorCode.TOKEN_NOT_FOUND
    http_status = 404
    default_message = "No prediction found for this update token."


class BotDetectedError(PredictionError):
    """The bot challenge returned a definitive failure."""

    code = ErrorCode.BOT_DETECTED
    http_status = 503
    default_message = "Verification failed. Please complete the challenge and try again."


class VerificationUnavailableError(PredictionError):
    """
    The bot challenge could not be evaluated (timeout, transport error).

    Never surfaced to submitters: the verifier fails open and only logs it.
    """

    code = ErrorCode.VERIFICATION_UNAVAILABLE
    http_status = 200
    default_message = "Bot verification unavailable."


class RateLimitExceededError(PredictionError):
    """Too many requests for the caller's scope."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    http_status = 429
    default_message = "Too many requests. Please slow down."


class CapacityExceededError(PredictionError):
    """The daily request budget is spent; the service is read-only until reset."""

    code = ErrorCode.CAPACITY_EXCEEDED
    http_status = 503
    default_message = "We've reached capacity for today. Please try again later."

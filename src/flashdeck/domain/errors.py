"""
Error taxonomy for flashdeck.

Gateway errors are raised by infrastructure adapters and classified by kind so
the retry policy and the engines can decide what to do without inspecting
status codes. Programmer errors (invalid state, illegal transitions) are a
separate branch and are allowed to propagate to the caller.
"""

from enum import Enum


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    CLIENT = "client"
    GENERATION_FAILED = "generation_failed"
    CANCELLED = "cancelled"


class FlashdeckError(Exception):
    """Base class for all flashdeck errors."""

    kind: ErrorKind = ErrorKind.CLIENT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Gateway (network) errors
# ---------------------------------------------------------------------------


class GatewayError(FlashdeckError):
    """An error returned by, or on the way to, the remote scheduling gateway."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientGatewayError(GatewayError):
    """Network failure, timeout or 5xx. The only kind retried with backoff."""

    kind = ErrorKind.TRANSIENT


class AuthenticationRequiredError(GatewayError):
    kind = ErrorKind.AUTHENTICATION

    def __init__(
        self,
        message: str = "Authentication required. Please sign in again.",
        status_code: int | None = 401,
    ):
        super().__init__(message, status_code)


class NotFoundError(GatewayError):
    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str = "Resource not found. It may have been deleted.",
        status_code: int | None = 404,
    ):
        super().__init__(message, status_code)


class ConflictError(GatewayError):
    kind = ErrorKind.CONFLICT


class RateLimitedError(GatewayError):
    """429. Carries the server-specified delay before a single retry."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        retry_after: float,
        message: str = "Too many requests. Please wait a moment and try again.",
        status_code: int | None = 429,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class InvalidResponseError(GatewayError):
    """The gateway answered, but the body is undecodable or malformed."""

    kind = ErrorKind.INVALID_RESPONSE


class ClientRequestError(GatewayError):
    """Any other 4xx."""

    kind = ErrorKind.CLIENT


# ---------------------------------------------------------------------------
# Local errors
# ---------------------------------------------------------------------------


class CardValidationError(FlashdeckError):
    """Card content failed local validation. Never sent to the network."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        card_index: int | None = None,
        errors: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.card_index = card_index
        self.errors = errors or {}


class InvalidStateError(FlashdeckError):
    """An operation was invoked in a state that does not allow it."""


class InvalidTransitionError(InvalidStateError):
    """A candidate card was asked to move to a status it cannot reach."""


class OperationCancelledError(FlashdeckError):
    """The owning session or batch was torn down while the operation was in flight."""

    kind = ErrorKind.CANCELLED

"""Custom exceptions for the lead status sync engine."""

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from leadsync.services.sync_models import SyncOutcome

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "AuthenticationError": "Authentication failed.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "UnknownEventTypeError": "The event type is not supported.",
    "DatabaseError": "A database error occurred. Please try again.",
    "OutcomePersistenceError": "The sync result could not be recorded. Please retry delivery.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
    "CRMConnectionError": "The CRM is temporarily unreachable.",
    "CRMRequestError": "The CRM rejected the request.",
    "ExternalServiceError": "An external service is temporarily unavailable.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the MRO so subclasses fall back to their parent's message.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class LeadSyncException(Exception):
    """Base exception for all sync-engine errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AuthenticationError(LeadSyncException):
    """Authentication failed error (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            status_code=401,
        )


class ValidationError(LeadSyncException):
    """Input validation error (400)."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class UnknownEventTypeError(ValidationError):
    """Raised when an event type is outside the closed enumeration."""

    def __init__(self, event_type: str) -> None:
        super().__init__(
            message=f"Unsupported event type: {event_type}",
            field="event_type",
            details={"event_type": event_type},
        )
        self.event_type = event_type


class DatabaseError(LeadSyncException):
    """Database operation error (500)."""

    def __init__(self, message: str = "A database error occurred") -> None:
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
            status_code=500,
        )


class OutcomePersistenceError(DatabaseError):
    """The sync outcome record could not be written.

    Distinct from remote-mutation failures: the remote system may already
    reflect the change, only the local audit trail is missing it.
    """

    def __init__(self, outcome: "SyncOutcome", cause: str) -> None:
        super().__init__(f"Failed to persist sync outcome for lead {outcome.lead_id}: {cause}")
        self.code = "OUTCOME_PERSISTENCE_ERROR"
        self.outcome = outcome
        self.details = {"lead_id": outcome.lead_id, "event_type": outcome.event_type.value}


class ExternalServiceError(LeadSyncException):
    """External service error (502)."""

    def __init__(self, service: str, message: str | None = None) -> None:
        super().__init__(
            message=message or f"External service '{service}' is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=502,
            details={"service": service},
        )
        self.service = service


class CRMRequestError(ExternalServiceError):
    """The CRM answered with a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        provider: str = "pipedrive",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(service=provider, message=message)
        self.code = "CRM_REQUEST_ERROR"
        self.http_status = status_code
        self.retry_after = retry_after
        self.details = {"provider": provider, "http_status": status_code}


class CRMConnectionError(ExternalServiceError):
    """The CRM could not be reached (network failure or timeout)."""

    def __init__(self, message: str, provider: str = "pipedrive", timed_out: bool = False) -> None:
        super().__init__(service=provider, message=message)
        self.code = "CRM_CONNECTION_ERROR"
        self.timed_out = timed_out
        self.details = {"provider": provider, "timed_out": timed_out}


class CircuitBreakerOpen(ExternalServiceError):
    """Raised instead of calling a remote system whose circuit is open."""

    def __init__(self, operation_class: str, retry_after: float = 0.0) -> None:
        super().__init__(
            service=operation_class,
            message=f"Circuit breaker is open for {operation_class}",
        )
        self.code = "CIRCUIT_OPEN"
        self.status_code = 503
        self.operation_class = operation_class
        self.retry_after = retry_after
        self.details = {"operation_class": operation_class, "retry_after": retry_after}

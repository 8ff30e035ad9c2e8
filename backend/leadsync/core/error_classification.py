"""Classification of remote-call failures into retry categories.

Every exception raised by a remote operation is mapped onto a closed
``ErrorCategory``.  Each category carries a ``RetryPolicy`` that tells the
executor whether to retry, how many times, how to back off, and whether the
failure counts towards the operation class's circuit breaker.
"""

import asyncio
import enum
from dataclasses import dataclass

import httpx

from leadsync.core.exceptions import (
    CircuitBreakerOpen,
    CRMConnectionError,
    CRMRequestError,
    ValidationError,
)


class BackoffStrategy(str, enum.Enum):
    """How the delay before the next attempt is computed."""

    EXPONENTIAL = "exponential"
    FIXED = "fixed"
    NONE = "none"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour attached to an error category."""

    retryable: bool
    max_retries: int
    backoff: BackoffStrategy
    trips_circuit_breaker: bool


class ErrorCategory(str, enum.Enum):
    """Closed set of failure classes a remote operation can produce."""

    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"

    @property
    def policy(self) -> RetryPolicy:
        """Retry policy for this category."""
        return CATEGORY_POLICIES[self]

    @property
    def retryable(self) -> bool:
        return self.policy.retryable

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries


CATEGORY_POLICIES: dict[ErrorCategory, RetryPolicy] = {
    ErrorCategory.RATE_LIMITED: RetryPolicy(
        retryable=True, max_retries=3, backoff=BackoffStrategy.EXPONENTIAL, trips_circuit_breaker=True
    ),
    ErrorCategory.SERVER_ERROR: RetryPolicy(
        retryable=True, max_retries=3, backoff=BackoffStrategy.EXPONENTIAL, trips_circuit_breaker=True
    ),
    ErrorCategory.NETWORK_ERROR: RetryPolicy(
        retryable=True, max_retries=3, backoff=BackoffStrategy.EXPONENTIAL, trips_circuit_breaker=True
    ),
    ErrorCategory.PERMANENT: RetryPolicy(
        retryable=False, max_retries=0, backoff=BackoffStrategy.NONE, trips_circuit_breaker=False
    ),
    ErrorCategory.UNKNOWN: RetryPolicy(
        retryable=True, max_retries=1, backoff=BackoffStrategy.EXPONENTIAL, trips_circuit_breaker=False
    ),
    ErrorCategory.CIRCUIT_OPEN: RetryPolicy(
        retryable=False, max_retries=0, backoff=BackoffStrategy.NONE, trips_circuit_breaker=False
    ),
    ErrorCategory.CANCELLED: RetryPolicy(
        retryable=False, max_retries=0, backoff=BackoffStrategy.NONE, trips_circuit_breaker=False
    ),
}

# Transport-level failures that never reached a response
_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def classify_status_code(status_code: int) -> ErrorCategory:
    """Classify an HTTP status code returned by a remote system.

    Args:
        status_code: The HTTP status of a failed response.

    Returns:
        The matching ErrorCategory.
    """
    if status_code == 429:
        return ErrorCategory.RATE_LIMITED
    if status_code == 408:
        return ErrorCategory.NETWORK_ERROR
    if 500 <= status_code < 600:
        return ErrorCategory.SERVER_ERROR
    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT
    return ErrorCategory.UNKNOWN


def classify_error(error: BaseException) -> ErrorCategory:
    """Classify an exception raised by a remote operation.

    Args:
        error: The exception raised by the operation.

    Returns:
        The matching ErrorCategory.
    """
    if isinstance(error, CircuitBreakerOpen):
        return ErrorCategory.CIRCUIT_OPEN
    if isinstance(error, asyncio.CancelledError):
        return ErrorCategory.CANCELLED
    if isinstance(error, CRMRequestError):
        return classify_status_code(error.http_status)
    if isinstance(error, httpx.HTTPStatusError):
        return classify_status_code(error.response.status_code)
    if isinstance(error, CRMConnectionError):
        return ErrorCategory.NETWORK_ERROR
    if isinstance(error, ValidationError):
        # Rejected locally before any request was made
        return ErrorCategory.PERMANENT
    if isinstance(error, _NETWORK_EXCEPTIONS):
        return ErrorCategory.NETWORK_ERROR
    return ErrorCategory.UNKNOWN

"""Circuit breaker pattern for remote CRM / campaign-tool operations.

One breaker exists per *operation class* (for example ``crm.set_lead_status``),
shared by every caller in the process.  Breakers live in a
``CircuitBreakerRegistry`` that is created by the application and injected
into the executor, so tests and separate engines never share hidden state.
State is process-local and resets on restart.
"""

import enum
import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from leadsync.core.exceptions import CircuitBreakerOpen

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_SECONDS = 60.0


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker guarding one operation class.

    Tracks consecutive breaker-triggering failures and opens the circuit when
    the threshold is reached.  Once the cool-down has elapsed a single trial
    call is let through (half-open); concurrent callers keep being rejected
    until that trial reports back.  Success closes the circuit, a triggering
    failure re-opens it for another cool-down.

    All reads and writes go through one lock, so the threshold crossing is
    observed by exactly one failing caller.

    Args:
        operation_class: Identifier for the protected operation (used in logs).
        failure_threshold: Consecutive triggering failures before opening.
        cooldown: Seconds to stay open before permitting a trial call.
        clock: Monotonic time source; defaults to ``time.monotonic``.
    """

    def __init__(
        self,
        operation_class: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.operation_class = operation_class
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock

        self._failure_count: int = 0
        self._opened_at: float = 0.0
        self._last_failure_at: datetime | None = None
        self._next_retry_allowed_after: datetime | None = None
        self._state: CircuitState = CircuitState.CLOSED
        self._trial_in_flight = False
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.monotonic()

    def _remaining_cooldown(self) -> float:
        return max(0.0, self.cooldown - (self._now() - self._opened_at))

    @property
    def state(self) -> CircuitState:
        """Current circuit state, accounting for the cool-down."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._remaining_cooldown() <= 0:
                return CircuitState.HALF_OPEN
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def acquire(self) -> None:
        """Ask permission to make one call.

        Raises:
            CircuitBreakerOpen: If the circuit is open and the cool-down has
                not elapsed, or a half-open trial is already in flight.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            if self._state == CircuitState.OPEN:
                remaining = self._remaining_cooldown()
                if remaining > 0:
                    raise CircuitBreakerOpen(self.operation_class, retry_after=remaining)
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.warning(
                    "Circuit breaker HALF_OPEN for %s (testing recovery after %.1fs)",
                    self.operation_class,
                    self.cooldown,
                )

            # HALF_OPEN: only one trial at a time
            if self._trial_in_flight:
                raise CircuitBreakerOpen(self.operation_class, retry_after=0.0)
            self._trial_in_flight = True

    def record_success(self) -> None:
        """Record a successful call. Resets failure count and closes circuit."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.warning(
                    "Circuit breaker CLOSED for %s (recovered)",
                    self.operation_class,
                )
            self._failure_count = 0
            self._state = CircuitState.CLOSED
            self._trial_in_flight = False
            self._next_retry_allowed_after = None

    def record_failure(self) -> bool:
        """Record a breaker-triggering failure.

        Returns:
            True if this failure opened (or re-opened) the circuit.
        """
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = datetime.now(UTC)

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "Circuit breaker re-OPENED for %s (failed during HALF_OPEN trial)",
                    self.operation_class,
                )
                self._open()
                return True

            if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning(
                    "Circuit breaker OPEN for %s after %d consecutive failures",
                    self.operation_class,
                    self._failure_count,
                )
                self._open()
                return True

            return False

    def cancel_trial(self) -> None:
        """Give back a half-open trial slot without recording an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def release(self) -> None:
        """Record a failure that does not count towards the breaker.

        The remote system answered (for example with a permanent 4xx), so a
        half-open trial proves it is reachable again.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "Circuit breaker CLOSED for %s (trial reached the service)",
                    self.operation_class,
                )
                self._failure_count = 0
                self._state = CircuitState.CLOSED
                self._next_retry_allowed_after = None
            self._trial_in_flight = False

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._now()
        self._trial_in_flight = False
        self._next_retry_allowed_after = datetime.now(UTC) + timedelta(seconds=self.cooldown)

    def reset(self) -> None:
        """Force-reset the circuit breaker to CLOSED (e.g. for tests or admin)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = 0.0
            self._trial_in_flight = False
            self._last_failure_at = None
            self._next_retry_allowed_after = None
            logger.info("Circuit breaker RESET for %s", self.operation_class)

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for health-check endpoints."""
        state = self.state
        with self._lock:
            return {
                "operation_class": self.operation_class,
                "state": state.value,
                "is_open": state == CircuitState.OPEN,
                "consecutive_failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "cooldown_seconds": self.cooldown,
                "last_failure_at": (
                    self._last_failure_at.isoformat() if self._last_failure_at else None
                ),
                "next_retry_allowed_after": (
                    self._next_retry_allowed_after.isoformat()
                    if self._next_retry_allowed_after
                    else None
                ),
            }


class CircuitBreakerRegistry:
    """Lazily creates and holds one breaker per operation class.

    Subclass and override ``_create`` to back breakers with shared storage
    when several processes must agree on breaker state.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def _create(self, operation_class: str) -> CircuitBreaker:
        return CircuitBreaker(
            operation_class,
            failure_threshold=self.failure_threshold,
            cooldown=self.cooldown,
            clock=self._clock,
        )

    def get(self, operation_class: str) -> CircuitBreaker:
        """Return the breaker for an operation class, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(operation_class)
            if breaker is None:
                breaker = self._create(operation_class)
                self._breakers[operation_class] = breaker
            return breaker

    def peek(self, operation_class: str) -> CircuitBreaker | None:
        """Return the breaker if one has been created, without creating it."""
        with self._lock:
            return self._breakers.get(operation_class)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Per-class state for monitoring."""
        with self._lock:
            breakers = dict(self._breakers)
        return {name: cb.to_dict() for name, cb in breakers.items()}

    def reset(self, operation_class: str | None = None) -> None:
        """Reset one breaker, or all of them when no class is given."""
        with self._lock:
            breakers = (
                list(self._breakers.values())
                if operation_class is None
                else [b for n, b in self._breakers.items() if n == operation_class]
            )
        for breaker in breakers:
            breaker.reset()

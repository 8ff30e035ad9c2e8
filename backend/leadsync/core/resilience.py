"""Resilient execution of remote mutations.

Provides:
- RetryConfig: backoff and breaker tuning for the executor
- compute_backoff: delay before the next attempt for a failure category
- ResilientExecutor: classified retries + per-operation-class circuit breaker

The executor never raises for remote failures; it returns an
``ExecutionResult`` carrying the full attempt history so callers can record
exactly what happened.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from leadsync.core.circuit_breaker import CircuitBreakerRegistry
from leadsync.core.error_classification import BackoffStrategy, ErrorCategory, classify_error
from leadsync.core.exceptions import CircuitBreakerOpen

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff and circuit breaker tuning.

    Args:
        base_delay: Delay in seconds after the first failed attempt.
        max_delay: Cap on any single computed delay.
        jitter: Add random jitter of up to ``jitter_ratio`` of the delay.
        jitter_ratio: Upper bound of the jitter as a fraction of the delay.
        failure_threshold: Consecutive triggering failures that open a breaker.
        cooldown: Seconds a breaker stays open before a trial call.
        call_timeout: Optional per-attempt timeout enforced by the executor.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    jitter_ratio: float = 0.25
    failure_threshold: int = 5
    cooldown: float = 60.0
    call_timeout: float | None = None


@dataclass(frozen=True)
class AttemptRecord:
    """One failed attempt of a remote operation."""

    attempt_number: int
    error_classification: ErrorCategory
    delay_before_next_ms: int
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "error_classification": self.error_classification.value,
            "delay_before_next_ms": self.delay_before_next_ms,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class ExecutionResult(Generic[T]):
    """Outcome of ``ResilientExecutor.execute_with_retry``."""

    success: bool
    result: T | None = None
    error: BaseException | None = None
    error_classification: ErrorCategory | None = None
    attempts: tuple[AttemptRecord, ...] = field(default_factory=tuple)

    @property
    def call_count(self) -> int:
        """Number of times the underlying operation was actually invoked."""
        failed_calls = sum(
            1 for a in self.attempts if a.error_classification != ErrorCategory.CIRCUIT_OPEN
        )
        return failed_calls + (1 if self.success else 0)


def compute_backoff(
    attempt_number: int,
    category: ErrorCategory,
    config: RetryConfig,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before retrying after ``attempt_number`` failed.

    Exponential delays are ``base_delay * 2 ** (attempt_number - 1)``.  Jitter
    is additive and bounded by ``jitter_ratio`` (< 1), so successive delays
    never shrink; the cap is applied last.

    Args:
        attempt_number: 1-based number of the attempt that just failed.
        category: Classification of that failure.
        config: Retry tuning.
        rng: Random source for jitter.

    Returns:
        Delay in seconds.
    """
    strategy = category.policy.backoff
    if strategy == BackoffStrategy.NONE:
        return 0.0
    if strategy == BackoffStrategy.FIXED:
        return min(config.base_delay, config.max_delay)

    delay = config.base_delay * (2 ** (attempt_number - 1))
    if config.jitter and delay > 0:
        delay += (rng or random).uniform(0, delay * config.jitter_ratio)  # noqa: S311
    return min(delay, config.max_delay)


class ResilientExecutor:
    """Runs idempotent remote operations with retries and circuit breaking.

    Retry sleeps are ``asyncio`` suspensions, so only the task waiting on a
    backoff is paused.  ``shutdown()`` wakes every pending backoff and makes
    in-progress retry loops return a ``CANCELLED`` result instead of sleeping
    on.

    Args:
        breakers: Registry holding one breaker per operation class.
        config: Retry tuning.
        sleep: Optional coroutine used instead of the interruptible wait
            (tests pass a recorder here).
        rng: Random source for jitter.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry | None = None,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self.breakers = breakers or CircuitBreakerRegistry(
            failure_threshold=self.config.failure_threshold,
            cooldown=self.config.cooldown,
        )
        self._sleep = sleep
        self._rng = rng
        self._shutdown = asyncio.Event()

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown.is_set()

    def shutdown(self) -> None:
        """Abort pending backoff sleeps and refuse further retries."""
        self._shutdown.set()

    async def _wait(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds. Returns False if shut down meanwhile."""
        if self._sleep is not None:
            await self._sleep(delay)
            return not self._shutdown.is_set()
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def _invoke(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.config.call_timeout is None:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=self.config.call_timeout)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_class: str,
    ) -> ExecutionResult[T]:
        """Execute ``operation`` with classified retries.

        Args:
            operation: Zero-argument coroutine factory performing one remote call.
            operation_class: Label whose circuit breaker guards this call.

        Returns:
            ExecutionResult with the result on success, or the last error and
            every attempt record on failure.
        """
        attempts: list[AttemptRecord] = []
        attempt_number = 0

        while True:
            attempt_number += 1

            if self._shutdown.is_set():
                return self._cancelled(operation_class, attempt_number, attempts)

            breaker = self.breakers.peek(operation_class)
            if breaker is not None:
                try:
                    breaker.acquire()
                except CircuitBreakerOpen as exc:
                    attempts.append(
                        AttemptRecord(
                            attempt_number=attempt_number,
                            error_classification=ErrorCategory.CIRCUIT_OPEN,
                            delay_before_next_ms=0,
                            error_message=str(exc),
                        )
                    )
                    logger.warning(
                        "Circuit open for %s, skipping remote call (retry after %.1fs)",
                        operation_class,
                        exc.retry_after,
                    )
                    return ExecutionResult(
                        success=False,
                        error=exc,
                        error_classification=ErrorCategory.CIRCUIT_OPEN,
                        attempts=tuple(attempts),
                    )

            try:
                result = await self._invoke(operation)
            except asyncio.CancelledError:
                if breaker is not None:
                    breaker.cancel_trial()
                raise
            except Exception as exc:
                category = classify_error(exc)
                policy = category.policy

                if policy.trips_circuit_breaker:
                    self.breakers.get(operation_class).record_failure()
                elif breaker is not None:
                    breaker.release()

                retries_used = attempt_number - 1
                will_retry = policy.retryable and retries_used < policy.max_retries
                delay = (
                    compute_backoff(attempt_number, category, self.config, self._rng)
                    if will_retry
                    else 0.0
                )
                attempts.append(
                    AttemptRecord(
                        attempt_number=attempt_number,
                        error_classification=category,
                        delay_before_next_ms=int(delay * 1000),
                        error_message=str(exc),
                    )
                )

                if not will_retry:
                    logger.error(
                        "%s failed after %d attempt(s): %s (%s)",
                        operation_class,
                        attempt_number,
                        exc,
                        category.value,
                        extra={
                            "operation_class": operation_class,
                            "error_classification": category.value,
                            "attempts": attempt_number,
                        },
                    )
                    return ExecutionResult(
                        success=False,
                        error=exc,
                        error_classification=category,
                        attempts=tuple(attempts),
                    )

                logger.warning(
                    "Retry %d/%d for %s after %s (waiting %.2fs)",
                    attempt_number,
                    policy.max_retries,
                    operation_class,
                    category.value,
                    delay,
                )
                if not await self._wait(delay):
                    return self._cancelled(operation_class, attempt_number + 1, attempts)
                continue

            breaker = self.breakers.peek(operation_class)
            if breaker is not None:
                breaker.record_success()
            return ExecutionResult(success=True, result=result, attempts=tuple(attempts))

    def _cancelled(
        self,
        operation_class: str,
        attempt_number: int,
        attempts: list[AttemptRecord],
    ) -> ExecutionResult[Any]:
        logger.warning("Executor shut down, abandoning %s", operation_class)
        attempts.append(
            AttemptRecord(
                attempt_number=attempt_number,
                error_classification=ErrorCategory.CANCELLED,
                delay_before_next_ms=0,
                error_message="executor shut down",
            )
        )
        return ExecutionResult(
            success=False,
            error=asyncio.CancelledError("executor shut down"),
            error_classification=ErrorCategory.CANCELLED,
            attempts=tuple(attempts),
        )

"""Tests for the resilient executor: classified retries and circuit breaking."""

import asyncio
import random
from typing import Any

import httpx
import pytest

from leadsync.core.circuit_breaker import CircuitBreakerRegistry, CircuitState
from leadsync.core.error_classification import ErrorCategory
from leadsync.core.exceptions import CRMConnectionError, CRMRequestError
from leadsync.core.resilience import (
    AttemptRecord,
    ExecutionResult,
    ResilientExecutor,
    RetryConfig,
    compute_backoff,
)

OP = "crm.set_lead_status"


class FlakyOperation:
    """Raises the scripted errors in order, then returns ``value``."""

    def __init__(self, errors: list[Exception] | None = None, value: Any = "ok") -> None:
        self.errors = list(errors or [])
        self.value = value
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class AlwaysFails:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        raise self.error


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _network_error() -> Exception:
    return CRMConnectionError("connection reset")


class TestComputeBackoff:
    """Tests for compute_backoff."""

    def test_exponential_without_jitter(self) -> None:
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=False)
        delays = [compute_backoff(n, ErrorCategory.SERVER_ERROR, config) for n in range(1, 5)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self) -> None:
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=False)
        assert compute_backoff(6, ErrorCategory.NETWORK_ERROR, config) == 30.0
        assert compute_backoff(12, ErrorCategory.NETWORK_ERROR, config) == 30.0

    def test_jittered_delays_never_decrease(self) -> None:
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=True)
        for seed in range(25):
            rng = random.Random(seed)
            delays = [
                compute_backoff(n, ErrorCategory.RATE_LIMITED, config, rng) for n in range(1, 9)
            ]
            assert delays == sorted(delays)
            assert all(d <= 30.0 for d in delays)

    def test_jitter_bounded_by_ratio(self) -> None:
        config = RetryConfig(base_delay=2.0, max_delay=300.0, jitter=True, jitter_ratio=0.25)
        rng = random.Random(3)
        for _ in range(50):
            delay = compute_backoff(3, ErrorCategory.SERVER_ERROR, config, rng)
            assert 8.0 <= delay <= 10.0

    def test_non_retryable_category_has_no_delay(self) -> None:
        assert compute_backoff(1, ErrorCategory.PERMANENT, RetryConfig()) == 0.0


class TestRetries:
    """Tests for execute_with_retry retry behavior."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, executor: ResilientExecutor) -> None:
        op = FlakyOperation(value=302)

        result = await executor.execute_with_retry(op, OP)

        assert result.success is True
        assert result.result == 302
        assert result.attempts == ()
        assert result.call_count == 1

    @pytest.mark.asyncio
    async def test_transient_then_success(self, executor: ResilientExecutor, sleeps) -> None:
        op = FlakyOperation(errors=[CRMRequestError("busy", status_code=503)])

        result = await executor.execute_with_retry(op, OP)

        assert result.success is True
        assert op.calls == 2
        assert len(result.attempts) == 1
        assert result.attempts[0].error_classification == ErrorCategory.SERVER_ERROR
        assert result.attempts[0].delay_before_next_ms == 1000
        assert sleeps.delays == [1.0]

    @pytest.mark.asyncio
    async def test_retry_exhaustion_invokes_n_plus_one_times(
        self, executor: ResilientExecutor, sleeps
    ) -> None:
        """A transient category with 3 retries is invoked exactly 4 times."""
        op = AlwaysFails(_network_error())

        result = await executor.execute_with_retry(op, OP)

        assert result.success is False
        assert op.calls == 4
        assert result.call_count == 4
        assert result.error_classification == ErrorCategory.NETWORK_ERROR
        assert [a.attempt_number for a in result.attempts] == [1, 2, 3, 4]
        assert sleeps.delays == [1.0, 2.0, 4.0]
        assert result.attempts[-1].delay_before_next_ms == 0

    @pytest.mark.asyncio
    async def test_rate_limited_is_retried(self, executor: ResilientExecutor) -> None:
        op = AlwaysFails(CRMRequestError("slow down", status_code=429))

        result = await executor.execute_with_retry(op, OP)

        assert op.calls == 4
        assert result.error_classification == ErrorCategory.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(
        self, executor: ResilientExecutor, sleeps
    ) -> None:
        op = AlwaysFails(CRMRequestError("not found", status_code=404))

        result = await executor.execute_with_retry(op, OP)

        assert op.calls == 1
        assert result.error_classification == ErrorCategory.PERMANENT
        assert isinstance(result.error, CRMRequestError)
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_unknown_error_retried_once(self, executor: ResilientExecutor) -> None:
        op = AlwaysFails(KeyError("data"))

        result = await executor.execute_with_retry(op, OP)

        assert op.calls == 2
        assert result.error_classification == ErrorCategory.UNKNOWN

    @pytest.mark.asyncio
    async def test_call_timeout_counts_as_network_error(self, sleeps) -> None:
        async def hang() -> None:
            await asyncio.sleep(10)

        executor = ResilientExecutor(
            config=RetryConfig(jitter=False, call_timeout=0.01), sleep=sleeps
        )

        result = await executor.execute_with_retry(hang, OP)

        assert result.error_classification == ErrorCategory.NETWORK_ERROR
        assert len(result.attempts) == 4

    @pytest.mark.asyncio
    async def test_httpx_transport_error_is_retried(self, executor: ResilientExecutor) -> None:
        op = FlakyOperation(errors=[httpx.ConnectError("refused")], value="done")

        result = await executor.execute_with_retry(op, OP)

        assert result.success is True
        assert op.calls == 2


class TestCircuitBreaking:
    """Tests for breaker interaction inside the executor."""

    def _executor(self, sleeps, clock: FakeClock) -> ResilientExecutor:
        return ResilientExecutor(
            breakers=CircuitBreakerRegistry(failure_threshold=5, cooldown=60.0, clock=clock),
            config=RetryConfig(jitter=False),
            sleep=sleeps,
        )

    @pytest.mark.asyncio
    async def test_breaker_created_lazily(self, executor: ResilientExecutor) -> None:
        await executor.execute_with_retry(FlakyOperation(), OP)
        assert executor.breakers.peek(OP) is None

        await executor.execute_with_retry(AlwaysFails(_network_error()), OP)
        assert executor.breakers.peek(OP) is not None

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_short_circuits(self, sleeps) -> None:
        clock = FakeClock()
        executor = self._executor(sleeps, clock)
        failing = AlwaysFails(_network_error())

        # Four failures from the first call, the fifth opens the circuit.
        first = await executor.execute_with_retry(failing, OP)
        second = await executor.execute_with_retry(failing, OP)

        assert failing.calls == 5
        assert first.error_classification == ErrorCategory.NETWORK_ERROR
        assert second.error_classification == ErrorCategory.CIRCUIT_OPEN
        assert second.call_count == 1
        assert executor.breakers.get(OP).state == CircuitState.OPEN

        # While open, no remote call is made at all.
        healthy = FlakyOperation()
        third = await executor.execute_with_retry(healthy, OP)

        assert healthy.calls == 0
        assert third.success is False
        assert third.error_classification == ErrorCategory.CIRCUIT_OPEN
        assert third.call_count == 0

    @pytest.mark.asyncio
    async def test_trial_after_cooldown_closes_on_success(self, sleeps) -> None:
        clock = FakeClock()
        executor = self._executor(sleeps, clock)
        failing = AlwaysFails(_network_error())
        await executor.execute_with_retry(failing, OP)
        await executor.execute_with_retry(failing, OP)

        clock.now += 61
        healthy = FlakyOperation(value=302)
        result = await executor.execute_with_retry(healthy, OP)

        assert result.success is True
        assert healthy.calls == 1
        assert executor.breakers.get(OP).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self, sleeps) -> None:
        clock = FakeClock()
        executor = self._executor(sleeps, clock)
        failing = AlwaysFails(_network_error())
        await executor.execute_with_retry(failing, OP)
        await executor.execute_with_retry(failing, OP)
        calls_before = failing.calls

        clock.now += 61
        result = await executor.execute_with_retry(failing, OP)

        assert failing.calls == calls_before + 1
        assert result.error_classification == ErrorCategory.CIRCUIT_OPEN
        assert executor.breakers.get(OP).state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_permanent_errors_do_not_trip(self, executor: ResilientExecutor) -> None:
        op = AlwaysFails(CRMRequestError("bad request", status_code=400))
        for _ in range(10):
            await executor.execute_with_retry(op, OP)

        assert op.calls == 10
        assert executor.breakers.peek(OP) is None

    @pytest.mark.asyncio
    async def test_breakers_isolated_per_operation_class(self, sleeps) -> None:
        clock = FakeClock()
        executor = self._executor(sleeps, clock)
        failing = AlwaysFails(_network_error())
        await executor.execute_with_retry(failing, OP)
        await executor.execute_with_retry(failing, OP)

        other = FlakyOperation()
        result = await executor.execute_with_retry(other, "crm.add_activity")

        assert result.success is True
        assert other.calls == 1


class TestShutdown:
    """Tests for executor shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_before_call(self, executor: ResilientExecutor) -> None:
        executor.shutdown()
        op = FlakyOperation()

        result = await executor.execute_with_retry(op, OP)

        assert op.calls == 0
        assert result.error_classification == ErrorCategory.CANCELLED
        assert executor.is_shut_down is True

    @pytest.mark.asyncio
    async def test_shutdown_during_backoff(self) -> None:
        executor: ResilientExecutor

        async def sleep_then_shutdown(delay: float) -> None:
            executor.shutdown()

        executor = ResilientExecutor(config=RetryConfig(jitter=False), sleep=sleep_then_shutdown)
        op = AlwaysFails(_network_error())

        result = await executor.execute_with_retry(op, OP)

        assert op.calls == 1
        assert result.error_classification == ErrorCategory.CANCELLED
        assert [a.error_classification for a in result.attempts] == [
            ErrorCategory.NETWORK_ERROR,
            ErrorCategory.CANCELLED,
        ]

    @pytest.mark.asyncio
    async def test_shutdown_wakes_real_backoff(self) -> None:
        """The built-in wait returns as soon as the executor shuts down."""
        executor = ResilientExecutor(config=RetryConfig(base_delay=30.0, jitter=False))
        op = AlwaysFails(_network_error())

        task = asyncio.create_task(executor.execute_with_retry(op, OP))
        await asyncio.sleep(0.01)
        executor.shutdown()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.error_classification == ErrorCategory.CANCELLED


def test_execution_result_call_count_excludes_breaker_rejections() -> None:
    result: ExecutionResult[None] = ExecutionResult(
        success=False,
        attempts=(
            AttemptRecord(1, ErrorCategory.NETWORK_ERROR, 1000),
            AttemptRecord(2, ErrorCategory.CIRCUIT_OPEN, 0),
        ),
    )
    assert result.call_count == 1

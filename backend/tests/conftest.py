"""Shared fixtures for leadsync tests."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from leadsync.core.circuit_breaker import CircuitBreakerRegistry
from leadsync.core.config import get_settings
from leadsync.core.resilience import ResilientExecutor, RetryConfig
from leadsync.services.lead_directory import InMemoryLeadDirectory
from leadsync.services.lead_sync import SyncOrchestrator
from leadsync.services.outcome_store import InMemoryOutcomeStore


class FakeCRM:
    """In-memory CRM with scriptable failures.

    ``fail_with`` exceptions are raised by ``set_lead_status`` in order
    before it starts succeeding.
    """

    def __init__(self, statuses: dict[str, int | None] | None = None) -> None:
        self.statuses: dict[str, int | None] = dict(statuses or {})
        self.fail_with: list[Exception] = []
        self.read_fail_with: list[Exception] = []
        self.get_calls: list[str] = []
        self.set_calls: list[tuple[str, int]] = []

    async def get_lead_status(self, lead_id: str) -> int | None:
        self.get_calls.append(lead_id)
        if self.read_fail_with:
            raise self.read_fail_with.pop(0)
        return self.statuses.get(lead_id)

    async def set_lead_status(self, lead_id: str, status_id: int) -> None:
        self.set_calls.append((lead_id, status_id))
        if self.fail_with:
            raise self.fail_with.pop(0)
        self.statuses[lead_id] = status_id


class SleepRecorder:
    """Stands in for the executor's backoff wait."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def executor(sleeps: SleepRecorder) -> ResilientExecutor:
    config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=False)
    return ResilientExecutor(
        breakers=CircuitBreakerRegistry(failure_threshold=5, cooldown=60.0),
        config=config,
        sleep=sleeps,
    )


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def store() -> InMemoryOutcomeStore:
    return InMemoryOutcomeStore()


@pytest.fixture
def orchestrator(
    crm: FakeCRM, executor: ResilientExecutor, store: InMemoryOutcomeStore
) -> SyncOrchestrator:
    return SyncOrchestrator(crm=crm, executor=executor, store=store)


@pytest.fixture
def directory() -> InMemoryLeadDirectory:
    return InMemoryLeadDirectory({"jan@example.nl": "42"})


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch,
    orchestrator: SyncOrchestrator,
    directory: InMemoryLeadDirectory,
) -> Iterator[TestClient]:
    """Test client wired to the fake CRM; the lifespan is not run."""
    from leadsync.main import app

    monkeypatch.setenv("INSTANTLY_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    app.state.orchestrator = orchestrator
    app.state.lead_directory = directory
    yield TestClient(app, raise_server_exceptions=False)
    del app.state.orchestrator
    del app.state.lead_directory

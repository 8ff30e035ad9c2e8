"""Tests for health check endpoints."""

from fastapi.testclient import TestClient

from leadsync.core.resilience import ResilientExecutor


def test_health_check_healthy(client: TestClient) -> None:
    """Test health check reports healthy with no breaker activity."""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert data["circuit_breakers"] == {}
    assert data["uptime_seconds"] >= 0


def test_health_check_degraded_when_circuit_open(
    client: TestClient, executor: ResilientExecutor
) -> None:
    breaker = executor.breakers.get("crm.set_lead_status")
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()

    data = client.get("/health").json()

    assert data["status"] == "degraded"
    assert data["circuit_breakers"] == {"crm.set_lead_status": "open"}


def test_circuit_breaker_details(client: TestClient, executor: ResilientExecutor) -> None:
    executor.breakers.get("crm.add_activity").record_failure()

    response = client.get("/health/circuit-breakers")

    assert response.status_code == 200
    breakers = response.json()["circuit_breakers"]
    assert breakers["crm.add_activity"]["state"] == "closed"
    assert breakers["crm.add_activity"]["consecutive_failure_count"] == 1
    assert breakers["crm.add_activity"]["failure_threshold"] == 5


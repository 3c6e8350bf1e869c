"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import create_app


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    client = TestClient(create_app())
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "family-events"}
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed():
    client = TestClient(create_app())
    response = client.get("/healthz", headers={"X-Request-ID": "trace-123"})

    assert response.headers["X-Request-ID"] == "trace-123"


def test_readyz_endpoint_all_services_healthy(service_container):
    """Test readiness endpoint when database and services are healthy."""
    client = TestClient(create_app(container=service_container))
    with patch(
        "app.routes.health.db_health_check",
        AsyncMock(return_value={"healthy": True, "pool_stats": {"pool_size": 4}}),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True

    checks = data["checks"]
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 4
    assert isinstance(checks["database"]["latency_ms"], (int, float))
    assert checks["browser"]["ok"] is True
    assert checks["scheduler"]["running"] is False
    assert "discovery_scan" in checks["scheduler"]["tasks"]
    assert checks["payment_guard"] == {"ok": True, "violations": 0}


def test_readyz_endpoint_database_unhealthy(service_container):
    """Unhealthy database still returns 200 but overall_ok is False."""
    client = TestClient(create_app(container=service_container))
    with patch(
        "app.routes.health.db_health_check",
        AsyncMock(return_value={"healthy": False, "error": "Connection failed"}),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_endpoint_database_check_raises(service_container):
    client = TestClient(create_app(container=service_container))
    with patch(
        "app.routes.health.db_health_check", AsyncMock(side_effect=RuntimeError("pool closed"))
    ):
        response = client.get("/readyz")

    assert response.json()["checks"]["database"] == {
        "ok": False,
        "error": "RuntimeError: pool closed",
    }


def test_readyz_without_services():
    """Readiness fails before the service container is built."""
    client = TestClient(create_app())
    with patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["services"]["ok"] is False


def test_readyz_after_emergency_shutdown(service_container):
    service_container.shutdown_requested = True
    client = TestClient(create_app(container=service_container))
    with patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["scheduler"]["ok"] is False

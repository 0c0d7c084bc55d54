"""
Tests for the health, resilience introspection and metrics endpoints.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from resilience_toolkit import __version__
from resilience_toolkit.main import create_app
from resilience_toolkit.registry import ResilienceRegistry


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def registry(test_settings) -> ResilienceRegistry:
    """Registry whose upstream client never leaves the process."""
    http_client = httpx.AsyncClient(
        base_url=test_settings.upstream_base_url,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
    )
    return ResilienceRegistry.build(test_settings, http_client=http_client)


@pytest.fixture
def client(test_settings, registry):
    """TestClient with the lifespan running."""
    with TestClient(create_app(test_settings, registry=registry)) as test_client:
        yield test_client


# =============================================================================
# Health Endpoints
# =============================================================================


class TestHealthEndpoint:
    def test_health_returns_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": __version__}

    def test_root_returns_service_info(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Resilience Toolkit"


class TestResilienceEndpoint:
    def test_reports_every_component(self, client: TestClient) -> None:
        response = client.get("/health/resilience")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["overall_health"] == 100
        assert set(data) == {
            "status",
            "overall_health",
            "breakers",
            "cache",
            "deduplication",
            "recovery",
            "batch",
            "analytics",
        }
        assert data["breakers"]["upstream"]["state"] == "closed"

    def test_reports_cache_state(self, client: TestClient, registry) -> None:
        registry.cache.set("GET:/projects", {"items": []})
        registry.cache.get("GET:/projects")

        data = client.get("/health/resilience").json()

        assert data["cache"]["size"] == 1
        assert data["cache"]["hits"] == 1

    def test_open_breaker_reports_degraded(self, client: TestClient, registry) -> None:
        breaker = registry.breakers.get_breaker("upstream")
        for _ in range(registry.settings.circuit_breaker_failure_threshold):
            breaker.record_failure(RuntimeError("upstream down"))

        data = client.get("/health/resilience").json()

        assert data["status"] == "degraded"
        assert data["breakers"]["upstream"]["state"] == "open"

    def test_requires_registry(self, test_settings) -> None:
        # Without the context manager the lifespan never builds a registry.
        client = TestClient(create_app(test_settings))

        with pytest.raises(RuntimeError, match="not initialized"):
            client.get("/health/resilience")


class TestMetricsEndpoint:
    def test_prometheus_exposition(self, client: TestClient) -> None:
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "resilience_toolkit_requests_total" in response.text


class TestLifespan:
    def test_registry_released_on_shutdown(self, test_settings, registry) -> None:
        app = create_app(test_settings, registry=registry)

        with TestClient(app):
            assert app.state.registry is registry

        assert app.state.registry is None

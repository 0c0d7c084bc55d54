"""
Tests for the HTTP client factory and ResilientHTTPClient.

Upstream responses come from httpx.MockTransport handlers, so no request
leaves the process.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from resilience_toolkit import __version__
from resilience_toolkit.clients.http import ResilientHTTPClient, create_http_client
from resilience_toolkit.core.exceptions import (
    CircuitOpenError,
    RecoveryExhaustedError,
    RemoteCallError,
)
from resilience_toolkit.resilience.circuit_breaker import (
    AdaptiveCircuitBreaker,
    CircuitBreakerConfig,
)
from resilience_toolkit.resilience.error_recovery import ErrorRecoveryDispatcher, RecoveryContext
from resilience_toolkit.services.analytics import AnalyticsAggregator
from resilience_toolkit.services.cache import TTLCache
from resilience_toolkit.services.deduplication import RequestDeduplicator


BASE_URL = "https://upstream.test"


# =============================================================================
# Test Fixtures
# =============================================================================


class Upstream:
    """MockTransport handler replaying scripted responses, last one repeating."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses) or [httpx.Response(200, json={"ok": True})]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class TokenAuthenticator:
    """Credential provider whose token is refreshed by authenticate()."""

    def __init__(self) -> None:
        self.token = "expired"
        self.authenticate = AsyncMock(side_effect=self._refresh)

    async def _refresh(self) -> None:
        self.token = "fresh"

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(max_size=10, default_ttl_seconds=60.0, clock=clock)


@pytest.fixture
def recovery(clock, sleep) -> ErrorRecoveryDispatcher:
    return ErrorRecoveryDispatcher(clock=clock, sleep=sleep)


# =============================================================================
# Factory
# =============================================================================


class TestCreateHTTPClient:
    def test_returns_async_client(self) -> None:
        client = create_http_client(base_url=BASE_URL)

        assert isinstance(client, httpx.AsyncClient)
        assert str(client.base_url) == f"{BASE_URL}/"

    def test_default_headers(self) -> None:
        client = create_http_client(headers={"X-Team": "l10n"})

        assert client.headers["User-Agent"] == f"resilience-toolkit/{__version__}"
        assert client.headers["Accept"] == "application/json"
        assert client.headers["X-Team"] == "l10n"

    def test_timeout(self) -> None:
        client = create_http_client(timeout_seconds=12.5)

        assert client.timeout.read == 12.5
        assert client.timeout.connect == 12.5


# =============================================================================
# Requests
# =============================================================================


class TestRequests:
    @pytest.mark.asyncio
    async def test_json_response(self) -> None:
        upstream = Upstream(httpx.Response(200, json={"projectId": "p1"}))
        client = ResilientHTTPClient(mock_client(upstream))

        result = await client.get("/projects/p1", params={"include": "locales"})

        assert result == {"projectId": "p1"}
        assert upstream.requests[0].url.params["include"] == "locales"

    @pytest.mark.asyncio
    async def test_text_and_empty_responses(self) -> None:
        upstream = Upstream(
            httpx.Response(200, text="plain", headers={"content-type": "text/plain"}),
            httpx.Response(204),
        )
        client = ResilientHTTPClient(mock_client(upstream))

        assert await client.get("/a") == "plain"
        assert await client.post("/b", json={"x": 1}) is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        upstream = Upstream(httpx.Response(404, text="no such project"))
        client = ResilientHTTPClient(mock_client(upstream))

        with pytest.raises(RemoteCallError) as exc_info:
            await client.get("/projects/missing")

        assert exc_info.value.status_code == 404
        assert "no such project" in str(exc_info.value)
        assert exc_info.value.url == f"{BASE_URL}/projects/missing"

    @pytest.mark.asyncio
    async def test_auth_headers_sent(self) -> None:
        upstream = Upstream()
        authenticator = TokenAuthenticator()
        client = ResilientHTTPClient(mock_client(upstream), authenticator=authenticator)

        await client.get("/projects")

        assert upstream.requests[0].headers["Authorization"] == "Bearer expired"

    @pytest.mark.asyncio
    async def test_analytics_recorded(self, clock) -> None:
        analytics = AnalyticsAggregator(clock=clock)
        upstream = Upstream(httpx.Response(200, json={}), httpx.Response(500))
        client = ResilientHTTPClient(mock_client(upstream), analytics=analytics)

        await client.get("/a")
        with pytest.raises(RemoteCallError):
            await client.get("/b")

        stats = analytics.get_quick_stats()
        assert stats["operations_last_minute"] == 2
        assert stats["current_error_rate"] == 50.0


# =============================================================================
# Cache and Deduplication
# =============================================================================


class TestCaching:
    @pytest.mark.asyncio
    async def test_get_served_from_cache(self, cache: TTLCache) -> None:
        upstream = Upstream(httpx.Response(200, json={"n": 1}))
        client = ResilientHTTPClient(mock_client(upstream), cache=cache)

        first = await client.get("/jobs")
        second = await client.get("/jobs")

        assert first == second == {"n": 1}
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_cache_ttl(self, cache: TTLCache, clock) -> None:
        upstream = Upstream()
        client = ResilientHTTPClient(mock_client(upstream), cache=cache)

        await client.get("/jobs", cache_ttl_seconds=5.0)
        clock.advance(6.0)
        await client.get("/jobs")

        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_cache_bypass(self, cache: TTLCache) -> None:
        upstream = Upstream()
        client = ResilientHTTPClient(mock_client(upstream), cache=cache)

        await client.get("/jobs", use_cache=False)
        await client.get("/jobs", use_cache=False)

        assert len(upstream.requests) == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_post_not_cached(self, cache: TTLCache) -> None:
        upstream = Upstream()
        client = ResilientHTTPClient(mock_client(upstream), cache=cache)

        await client.post("/jobs", json={"name": "a"})
        await client.post("/jobs", json={"name": "a"})

        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_errors_not_cached(self, cache: TTLCache) -> None:
        upstream = Upstream(httpx.Response(404), httpx.Response(200, json={"n": 1}))
        client = ResilientHTTPClient(mock_client(upstream), cache=cache)

        with pytest.raises(RemoteCallError):
            await client.get("/jobs")

        assert await client.get("/jobs") == {"n": 1}

    @pytest.mark.asyncio
    async def test_invalidate(self, cache: TTLCache) -> None:
        upstream = Upstream()
        client = ResilientHTTPClient(mock_client(upstream), cache=cache)
        await client.get("/projects/p1/jobs")
        await client.get("/projects/p2/jobs")

        assert client.invalidate("/projects/p1") == 1

        await client.get("/projects/p1/jobs")
        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    async def test_concurrent_gets_deduplicated(self, clock) -> None:
        gate = asyncio.Event()
        requests: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            await gate.wait()
            return httpx.Response(200, json={"shared": True})

        client = ResilientHTTPClient(
            mock_client(handler), deduplicator=RequestDeduplicator(clock=clock)
        )

        tasks = [asyncio.ensure_future(client.get("/projects/p1")) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert results == [{"shared": True}] * 3
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_posts_not_deduplicated(self, clock) -> None:
        upstream = Upstream()
        client = ResilientHTTPClient(
            mock_client(upstream), deduplicator=RequestDeduplicator(clock=clock)
        )

        await asyncio.gather(client.post("/jobs"), client.post("/jobs"))

        assert len(upstream.requests) == 2


# =============================================================================
# Recovery and Circuit Breaking
# =============================================================================


class TestRecovery:
    @pytest.mark.asyncio
    async def test_server_error_retried(self, recovery, clock, sleep) -> None:
        upstream = Upstream(httpx.Response(503), httpx.Response(200, json={"ok": True}))
        breaker = AdaptiveCircuitBreaker("upstream", clock=clock)
        client = ResilientHTTPClient(
            mock_client(upstream), circuit_breaker=breaker, recovery=recovery
        )

        assert await client.get("/jobs") == {"ok": True}

        assert len(upstream.requests) == 2
        assert sleep.delays == [5.0]
        assert breaker.metrics.total_calls == 2
        assert breaker.metrics.total_failures == 1

    @pytest.mark.asyncio
    async def test_reauthenticates_on_401(self, recovery) -> None:
        authenticator = TokenAuthenticator()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer fresh":
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(401, text="token expired")

        client = ResilientHTTPClient(
            mock_client(handler), recovery=recovery, authenticator=authenticator
        )

        assert await client.get("/projects") == {"ok": True}
        authenticator.authenticate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_keeps_status(self, recovery, sleep) -> None:
        upstream = Upstream(httpx.Response(404, text="gone"))
        client = ResilientHTTPClient(mock_client(upstream), recovery=recovery)

        with pytest.raises(RecoveryExhaustedError) as exc_info:
            await client.get("/projects/x")

        assert exc_info.value.status_code == 404
        assert len(upstream.requests) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_oversized_body_split_by_items_key(self, recovery) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            if len(body["items"]) > 2:
                return httpx.Response(413, text="payload too large")
            return httpx.Response(200, json=body["items"])

        client = ResilientHTTPClient(mock_client(handler), recovery=recovery)

        result = await client.post(
            "/strings", json={"locale": "de-DE", "items": ["a", "b", "c", "d"]}, items_key="items"
        )

        assert result == ["a", "b", "c", "d"]
        assert [body["items"] for body in bodies] == [["a", "b", "c", "d"], ["a", "b"], ["c", "d"]]
        assert all(body["locale"] == "de-DE" for body in bodies)

    @pytest.mark.asyncio
    async def test_context_items_without_items_key_are_not_split(self, recovery) -> None:
        items = ["a", "b", "c", "d"]
        upstream = Upstream(httpx.Response(413), httpx.Response(200, json=items))
        client = ResilientHTTPClient(mock_client(upstream), recovery=recovery)

        result = await client.post(
            "/strings", json={"items": items}, context=RecoveryContext(items=items)
        )

        assert result == items
        assert [json.loads(r.content) for r in upstream.requests] == [{"items": items}] * 2

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self, clock) -> None:
        upstream = Upstream(httpx.Response(500))
        breaker = AdaptiveCircuitBreaker(
            "upstream",
            config=CircuitBreakerConfig(failure_threshold=1, adaptive_thresholds=False),
            clock=clock,
        )
        client = ResilientHTTPClient(mock_client(upstream), circuit_breaker=breaker)

        with pytest.raises(RemoteCallError):
            await client.get("/jobs")
        with pytest.raises(CircuitOpenError):
            await client.get("/jobs")

        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_recorded(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = ResilientHTTPClient(mock_client(handler))

        with pytest.raises(httpx.ConnectError):
            await client.get("/jobs")


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_owned_client_closed(self) -> None:
        http = mock_client(Upstream())

        async with ResilientHTTPClient(http, owns_client=True):
            pass

        assert http.is_closed

    @pytest.mark.asyncio
    async def test_borrowed_client_left_open(self) -> None:
        http = mock_client(Upstream())

        await ResilientHTTPClient(http).close()

        assert not http.is_closed
        await http.aclose()

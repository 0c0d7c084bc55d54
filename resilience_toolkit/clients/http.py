"""
HTTP Client Module

This module provides the httpx client factory and ResilientHTTPClient, which
composes the toolkit's components around every upstream request.

Request flow:
    GET cache lookup -> request deduplication -> error recovery
        -> circuit breaker -> httpx

Pattern: Factory pattern for creating configured HTTP clients
Pattern: Every component is optional and injected; none is created implicitly
"""

import time
from dataclasses import replace
from typing import Any, Optional

import httpx

from resilience_toolkit import __version__
from resilience_toolkit.core.exceptions import RemoteCallError
from resilience_toolkit.observability.logging import get_logger
from resilience_toolkit.observability.metrics import normalize_path, record_remote_call
from resilience_toolkit.resilience.circuit_breaker import AdaptiveCircuitBreaker
from resilience_toolkit.resilience.error_recovery import (
    ErrorRecoveryDispatcher,
    RecoveryContext,
)
from resilience_toolkit.services.analytics import AnalyticsAggregator
from resilience_toolkit.services.cache import TTLCache
from resilience_toolkit.services.deduplication import RequestDeduplicator, make_request_key

logger = get_logger(__name__)


# =============================================================================
# Default Configuration Constants
# =============================================================================

DEFAULT_TIMEOUT_SECONDS: float = 30.0
"""Default timeout for HTTP requests in seconds."""

DEFAULT_MAX_CONNECTIONS: int = 100
"""Maximum number of connections in the pool."""

DEFAULT_MAX_KEEPALIVE: int = 20
"""Maximum number of keepalive connections."""

DEFAULT_RETRY_COUNT: int = 3
"""Connection-level retries performed by the transport."""

DEDUPLICATED_METHODS = frozenset({"GET", "HEAD"})


# =============================================================================
# HTTP Client Factory
# =============================================================================


def create_http_client(
    base_url: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    max_connections: Optional[int] = None,
    max_keepalive: Optional[int] = None,
    retries: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
) -> httpx.AsyncClient:
    """
    Create a configured HTTP client with connection pooling and timeouts.

    Args:
        base_url: Base URL for all requests (e.g., "https://api.smartling.com")
        timeout_seconds: Request timeout in seconds (default: 30.0)
        max_connections: Maximum connections in pool (default: 100)
        max_keepalive: Maximum keepalive connections (default: 20)
        retries: Connection-level retries (default: 3)
        headers: Additional headers to include in all requests

    Returns:
        httpx.AsyncClient: Configured async HTTP client

    Example:
        >>> client = create_http_client(base_url="https://api.smartling.com")
        >>> async with client:
        ...     response = await client.get("/projects-api/v2/projects/p1")
    """
    timeout = timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS
    max_conn = max_connections if max_connections is not None else DEFAULT_MAX_CONNECTIONS
    max_keep = max_keepalive if max_keepalive is not None else DEFAULT_MAX_KEEPALIVE
    retry_count = retries if retries is not None else DEFAULT_RETRY_COUNT

    limits = httpx.Limits(
        max_connections=max_conn,
        max_keepalive_connections=max_keep,
    )

    default_headers = {
        "User-Agent": f"resilience-toolkit/{__version__}",
        "Accept": "application/json",
    }
    if headers:
        default_headers.update(headers)

    # Transport retries cover connection establishment only.
    transport = httpx.AsyncHTTPTransport(retries=retry_count, limits=limits)

    return httpx.AsyncClient(
        base_url=base_url or "",
        timeout=httpx.Timeout(timeout),
        headers=default_headers,
        transport=transport,
    )


# =============================================================================
# ResilientHTTPClient
# =============================================================================


class ResilientHTTPClient:
    """
    HTTP client wrapped in cache, deduplication, recovery and circuit breaking.

    Non-2xx responses raise RemoteCallError carrying the status code, so the
    error classifier sees 429/401/413/5xx exactly as the upstream sent them.

    Example:
        >>> client = ResilientHTTPClient(
        ...     create_http_client(base_url="https://api.smartling.com"),
        ...     cache=TTLCache(),
        ...     circuit_breaker=AdaptiveCircuitBreaker("smartling"),
        ...     recovery=ErrorRecoveryDispatcher(),
        ... )
        >>> project = await client.get("/projects-api/v2/projects/p1")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: Optional[TTLCache[Any]] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        circuit_breaker: Optional[AdaptiveCircuitBreaker] = None,
        recovery: Optional[ErrorRecoveryDispatcher] = None,
        authenticator: Any = None,
        analytics: Optional[AnalyticsAggregator] = None,
        owns_client: bool = False,
    ) -> None:
        """
        Initialize ResilientHTTPClient.

        Args:
            http_client: Underlying httpx client
            cache: Cache for successful GET responses
            deduplicator: Collapses concurrent identical GET/HEAD requests
            circuit_breaker: Breaker guarding every upstream call
            recovery: Dispatcher retrying failed calls
            authenticator: Object with ``async authenticate()`` and optionally
                ``auth_headers() -> dict``
            analytics: Receives one record per upstream call
            owns_client: Close http_client in close()
        """
        self._http = http_client
        self._cache = cache
        self._deduplicator = deduplicator
        self._breaker = circuit_breaker
        self._recovery = recovery
        self._authenticator = authenticator
        self._analytics = analytics
        self._owns_client = owns_client

    async def close(self) -> None:
        """Close the HTTP client if owned by this instance."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ResilientHTTPClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # =========================================================================
    # Requests
    # =========================================================================

    async def get(self, path: str, params: Optional[dict[str, Any]] = None, **kwargs: Any) -> Any:
        """Shorthand for request("GET", ...)."""
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        """Shorthand for request("POST", ...)."""
        return await self.request("POST", path, json=json, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        cache_ttl_seconds: Optional[float] = None,
        use_cache: bool = True,
        context: Optional[RecoveryContext] = None,
        items_key: Optional[str] = None,
    ) -> Any:
        """
        Perform a request through the resilience stack.

        Args:
            method: HTTP method
            path: Path relative to the client's base URL
            params: Query parameters
            json: JSON body
            cache_ttl_seconds: TTL for a cached GET response (cache default if None)
            use_cache: Read and write the cache for GET requests
            context: Recovery context (priority, fallback, items, ...)
            items_key: Field of the JSON body holding the item list. Split and
                reduced-load retries resend that field with the context's
                items. Without it, item-based recovery is a plain retry.

        Returns:
            Decoded JSON body, text body, or None for empty responses

        Raises:
            RemoteCallError: Non-2xx response
            CircuitOpenError: The circuit breaker rejected the call
            RecoveryExhaustedError: Recovery gave up
        """
        method = method.upper()
        key = make_request_key(method, path, params, json)
        cacheable = method == "GET" and use_cache and self._cache is not None

        if cacheable:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        if self._deduplicator is not None and method in DEDUPLICATED_METHODS:
            result = await self._deduplicator.deduped_call(
                key, self._call_with_recovery, method, path, params, json, context, items_key
            )
        else:
            result = await self._call_with_recovery(
                method, path, params, json, context, items_key
            )

        if cacheable and result is not None:
            self._cache.set(key, result, ttl_seconds=cache_ttl_seconds)
        return result

    def invalidate(self, fragment: str) -> int:
        """Drop cached responses whose key contains fragment."""
        if self._cache is None:
            return 0
        return self._cache.invalidate(fragment)

    async def _call_with_recovery(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]],
        json: Any,
        context: Optional[RecoveryContext],
        items_key: Optional[str] = None,
    ) -> Any:
        context = context or RecoveryContext()
        context = replace(
            context,
            operation_type=context.operation_type or f"{method} {normalize_path(path)}",
            client=context.client or self._authenticator,
        )

        if items_key is None or not isinstance(json, dict):
            # The body cannot follow the context's items, so never split it.
            items_key = None
            context = replace(context, items=None, batch_size=None)
        elif context.items is None:
            items = list(json.get(items_key) or [])
            context = replace(context, items=items, batch_size=len(items))

        async def attempt(ctx: RecoveryContext) -> Any:
            body = json
            if items_key is not None and ctx.items is not None:
                body = {**json, items_key: list(ctx.items)}
            if self._breaker is not None:
                return await self._breaker.execute(
                    self._send, method, path, params, body, fallback=ctx.fallback
                )
            return await self._send(method, path, params, body)

        if self._recovery is None:
            return await attempt(context)
        return await self._recovery.execute(attempt, context)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]],
        json: Any,
    ) -> Any:
        headers = self._auth_headers()
        endpoint = normalize_path(path)
        started = time.perf_counter()

        try:
            response = await self._http.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            self._record(method, endpoint, "error", time.perf_counter() - started, str(e))
            raise

        duration = time.perf_counter() - started
        if not response.is_success:
            self._record(method, endpoint, "failure", duration, f"HTTP {response.status_code}")
            raise RemoteCallError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                url=str(response.request.url),
            )

        self._record(method, endpoint, "success", duration)
        return self._decode(response)

    def _auth_headers(self) -> Optional[dict[str, str]]:
        provider = getattr(self._authenticator, "auth_headers", None)
        if callable(provider):
            return provider()
        return None

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        if "json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    def _record(
        self,
        method: str,
        endpoint: str,
        outcome: str,
        duration_seconds: float,
        error: Optional[str] = None,
    ) -> None:
        record_remote_call(method, endpoint, outcome, duration_seconds)
        if outcome != "success":
            logger.warning(
                "remote call failed",
                method=method,
                endpoint=endpoint,
                outcome=outcome,
                error=error,
            )
        if self._analytics is not None:
            self._analytics.record_operation(
                f"{method} {endpoint}",
                duration_seconds,
                outcome == "success",
                {"error": error} if error else None,
            )

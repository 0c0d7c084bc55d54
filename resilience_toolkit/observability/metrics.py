"""
Prometheus Metrics Module

This module provides Prometheus metrics for the cache, the request
deduplicator, upstream remote calls and the introspection API.

Breaker, recovery and batch metrics live in resilience/metrics.py.
"""

import re
import time
from typing import Any, Callable, Optional

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# =============================================================================
# Path Normalization (High Cardinality Prevention)
# =============================================================================

# Order matters: more specific patterns first
_PATH_PATTERNS = [
    (re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"), "/{id}"),
    (re.compile(r"/[0-9a-fA-F]{8,}(?=/|$)"), "/{id}"),
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
]


def normalize_path(path: str) -> str:
    """
    Normalize a URL path by replacing dynamic segments with placeholders.

    Upstream paths carry project and job identifiers, which would explode
    label cardinality if recorded verbatim.

    Examples:
        >>> normalize_path("/health")
        '/health'
        >>> normalize_path("/jobs-api/v3/projects/3a7b2c9d1/jobs")
        '/jobs-api/v3/projects/{id}/jobs'
    """
    if path == "/":
        return path

    normalized = path
    for pattern, replacement in _PATH_PATTERNS:
        normalized = pattern.sub(replacement, normalized)

    return normalized


# =============================================================================
# Introspection API Metrics
# =============================================================================

REQUESTS_TOTAL = Counter(
    name="resilience_toolkit_requests_total",
    documentation="Total number of HTTP requests served by the introspection API",
    labelnames=["method", "path", "status"],
)

REQUEST_DURATION_SECONDS = Histogram(
    name="resilience_toolkit_request_duration_seconds",
    documentation="Introspection API request duration in seconds",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# =============================================================================
# Cache and Deduplication Metrics
# =============================================================================

CACHE_OPERATIONS_TOTAL = Counter(
    name="resilience_toolkit_cache_operations_total",
    documentation="Total cache operations by result (hit/miss/eviction)",
    labelnames=["result"],
)

CACHE_SIZE = Gauge(
    name="resilience_toolkit_cache_entries",
    documentation="Current number of entries held by the TTL cache",
)

DEDUPLICATED_REQUESTS_TOTAL = Counter(
    name="resilience_toolkit_deduplicated_requests_total",
    documentation="Calls served without executing the operation",
    labelnames=["source"],
)

# =============================================================================
# Upstream Remote Call Metrics
# =============================================================================

REMOTE_CALLS_TOTAL = Counter(
    name="resilience_toolkit_remote_calls_total",
    documentation="Upstream remote calls by method, path and outcome",
    labelnames=["method", "path", "outcome"],
)

REMOTE_CALL_DURATION_SECONDS = Histogram(
    name="resilience_toolkit_remote_call_duration_seconds",
    documentation="Upstream remote call latency in seconds",
    labelnames=["method", "path"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_cache_operation(result: str, size: Optional[int] = None) -> None:
    """
    Record a cache operation.

    Args:
        result: "hit", "miss" or "eviction"
        size: Current cache size, updates the size gauge when given
    """
    CACHE_OPERATIONS_TOTAL.labels(result=result).inc()
    if size is not None:
        CACHE_SIZE.set(size)


def record_deduplicated_request(source: str) -> None:
    """
    Record a call that did not execute its operation.

    Args:
        source: "in_flight" (attached to a pending call) or "recent"
            (served from the grace window)
    """
    DEDUPLICATED_REQUESTS_TOTAL.labels(source=source).inc()


def record_remote_call(
    method: str,
    path: str,
    outcome: str,
    duration_seconds: float,
) -> None:
    """
    Record an upstream remote call.

    Args:
        method: HTTP method
        path: Request path (normalized before labelling)
        outcome: "success", "failure" (non-2xx) or "error" (transport)
        duration_seconds: Observed latency
    """
    normalized = normalize_path(path)
    REMOTE_CALLS_TOTAL.labels(method=method, path=normalized, outcome=outcome).inc()
    REMOTE_CALL_DURATION_SECONDS.labels(method=method, path=normalized).observe(
        duration_seconds
    )


# =============================================================================
# MetricsMiddleware ASGI Middleware
# =============================================================================


class MetricsMiddleware:
    """
    ASGI middleware for Prometheus metrics collection.

    This middleware:
    - Increments request counter per method/path/status
    - Records request latency histogram
    - Excludes /metrics path from metrics
    """

    def __init__(
        self,
        app: Callable[..., Any],
        exclude_paths: Optional[list[str]] = None,
    ) -> None:
        self.app = app
        self.exclude_paths = exclude_paths or ["/metrics"]

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        raw_path = scope.get("path", "/")
        path = normalize_path(raw_path)

        if raw_path in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status_code = "500"

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = str(message.get("status", 500))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.perf_counter() - start_time
            REQUESTS_TOTAL.labels(method=method, path=path, status=status_code).inc()
            REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(duration)


# =============================================================================
# Metrics Endpoint
# =============================================================================


def generate_metrics() -> str:
    """
    Generate Prometheus metrics text format.

    Returns:
        Prometheus exposition format text
    """
    return generate_latest(REGISTRY).decode("utf-8")

"""
Resilience Registry

Builds and owns the process-wide component instances of an application:
cache, deduplicator, circuit breaker manager, recovery dispatcher, batch
engine, analytics and the upstream HTTP client.

Library components never create globals; only the application composition
root builds a registry and keeps it for the process lifetime.
"""

from dataclasses import dataclass
from typing import Any, Optional

from resilience_toolkit.clients.http import ResilientHTTPClient, create_http_client
from resilience_toolkit.core.config import Settings
from resilience_toolkit.observability.logging import get_logger
from resilience_toolkit.resilience.batch_engine import BatchEngine
from resilience_toolkit.resilience.circuit_breaker import (
    CircuitBreakerManager,
    CircuitBreakerState,
)
from resilience_toolkit.resilience.error_recovery import ErrorRecoveryDispatcher
from resilience_toolkit.services.analytics import AnalyticsAggregator
from resilience_toolkit.services.cache import TTLCache
from resilience_toolkit.services.deduplication import RequestDeduplicator

logger = get_logger(__name__)

UPSTREAM_BREAKER_NAME = "upstream"


@dataclass
class ResilienceRegistry:
    """Component instances shared by an application."""

    settings: Settings
    cache: TTLCache[Any]
    deduplicator: RequestDeduplicator
    breakers: CircuitBreakerManager
    recovery: ErrorRecoveryDispatcher
    analytics: AnalyticsAggregator
    batch_engine: BatchEngine
    upstream: ResilientHTTPClient

    @classmethod
    def build(
        cls,
        settings: Settings,
        authenticator: Any = None,
        http_client: Optional[Any] = None,
    ) -> "ResilienceRegistry":
        """
        Build every component from settings.

        Args:
            settings: Application settings
            authenticator: Upstream credential provider (``async authenticate()``)
            http_client: Pre-configured httpx.AsyncClient (for testing)
        """
        cache: TTLCache[Any] = TTLCache.from_settings(settings)
        deduplicator = RequestDeduplicator.from_settings(settings)
        breakers = CircuitBreakerManager.from_settings(settings)
        recovery = ErrorRecoveryDispatcher.from_settings(settings)
        analytics = AnalyticsAggregator()
        batch_engine = BatchEngine.from_settings(
            settings, recovery=recovery, client=authenticator, analytics=analytics
        )

        owns_client = http_client is None
        upstream = ResilientHTTPClient(
            http_client
            or create_http_client(
                base_url=settings.upstream_base_url,
                timeout_seconds=settings.http_timeout_seconds,
            ),
            cache=cache,
            deduplicator=deduplicator,
            circuit_breaker=breakers.create_breaker(UPSTREAM_BREAKER_NAME),
            recovery=recovery,
            authenticator=authenticator,
            analytics=analytics,
            owns_client=owns_client,
        )

        logger.info(
            "resilience registry built",
            service=settings.service_name,
            upstream=settings.upstream_base_url,
        )
        return cls(
            settings=settings,
            cache=cache,
            deduplicator=deduplicator,
            breakers=breakers,
            recovery=recovery,
            analytics=analytics,
            batch_engine=batch_engine,
            upstream=upstream,
        )

    def is_degraded(self) -> bool:
        """True when any breaker is OPEN or overall health is below threshold."""
        if self.breakers.get_overall_health() < self.settings.circuit_breaker_health_score_threshold:
            return True
        statuses = self.breakers.get_all_statuses()["breakers"]
        return any(
            status["state"] == CircuitBreakerState.OPEN.value for status in statuses.values()
        )

    def get_status(self) -> dict[str, Any]:
        """Introspection snapshot of every component, as plain data."""
        self.analytics.record_cache_metrics(
            self.cache.hit_rate, len(self.cache), self.cache.get_stats()["evictions"]
        )
        breakers = self.breakers.get_all_statuses()
        return {
            "status": "degraded" if self.is_degraded() else "healthy",
            "overall_health": breakers["overall_health"],
            "breakers": breakers["breakers"],
            "cache": self.cache.get_stats(),
            "deduplication": self.deduplicator.get_stats(),
            "recovery": self.recovery.get_stats(),
            "batch": self.batch_engine.get_performance_metrics(),
            "analytics": self.analytics.get_quick_stats(),
        }

    async def aclose(self) -> None:
        """Release resources owned by the registry."""
        await self.upstream.close()

"""Services: TTL cache, request deduplication and analytics."""

from resilience_toolkit.services.analytics import (
    Alert,
    AlertThresholds,
    AlertType,
    AnalyticsAggregator,
)
from resilience_toolkit.services.cache import CacheEntry, TTLCache
from resilience_toolkit.services.deduplication import RequestDeduplicator, make_request_key

__all__ = [
    "Alert",
    "AlertThresholds",
    "AlertType",
    "AnalyticsAggregator",
    "CacheEntry",
    "TTLCache",
    "RequestDeduplicator",
    "make_request_key",
]

"""
Observability Package

This package provides observability infrastructure including:
- Structured JSON logging (structlog)
- Prometheus metrics for the cache, deduplicator, upstream calls and API
"""

from resilience_toolkit.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from resilience_toolkit.observability.metrics import (
    MetricsMiddleware,
    generate_metrics,
    normalize_path,
    record_cache_operation,
    record_deduplicated_request,
    record_remote_call,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Metrics
    "MetricsMiddleware",
    "generate_metrics",
    "normalize_path",
    "record_cache_operation",
    "record_deduplicated_request",
    "record_remote_call",
]

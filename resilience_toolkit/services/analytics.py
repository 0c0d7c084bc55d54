"""
Analytics Aggregator

This module keeps a rolling record of operation outcomes and derives
real-time metrics, alerts and performance reports from it.

Features:
- One-minute real-time metrics (average response time, error rate,
  requests per minute, cache hit rate)
- Alerts for slow responses, high error rates and failed batches,
  deduplicated per type for 5 minutes while unacknowledged, kept 1 hour
- Performance reports with per-operation breakdown, trends and
  recommendations
- Retention pruning of operation history (24 hours by default)
"""

import secrets
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from resilience_toolkit.observability.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

MINUTE_SECONDS = 60.0
HOUR_SECONDS = 3600.0
DEFAULT_RETENTION_SECONDS = 86400.0
ALERT_DEDUP_SECONDS = 300.0
ALERT_RETENTION_SECONDS = 3600.0
MAX_CATEGORY_SAMPLES = 1000
MIN_TREND_SAMPLES = 10
SLOW_OPERATION_SECONDS = 5.0
ERROR_PRONE_RATE = 0.05


# =============================================================================
# Records
# =============================================================================


class AlertType(str, Enum):
    """Kinds of alert raised by the aggregator."""

    SLOW_RESPONSE = "SLOW_RESPONSE"
    HIGH_ERROR_RATE = "HIGH_ERROR_RATE"
    FAILED_BATCHES = "FAILED_BATCHES"


@dataclass
class AlertThresholds:
    """Alert trigger levels."""

    error_rate_percent: float = 5.0
    response_time_seconds: float = 10.0
    failed_batches: int = 3


@dataclass
class OperationRecord:
    """One recorded operation outcome."""

    operation_type: str
    duration_seconds: float
    success: bool
    timestamp: float
    recorded_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Alert:
    """A raised alert."""

    id: str
    type: AlertType
    message: str
    severity: str
    timestamp: float
    raised_at: datetime
    data: Optional[dict[str, Any]] = None
    acknowledged: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        payload["raised_at"] = self.raised_at.isoformat()
        return payload


@dataclass
class RealtimeMetrics:
    """Metrics over the last minute of operations."""

    requests_per_minute: int = 0
    error_rate: float = 0.0
    average_response_seconds: float = 0.0
    cache_hit_rate: float = 0.0


# =============================================================================
# AnalyticsAggregator
# =============================================================================


class AnalyticsAggregator:
    """
    Rolling operation analytics with alerting.

    Example:
        >>> analytics = AnalyticsAggregator()
        >>> analytics.record_operation("get_jobs", 0.42, success=True)
        >>> analytics.get_quick_stats()["operations_last_minute"]
        1
    """

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize AnalyticsAggregator.

        Args:
            thresholds: Alert trigger levels
            retention_seconds: How long operation records are kept
            clock: Monotonic clock returning seconds (default: time.monotonic)
        """
        self._thresholds = thresholds or AlertThresholds()
        self._retention_seconds = retention_seconds
        self._clock = clock or time.monotonic

        self._operations: deque[OperationRecord] = deque()
        self._cache_samples: deque[dict[str, Any]] = deque(maxlen=MAX_CATEGORY_SAMPLES)
        self._batch_samples: deque[dict[str, Any]] = deque(maxlen=MAX_CATEGORY_SAMPLES)
        self._alerts: list[Alert] = []
        self._realtime = RealtimeMetrics()

    @property
    def thresholds(self) -> AlertThresholds:
        """Alert trigger levels."""
        return self._thresholds

    @property
    def realtime(self) -> RealtimeMetrics:
        """Metrics over the last minute."""
        return self._realtime

    # =========================================================================
    # Recording
    # =========================================================================

    def record_operation(
        self,
        operation_type: str,
        duration_seconds: float,
        success: bool,
        metadata: Optional[dict[str, Any]] = None,
    ) -> OperationRecord:
        """
        Record one operation outcome and re-evaluate alerts.

        Args:
            operation_type: Operation label
            duration_seconds: How long the operation took
            success: Whether it succeeded
            metadata: Free-form details kept with the record

        Returns:
            The stored record
        """
        record = OperationRecord(
            operation_type=operation_type,
            duration_seconds=duration_seconds,
            success=success,
            timestamp=self._clock(),
            recorded_at=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        self._operations.append(record)
        self.cleanup()
        self._update_realtime_metrics()
        self._check_operation_alerts(record)
        return record

    def record_cache_metrics(self, hit_rate: float, size: int, evictions: int = 0) -> None:
        """Record a cache sample (hit_rate in percent)."""
        self._realtime.cache_hit_rate = hit_rate
        self._cache_samples.append(
            {
                "hit_rate": hit_rate,
                "size": size,
                "evictions": evictions,
                "timestamp": self._clock(),
            }
        )

    def record_batch_metrics(
        self,
        batch_id: str,
        total_items: int,
        successful_items: int,
        duration_seconds: float,
        failed_items: int = 0,
    ) -> None:
        """
        Record a finished batch.

        Raises a FAILED_BATCHES alert once the number of batches with failed
        items within the last hour reaches the threshold.
        """
        self._batch_samples.append(
            {
                "batch_id": batch_id,
                "total_items": total_items,
                "successful_items": successful_items,
                "failed_items": failed_items,
                "success_rate": successful_items / total_items * 100 if total_items else 100.0,
                "duration_seconds": duration_seconds,
                "items_per_second": (
                    successful_items / duration_seconds if duration_seconds > 0 else 0.0
                ),
                "timestamp": self._clock(),
            }
        )

        since = self._clock() - HOUR_SECONDS
        failed_batches = sum(
            1
            for sample in self._batch_samples
            if sample["timestamp"] > since and sample["failed_items"] > 0
        )
        if failed_batches >= self._thresholds.failed_batches:
            self._add_alert(
                AlertType.FAILED_BATCHES,
                f"{failed_batches} batches with failed items in the last hour",
                "error",
                {"failed_batches": failed_batches},
            )

    # =========================================================================
    # Real-time Metrics and Alerts
    # =========================================================================

    def get_recent_operations(self, window_seconds: float) -> list[OperationRecord]:
        """Operations recorded within the last window_seconds."""
        since = self._clock() - window_seconds
        return [record for record in self._operations if record.timestamp > since]

    def _update_realtime_metrics(self) -> None:
        recent = self.get_recent_operations(MINUTE_SECONDS)
        if not recent:
            self._realtime.requests_per_minute = 0
            self._realtime.error_rate = 0.0
            self._realtime.average_response_seconds = 0.0
            return

        errors = sum(1 for record in recent if not record.success)
        self._realtime.requests_per_minute = len(recent)
        self._realtime.error_rate = errors / len(recent) * 100
        self._realtime.average_response_seconds = sum(
            record.duration_seconds for record in recent
        ) / len(recent)

    def _check_operation_alerts(self, record: OperationRecord) -> None:
        if record.duration_seconds > self._thresholds.response_time_seconds:
            self._add_alert(
                AlertType.SLOW_RESPONSE,
                f"Operation {record.operation_type} took {record.duration_seconds:.2f}s",
                "warning",
                {"operation_type": record.operation_type, "duration_seconds": record.duration_seconds},
            )

        if self._realtime.error_rate > self._thresholds.error_rate_percent:
            self._add_alert(
                AlertType.HIGH_ERROR_RATE,
                f"Error rate is {self._realtime.error_rate:.2f}%",
                "error",
            )

    def _add_alert(
        self,
        alert_type: AlertType,
        message: str,
        severity: str,
        data: Optional[dict[str, Any]] = None,
    ) -> Optional[Alert]:
        now = self._clock()
        self._alerts = [
            alert for alert in self._alerts if now - alert.timestamp < ALERT_RETENTION_SECONDS
        ]

        duplicate = any(
            alert.type == alert_type
            and not alert.acknowledged
            and now - alert.timestamp < ALERT_DEDUP_SECONDS
            for alert in self._alerts
        )
        if duplicate:
            return None

        alert = Alert(
            id=f"alert_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}",
            type=alert_type,
            message=message,
            severity=severity,
            timestamp=now,
            raised_at=datetime.now(timezone.utc),
            data=data,
        )
        self._alerts.append(alert)
        logger.warning("alert raised", alert_type=alert_type.value, severity=severity, message=message)
        return alert

    def acknowledge_alert(self, alert_id: str) -> bool:
        """
        Mark an alert as acknowledged.

        Returns:
            True if the alert exists
        """
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.acknowledged = True
                return True
        return False

    def get_active_alerts(self, limit: int = 10) -> list[Alert]:
        """Unacknowledged alerts, newest first."""
        active = [alert for alert in self._alerts if not alert.acknowledged]
        return sorted(active[-limit:], key=lambda alert: alert.timestamp, reverse=True)

    # =========================================================================
    # Reports
    # =========================================================================

    def generate_performance_report(self, time_range_seconds: float = HOUR_SECONDS) -> dict[str, Any]:
        """
        Summarize operations recorded within time_range_seconds.

        Returns:
            summary, operation_breakdown, trends, resource_metrics and
            recommendations; or a message when nothing was recorded
        """
        operations = self.get_recent_operations(time_range_seconds)
        if not operations:
            return {"message": "No operations found in the specified time range"}

        successful = sum(1 for record in operations if record.success)
        breakdown = self._breakdown(operations)

        return {
            "summary": {
                "total_operations": len(operations),
                "successful_operations": successful,
                "failed_operations": len(operations) - successful,
                "success_rate": round(successful / len(operations) * 100, 2),
                "average_duration_seconds": round(
                    sum(record.duration_seconds for record in operations) / len(operations), 4
                ),
                "time_range_seconds": time_range_seconds,
            },
            "operation_breakdown": [
                {
                    "operation": operation,
                    "count": stats["count"],
                    "average_duration_seconds": round(stats["total_seconds"] / stats["count"], 4),
                    "error_rate": round(stats["errors"] / stats["count"] * 100, 1),
                    "total_seconds": round(stats["total_seconds"], 4),
                }
                for operation, stats in breakdown.items()
            ],
            "trends": self._calculate_trends(operations),
            "resource_metrics": self._resource_metrics(time_range_seconds),
            "recommendations": self._generate_recommendations(breakdown),
        }

    @staticmethod
    def _breakdown(operations: list[OperationRecord]) -> dict[str, dict[str, Any]]:
        breakdown: dict[str, dict[str, Any]] = {}
        for record in operations:
            stats = breakdown.setdefault(
                record.operation_type, {"count": 0, "total_seconds": 0.0, "errors": 0}
            )
            stats["count"] += 1
            stats["total_seconds"] += record.duration_seconds
            if not record.success:
                stats["errors"] += 1
        return breakdown

    @staticmethod
    def _calculate_trends(operations: list[OperationRecord]) -> dict[str, Any]:
        if len(operations) < MIN_TREND_SAMPLES:
            return {"message": "Insufficient data for trend analysis"}

        ordered = sorted(operations, key=lambda record: record.timestamp)
        middle = len(ordered) // 2
        first, second = ordered[:middle], ordered[middle:]

        first_avg = sum(record.duration_seconds for record in first) / len(first)
        second_avg = sum(record.duration_seconds for record in second) / len(second)
        change = abs(second_avg - first_avg) / first_avg * 100 if first_avg > 0 else 0.0

        first_errors = sum(1 for record in first if not record.success) / len(first)
        second_errors = sum(1 for record in second if not record.success) / len(second)

        return {
            "performance": {
                "trend": "deteriorating" if second_avg > first_avg else "improving",
                "change_percent": round(change, 1),
                "first_period_average_seconds": round(first_avg, 4),
                "second_period_average_seconds": round(second_avg, 4),
            },
            "error_rate": {
                "trend": "increasing" if second_errors > first_errors else "decreasing",
                "first_period": round(first_errors * 100, 1),
                "second_period": round(second_errors * 100, 1),
            },
        }

    def _resource_metrics(self, time_range_seconds: float) -> dict[str, Any]:
        since = self._clock() - time_range_seconds
        cache = [sample for sample in self._cache_samples if sample["timestamp"] > since]
        batches = [sample for sample in self._batch_samples if sample["timestamp"] > since]

        return {
            "cache": (
                {
                    "average_hit_rate": round(sum(s["hit_rate"] for s in cache) / len(cache), 1),
                    "average_size": round(sum(s["size"] for s in cache) / len(cache)),
                    "total_evictions": sum(s["evictions"] for s in cache),
                }
                if cache
                else None
            ),
            "batches": (
                {
                    "total_batches": len(batches),
                    "average_items_per_second": round(
                        sum(s["items_per_second"] for s in batches) / len(batches)
                    ),
                    "average_success_rate": round(
                        sum(s["success_rate"] for s in batches) / len(batches), 1
                    ),
                    "total_items_processed": sum(s["successful_items"] for s in batches),
                }
                if batches
                else None
            ),
        }

    @staticmethod
    def _generate_recommendations(breakdown: dict[str, dict[str, Any]]) -> list[dict[str, str]]:
        recommendations = []

        slow = [
            operation
            for operation, stats in breakdown.items()
            if stats["total_seconds"] / stats["count"] > SLOW_OPERATION_SECONDS
        ]
        if slow:
            recommendations.append(
                {
                    "type": "performance",
                    "severity": "warning",
                    "message": f"Slow operations detected: {', '.join(slow)}",
                    "suggestion": "Optimize these operations or reduce batch sizes",
                }
            )

        error_prone = [
            operation
            for operation, stats in breakdown.items()
            if stats["errors"] / stats["count"] > ERROR_PRONE_RATE
        ]
        if error_prone:
            recommendations.append(
                {
                    "type": "reliability",
                    "severity": "error",
                    "message": f"High error rates in: {', '.join(error_prone)}",
                    "suggestion": "Review error patterns and recovery strategies",
                }
            )

        return recommendations

    # =========================================================================
    # Dashboard
    # =========================================================================

    def get_quick_stats(self) -> dict[str, Any]:
        """Headline numbers for the last hour and minute."""
        return {
            "operations_last_hour": len(self.get_recent_operations(HOUR_SECONDS)),
            "operations_last_minute": len(self.get_recent_operations(MINUTE_SECONDS)),
            "current_error_rate": round(self._realtime.error_rate, 1),
            "average_response_seconds": round(self._realtime.average_response_seconds, 4),
            "cache_hit_rate": round(self._realtime.cache_hit_rate, 1),
        }

    def get_top_operations(self, limit: int = 5) -> list[dict[str, Any]]:
        """Most frequent operations in the last hour."""
        counts: dict[str, int] = {}
        for record in self.get_recent_operations(HOUR_SECONDS):
            counts[record.operation_type] = counts.get(record.operation_type, 0) + 1
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [{"operation": operation, "count": count} for operation, count in ranked[:limit]]

    def get_recent_errors(self, limit: int = 5) -> list[dict[str, Any]]:
        """Most recent failed operations, newest first."""
        failures = [record for record in self._operations if not record.success][-limit:]
        return [
            {
                "operation": record.operation_type,
                "recorded_at": record.recorded_at.isoformat(),
                "duration_seconds": record.duration_seconds,
                "metadata": record.metadata,
            }
            for record in reversed(failures)
        ]

    def get_dashboard_data(self) -> dict[str, Any]:
        """Everything a monitoring dashboard needs, as plain data."""
        return {
            "realtime": asdict(self._realtime),
            "alerts": [alert.to_dict() for alert in self.get_active_alerts()],
            "quick_stats": self.get_quick_stats(),
            "top_operations": self.get_top_operations(),
            "recent_errors": self.get_recent_errors(),
        }

    # =========================================================================
    # Retention
    # =========================================================================

    def cleanup(self) -> int:
        """
        Drop records older than the retention window.

        Returns:
            Number of operation records removed
        """
        cutoff = self._clock() - self._retention_seconds
        removed = 0
        while self._operations and self._operations[0].timestamp <= cutoff:
            self._operations.popleft()
            removed += 1

        for samples in (self._cache_samples, self._batch_samples):
            while samples and samples[0]["timestamp"] <= cutoff:
                samples.popleft()

        return removed

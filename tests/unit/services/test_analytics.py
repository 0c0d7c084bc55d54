"""
Tests for AnalyticsAggregator.
"""

import pytest

from resilience_toolkit.services.analytics import (
    AlertThresholds,
    AlertType,
    AnalyticsAggregator,
)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def analytics(clock) -> AnalyticsAggregator:
    return AnalyticsAggregator(clock=clock)


# =============================================================================
# Real-time Metrics
# =============================================================================


class TestRealtimeMetrics:
    """Metrics are computed over the last minute."""

    def test_single_operation(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("get_jobs", 0.4, success=True)

        stats = analytics.get_quick_stats()
        assert stats["operations_last_minute"] == 1
        assert stats["operations_last_hour"] == 1
        assert stats["current_error_rate"] == 0.0
        assert stats["average_response_seconds"] == 0.4

    def test_error_rate(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("op", 0.1, success=True)
        analytics.record_operation("op", 0.1, success=False)

        assert analytics.realtime.error_rate == 50.0
        assert analytics.realtime.requests_per_minute == 2

    def test_old_operations_leave_the_minute_window(
        self, analytics: AnalyticsAggregator, clock
    ) -> None:
        analytics.record_operation("op", 0.1, success=False)
        clock.advance(61)
        analytics.record_operation("op", 0.1, success=True)

        assert analytics.realtime.requests_per_minute == 1
        assert analytics.realtime.error_rate == 0.0
        assert analytics.get_quick_stats()["operations_last_hour"] == 2

    def test_cache_metrics(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_cache_metrics(87.5, size=10, evictions=2)

        assert analytics.get_quick_stats()["cache_hit_rate"] == 87.5


# =============================================================================
# Alerts
# =============================================================================


class TestAlerts:
    """Alert raising, deduplication and acknowledgement."""

    def test_slow_response_alert(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("upload", 12.0, success=True)

        (alert,) = analytics.get_active_alerts()
        assert alert.type == AlertType.SLOW_RESPONSE
        assert alert.severity == "warning"
        assert alert.data["operation_type"] == "upload"

    def test_high_error_rate_alert(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("op", 0.1, success=False)

        types = [alert.type for alert in analytics.get_active_alerts()]
        assert AlertType.HIGH_ERROR_RATE in types

    def test_duplicates_suppressed_for_five_minutes(
        self, analytics: AnalyticsAggregator, clock
    ) -> None:
        analytics.record_operation("op", 11.0, success=True)
        clock.advance(120)
        analytics.record_operation("op", 11.0, success=True)
        assert len(analytics.get_active_alerts()) == 1

        clock.advance(200)
        analytics.record_operation("op", 11.0, success=True)
        assert len(analytics.get_active_alerts()) == 2

    def test_acknowledged_alert_allows_new_one(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("op", 11.0, success=True)
        (alert,) = analytics.get_active_alerts()

        assert analytics.acknowledge_alert(alert.id) is True
        assert analytics.get_active_alerts() == []

        analytics.record_operation("op", 11.0, success=True)
        assert len(analytics.get_active_alerts()) == 1

    def test_acknowledge_unknown(self, analytics: AnalyticsAggregator) -> None:
        assert analytics.acknowledge_alert("alert_missing") is False

    def test_failed_batches_alert(self, clock) -> None:
        analytics = AnalyticsAggregator(
            thresholds=AlertThresholds(failed_batches=2), clock=clock
        )

        analytics.record_batch_metrics("b1", 10, 8, 1.0, failed_items=2)
        assert analytics.get_active_alerts() == []

        analytics.record_batch_metrics("b2", 10, 9, 1.0, failed_items=1)
        (alert,) = analytics.get_active_alerts()
        assert alert.type == AlertType.FAILED_BATCHES
        assert alert.data == {"failed_batches": 2}

    def test_alert_to_dict(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("op", 11.0, success=True)
        (alert,) = analytics.get_active_alerts()

        payload = alert.to_dict()
        assert payload["type"] == "SLOW_RESPONSE"
        assert isinstance(payload["raised_at"], str)
        assert payload["acknowledged"] is False


# =============================================================================
# Reports
# =============================================================================


class TestPerformanceReport:
    def test_empty_report(self, analytics: AnalyticsAggregator) -> None:
        report = analytics.generate_performance_report()
        assert "message" in report

    def test_summary_and_breakdown(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("fast", 0.5, success=True)
        analytics.record_operation("fast", 1.5, success=True)
        analytics.record_operation("slow", 8.0, success=False)

        report = analytics.generate_performance_report()

        summary = report["summary"]
        assert summary["total_operations"] == 3
        assert summary["failed_operations"] == 1
        assert summary["success_rate"] == pytest.approx(66.67)

        by_name = {row["operation"]: row for row in report["operation_breakdown"]}
        assert by_name["fast"]["count"] == 2
        assert by_name["fast"]["average_duration_seconds"] == 1.0
        assert by_name["slow"]["error_rate"] == 100.0

        recommendation_types = {r["type"] for r in report["recommendations"]}
        assert recommendation_types == {"performance", "reliability"}

    def test_trends_need_enough_samples(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("op", 0.1, success=True)

        report = analytics.generate_performance_report()
        assert "message" in report["trends"]

    def test_deteriorating_trend(self, analytics: AnalyticsAggregator, clock) -> None:
        for duration in [0.1] * 5 + [0.3] * 5:
            analytics.record_operation("op", duration, success=True)
            clock.advance(1)

        trends = analytics.generate_performance_report()["trends"]
        assert trends["performance"]["trend"] == "deteriorating"
        assert trends["performance"]["change_percent"] == pytest.approx(200.0)

    def test_resource_metrics(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("op", 0.1, success=True)
        analytics.record_cache_metrics(50.0, size=4, evictions=1)
        analytics.record_batch_metrics("b1", 10, 10, 2.0)

        resources = analytics.generate_performance_report()["resource_metrics"]
        assert resources["cache"]["total_evictions"] == 1
        assert resources["batches"]["total_batches"] == 1
        assert resources["batches"]["average_items_per_second"] == 5


# =============================================================================
# Dashboard and Retention
# =============================================================================


class TestDashboard:
    def test_dashboard_shape(self, analytics: AnalyticsAggregator) -> None:
        analytics.record_operation("a", 0.1, success=True)
        analytics.record_operation("a", 0.1, success=True)
        analytics.record_operation("b", 0.1, success=False, metadata={"error": "boom"})

        data = analytics.get_dashboard_data()

        assert set(data) == {"realtime", "alerts", "quick_stats", "top_operations", "recent_errors"}
        assert data["top_operations"][0] == {"operation": "a", "count": 2}
        assert data["recent_errors"][0]["metadata"] == {"error": "boom"}


class TestRetention:
    def test_cleanup_drops_old_records(self, clock) -> None:
        analytics = AnalyticsAggregator(retention_seconds=100.0, clock=clock)
        analytics.record_operation("op", 0.1, success=True)
        clock.advance(101)

        assert analytics.cleanup() == 1
        assert analytics.get_recent_operations(1000) == []

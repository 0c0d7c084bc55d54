"""
Pytest configuration for the resilience toolkit test suite.

This configuration sets up:
- Test markers for categorization
- A fake monotonic clock and a recording async sleep, so time-dependent
  components are tested without waiting
- Settings built without reading the environment
"""

import pytest

from resilience_toolkit.core.config import Settings


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """
    Register custom markers for test categorization.

    - unit: Tests for individual components
    - integration: Tests wiring several components together
    - slow: Tests that take a long time to run
    """
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for component interactions")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


# =============================================================================
# Simulated Time
# =============================================================================


class FakeClock:
    """Monotonic clock whose time only moves when advanced."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep that records delays and advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Fake monotonic clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    """Recording sleep bound to the fake clock."""
    return RecordingSleep(clock)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings with test-friendly values.

    Constructed directly so the developer's environment cannot leak in.
    """
    return Settings(
        service_name="resilience-toolkit-test",
        environment="development",
        log_level="DEBUG",
        cache_max_size=50,
        cache_default_ttl_seconds=60.0,
        dedup_grace_seconds=1.0,
        circuit_breaker_failure_threshold=3,
        circuit_breaker_recovery_time_seconds=30.0,
        upstream_base_url="https://upstream.test",
        http_timeout_seconds=5.0,
    )

"""
Tests for core configuration.

Settings are built from explicit keyword arguments or from monkeypatched
RESILIENCE_* environment variables.
"""

import pytest
from pydantic import ValidationError

from resilience_toolkit.core.config import Settings, get_settings


class TestSettingsDefaults:
    """Default values."""

    def test_defaults(self) -> None:
        """Defaults match the documented component defaults."""
        settings = Settings()

        assert settings.cache_max_size == 1000
        assert settings.cache_default_ttl_seconds == 300.0
        assert settings.dedup_grace_seconds == 5.0
        assert settings.circuit_breaker_failure_threshold == 5
        assert settings.circuit_breaker_recovery_time_seconds == 60.0
        assert settings.circuit_breaker_health_score_threshold == 50.0
        assert settings.batch_chunk_size == 100
        assert settings.batch_min_chunk_size == 10
        assert settings.batch_max_chunk_size == 500

    def test_get_settings_is_cached(self) -> None:
        """get_settings returns the same instance on repeated calls."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestSettingsEnvironment:
    """Loading from RESILIENCE_ environment variables."""

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Values are read from prefixed variables."""
        monkeypatch.setenv("RESILIENCE_CACHE_MAX_SIZE", "5000")
        monkeypatch.setenv("RESILIENCE_LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.cache_max_size == 5000
        assert settings.log_level == "DEBUG"


class TestSettingsValidation:
    """Validators reject inconsistent values."""

    def test_rejects_unknown_log_level(self) -> None:
        with pytest.raises(ValidationError):
            Settings(log_level="verbose")

    def test_rejects_bad_upstream_url(self) -> None:
        with pytest.raises(ValidationError):
            Settings(upstream_base_url="ftp://example.com")

    def test_strips_trailing_slash(self) -> None:
        settings = Settings(upstream_base_url="https://api.example.com/")
        assert settings.upstream_base_url == "https://api.example.com"

    def test_rejects_chunk_size_outside_bounds(self) -> None:
        """batch_chunk_size must lie in [min, max]."""
        with pytest.raises(ValidationError):
            Settings(batch_chunk_size=5, batch_min_chunk_size=10)

    def test_rejects_inverted_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Settings(batch_min_chunk_size=100, batch_max_chunk_size=50, batch_chunk_size=60)

    def test_rejects_non_positive_cache_size(self) -> None:
        with pytest.raises(ValidationError):
            Settings(cache_max_size=0)

"""
Core configuration module for the resilience toolkit.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the RESILIENCE_ prefix.

Components never read settings on their own. Each one exposes a
``from_settings()`` factory that the composition root (``main.py``) calls,
so tests can build independent instances with explicit arguments.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All fields use the RESILIENCE_ prefix for environment variables.
    Example: RESILIENCE_CACHE_MAX_SIZE=5000
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="resilience-toolkit",
        description="Name of the service for logging and identification",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # TTL Cache Configuration
    # =========================================================================
    cache_max_size: int = Field(
        default=1000,
        ge=1,
        le=1_000_000,
        description="Maximum number of entries held by the TTL cache",
    )
    cache_default_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Default time-to-live for cache entries",
    )

    # =========================================================================
    # Request Deduplication Configuration
    # =========================================================================
    dedup_grace_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="Seconds a settled result is retained to absorb request bursts",
    )

    # =========================================================================
    # Circuit Breaker Configuration
    # =========================================================================
    circuit_breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of failures before the circuit opens",
    )
    circuit_breaker_recovery_time_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Base seconds to wait before probing an open circuit",
    )
    circuit_breaker_monitoring_period_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Rolling window used for failure-rate analysis",
    )
    circuit_breaker_health_score_threshold: float = Field(
        default=50.0,
        ge=0.0,
        le=100.0,
        description="Health score below which calls are routed through degraded mode",
    )
    circuit_breaker_adaptive_thresholds: bool = Field(
        default=True,
        description="Recalculate the failure threshold from the recent failure rate",
    )
    circuit_breaker_degraded_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=600.0,
        description="Timeout bound for calls routed through the degraded timeout strategy",
    )

    # =========================================================================
    # Error Recovery Configuration
    # =========================================================================
    recovery_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Timeout bound for retries issued by the TIMEOUT recovery strategy",
    )

    # =========================================================================
    # Batch Engine Configuration
    # =========================================================================
    batch_chunk_size: int = Field(
        default=100,
        ge=1,
        description="Initial number of items per chunk",
    )
    batch_min_chunk_size: int = Field(
        default=10,
        ge=1,
        description="Lower bound for adaptive chunk sizing",
    )
    batch_max_chunk_size: int = Field(
        default=500,
        ge=1,
        description="Upper bound for adaptive chunk sizing",
    )
    batch_delay_between_chunks_seconds: float = Field(
        default=0.2,
        ge=0.0,
        le=60.0,
        description="Pause inserted between consecutive chunks",
    )
    batch_adaptive_sizing: bool = Field(
        default=True,
        description="Scale the chunk size from observed chunk latency",
    )
    batch_target_chunk_duration_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Per-chunk duration the adaptive sizing aims for",
    )

    # =========================================================================
    # Upstream HTTP Configuration
    # =========================================================================
    upstream_base_url: str = Field(
        default="https://api.smartling.com",
        description="Base URL of the remote API wrapped by the resilient client",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Timeout in seconds for upstream HTTP calls",
    )

    model_config = {
        "env_prefix": "RESILIENCE_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Validators
    # =========================================================================
    @field_validator("upstream_base_url")
    @classmethod
    def validate_upstream_base_url(cls, v: str) -> str:
        """Validate upstream URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Upstream URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_chunk_bounds(self) -> "Settings":
        """Chunk size must sit inside the adaptive bounds."""
        if self.batch_min_chunk_size > self.batch_max_chunk_size:
            raise ValueError("batch_min_chunk_size must not exceed batch_max_chunk_size")
        if not self.batch_min_chunk_size <= self.batch_chunk_size <= self.batch_max_chunk_size:
            raise ValueError(
                "batch_chunk_size must lie within "
                f"[{self.batch_min_chunk_size}, {self.batch_max_chunk_size}]"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses functools.lru_cache to ensure only one Settings instance is created.
    Only the composition root should call this.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()

"""
Core module for the resilience toolkit.

This module contains configuration and the exception hierarchy.
"""

from resilience_toolkit.core.config import Settings, get_settings
from resilience_toolkit.core.exceptions import (
    BatchConfigurationError,
    CircuitBreakerError,
    CircuitOpenError,
    DeduplicationPropagatedError,
    ErrorCode,
    OperationTimeoutError,
    RecoveryExhaustedError,
    RemoteCallError,
    ResilienceToolkitException,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "ErrorCode",
    "ResilienceToolkitException",
    "RemoteCallError",
    "CircuitBreakerError",
    "CircuitOpenError",
    "OperationTimeoutError",
    "RecoveryExhaustedError",
    "DeduplicationPropagatedError",
    "BatchConfigurationError",
]

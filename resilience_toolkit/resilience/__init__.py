"""
Resilience: error classification, timeout racing, adaptive circuit breaker,
error recovery and batch processing.
"""

from resilience_toolkit.resilience.batch_engine import BatchEngine
from resilience_toolkit.resilience.circuit_breaker import (
    AdaptiveCircuitBreaker,
    BackoffStrategy,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitBreakerState,
    DegradedStrategy,
)
from resilience_toolkit.resilience.classification import (
    ErrorKind,
    classify_error,
    extract_status_code,
)
from resilience_toolkit.resilience.error_recovery import (
    DEFAULT_STRATEGIES,
    ErrorRecoveryDispatcher,
    RecoveryAction,
    RecoveryContext,
    RecoveryStrategy,
    merge_results,
)
from resilience_toolkit.resilience.timeout import call_with_timeout

__all__ = [
    "AdaptiveCircuitBreaker",
    "BackoffStrategy",
    "BatchEngine",
    "CircuitBreakerConfig",
    "CircuitBreakerManager",
    "CircuitBreakerState",
    "DEFAULT_STRATEGIES",
    "DegradedStrategy",
    "ErrorKind",
    "ErrorRecoveryDispatcher",
    "RecoveryAction",
    "RecoveryContext",
    "RecoveryStrategy",
    "call_with_timeout",
    "classify_error",
    "extract_status_code",
    "merge_results",
]

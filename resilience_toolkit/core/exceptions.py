"""
Custom exceptions for the resilience toolkit.

This module provides a hierarchy of custom exceptions. All exceptions inherit
from ResilienceToolkitException and include error codes so callers can tell a
blocked call (CIRCUIT_OPEN) apart from a call that was attempted and failed.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resilience_toolkit.resilience.classification import ErrorKind


# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(str, Enum):
    """
    Error codes for resilience toolkit exceptions.

    These codes provide a consistent way to identify error types
    in logs and in the introspection API.
    """

    TOOLKIT_ERROR = "TOOLKIT_ERROR"
    REMOTE_CALL_ERROR = "REMOTE_CALL_ERROR"
    CIRCUIT_BREAKER_ERROR = "CIRCUIT_BREAKER_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    NO_FALLBACK = "NO_FALLBACK"
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"
    RECOVERY_EXHAUSTED = "RECOVERY_EXHAUSTED"
    DEDUPLICATION_PROPAGATED = "DEDUPLICATION_PROPAGATED"
    BATCH_CONFIGURATION_ERROR = "BATCH_CONFIGURATION_ERROR"


# =============================================================================
# Base Exception
# =============================================================================


class ResilienceToolkitException(Exception):
    """
    Base exception for all resilience toolkit errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.TOOLKIT_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# RemoteCallError
# =============================================================================


class RemoteCallError(ResilienceToolkitException):
    """
    Exception for a remote call that was attempted and failed.

    Raised by the resilient HTTP client for non-2xx responses. The
    status code drives error classification.

    Attributes:
        status_code: HTTP status code returned by the remote (if any).
        url: Requested URL (if known).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        error_code: str = ErrorCode.REMOTE_CALL_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.status_code = status_code
        self.url = url


# =============================================================================
# Circuit Breaker Errors
# =============================================================================


class CircuitBreakerError(ResilienceToolkitException):
    """
    Exception raised by a circuit breaker itself.

    Covers degraded-mode failures such as a missing fallback.

    Attributes:
        circuit_name: Name of the circuit breaker that raised.
    """

    def __init__(
        self,
        circuit_name: str,
        message: str = "Circuit breaker error",
        error_code: str = ErrorCode.CIRCUIT_BREAKER_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            f"CircuitBreakerError[{circuit_name}]: {message}", error_code, **kwargs
        )
        self.circuit_name = circuit_name


class CircuitOpenError(CircuitBreakerError):
    """
    Exception raised when a call is blocked by an open circuit.

    No remote call was attempted.
    """

    def __init__(self, circuit_name: str, message: str = "Circuit is open") -> None:
        super().__init__(circuit_name, message, error_code=ErrorCode.CIRCUIT_OPEN)


# =============================================================================
# OperationTimeoutError
# =============================================================================


class OperationTimeoutError(ResilienceToolkitException):
    """
    Exception raised when an operation loses the race against its timeout.

    Attributes:
        timeout_seconds: The bound that elapsed.
    """

    def __init__(
        self,
        timeout_seconds: float,
        message: str | None = None,
        error_code: str = ErrorCode.OPERATION_TIMEOUT,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message or f"Operation timeout after {timeout_seconds:.3f}s",
            error_code,
            **kwargs,
        )
        self.timeout_seconds = timeout_seconds


# =============================================================================
# RecoveryExhaustedError
# =============================================================================


class RecoveryExhaustedError(ResilienceToolkitException):
    """
    Exception raised when the recovery dispatcher gives up.

    Raised with ``raise ... from original_error`` so the cause chain is kept.

    Attributes:
        error_kind: Classification of the last error.
        attempts: Attempt number at which recovery stopped.
        original_error: The last underlying error.
        context: The recovery context in effect.
    """

    def __init__(
        self,
        original_error: BaseException,
        error_kind: "ErrorKind",
        attempts: int,
        context: Any = None,
        error_code: str = ErrorCode.RECOVERY_EXHAUSTED,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            f"{original_error} (after {attempts} attempts)",
            error_code,
            **kwargs,
        )
        self.original_error = original_error
        self.error_kind = error_kind
        self.attempts = attempts
        self.context = context
        self.recovery_failed = True

    @property
    def status_code(self) -> int | None:
        """Status code of the underlying error, if it had one."""
        return getattr(self.original_error, "status_code", None)


# =============================================================================
# DeduplicationPropagatedError
# =============================================================================


class DeduplicationPropagatedError(ResilienceToolkitException):
    """
    Original error replayed to a waiter that shared an in-flight call.

    The message is identical to the original error so every caller of a
    deduplicated call sees the same failure text.

    Attributes:
        key: Deduplication key of the shared call.
        original_error: The error raised by the single execution.
    """

    def __init__(
        self,
        key: str,
        original_error: BaseException,
        error_code: str = ErrorCode.DEDUPLICATION_PROPAGATED,
        **kwargs: Any,
    ) -> None:
        super().__init__(str(original_error), error_code, **kwargs)
        self.key = key
        self.original_error = original_error

    @property
    def status_code(self) -> int | None:
        """Status code of the underlying error, if it had one."""
        return getattr(self.original_error, "status_code", None)


# =============================================================================
# BatchConfigurationError
# =============================================================================


class BatchConfigurationError(ResilienceToolkitException):
    """
    Exception for invalid batch engine configuration.

    Attributes:
        field: Name of the offending setting.
        value: The rejected value.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        error_code: str = ErrorCode.BATCH_CONFIGURATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.field = field
        self.value = value

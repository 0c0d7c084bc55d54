"""
Error Recovery Dispatcher

This module classifies a failed remote call and applies a per-kind recovery
strategy, retrying recursively until success, exhaustion, or an error that
must not be retried.

Strategies:
    RATE_LIMIT         exponential backoff with jitter, retry as-is
    TIMEOUT            retry with reduced load, bounded by call_with_timeout
    AUTH_ERROR         re-authenticate through context.client, retry once
    PAYLOAD_TOO_LARGE  split items in half, recurse on halves, merge results
    SERVER_ERROR       retry through context.circuit_breaker when supplied
    NETWORK_ERROR      simple bounded retry with backoff
    UNKNOWN            simple bounded retry with backoff (low budget)

Operations receive the (possibly modified) RecoveryContext as their single
argument: ``await operation(context)``. Modified contexts are copies; the
caller's context is never mutated.

CircuitOpenError and RecoveryExhaustedError are never retried.
"""

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from resilience_toolkit.core.exceptions import CircuitOpenError, RecoveryExhaustedError
from resilience_toolkit.observability.logging import get_logger
from resilience_toolkit.resilience.classification import (
    ErrorKind,
    classify_error,
    extract_status_code,
)
from resilience_toolkit.resilience.metrics import record_recovery_attempt
from resilience_toolkit.resilience.timeout import call_with_timeout

if TYPE_CHECKING:
    from resilience_toolkit.resilience.circuit_breaker import AdaptiveCircuitBreaker

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RECOVERY_TIMEOUT_SECONDS = 30.0
MAX_ERROR_HISTORY = 1000
MAX_PRIORITY_RETRIES = 7
MIN_DELAY_SECONDS = 0.1
JITTER_RATIO = 0.25
BATCH_REDUCE_RATIO = 0.3

HOUR_SECONDS = 3600.0
DAY_SECONDS = 86400.0


# =============================================================================
# Context and Strategies
# =============================================================================


@dataclass
class RecoveryContext:
    """
    Describes the operation being recovered.

    Attributes:
        operation_type: Free-form label ("batch", "get_jobs", ...)
        project_id: Upstream project the operation targets
        priority: "high" raises the retry budget
        batch_size: Load hint reduced by the TIMEOUT strategy
        items: Item list split by PAYLOAD_TOO_LARGE and chunked by TIMEOUT
        client: Object exposing ``async authenticate()``
        fallback: Value provider used by circuit breaker degraded mode
        circuit_breaker: Breaker used by the SERVER_ERROR strategy
        timeout_seconds: Bound for the TIMEOUT strategy's retries
        chunk_index: Index of the batch chunk being processed
        total_chunks: Number of planned chunks in the batch
        chunk_size: Size of the batch chunk being processed
    """

    operation_type: Optional[str] = None
    project_id: Optional[str] = None
    priority: Optional[str] = None
    batch_size: Optional[int] = None
    items: Optional[list[Any]] = None
    client: Any = None
    fallback: Optional[Callable[[], Any]] = None
    circuit_breaker: Optional["AdaptiveCircuitBreaker"] = None
    timeout_seconds: Optional[float] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    chunk_size: Optional[int] = None

    def summary(self) -> dict[str, Any]:
        """Loggable subset of the context."""
        return {
            "operation_type": self.operation_type,
            "project_id": self.project_id,
            "batch_size": self.batch_size,
            "items": len(self.items) if self.items is not None else None,
            "chunk_index": self.chunk_index,
        }


class RecoveryAction(str, Enum):
    """What a strategy does before retrying."""

    EXPONENTIAL_BACKOFF = "exponential_backoff"
    REDUCED_LOAD = "retry_with_reduced_load"
    REAUTHENTICATE = "reauthenticate_and_retry"
    SPLIT = "split_and_retry"
    CIRCUIT_BREAKER_RETRY = "circuit_breaker_retry"
    SIMPLE_RETRY = "simple_retry"


@dataclass(frozen=True)
class RecoveryStrategy:
    """Retry budget, delay policy and action for one ErrorKind."""

    action: RecoveryAction
    max_retries: int
    base_delay_seconds: float = 0.0
    max_delay_seconds: Optional[float] = None
    jitter: bool = False
    reduce_ratio: float = 0.5
    split_ratio: float = 0.5


DEFAULT_STRATEGIES: dict[ErrorKind, RecoveryStrategy] = {
    ErrorKind.RATE_LIMIT: RecoveryStrategy(
        action=RecoveryAction.EXPONENTIAL_BACKOFF,
        max_retries=5,
        base_delay_seconds=2.0,
        max_delay_seconds=30.0,
        jitter=True,
    ),
    ErrorKind.TIMEOUT: RecoveryStrategy(
        action=RecoveryAction.REDUCED_LOAD,
        max_retries=3,
        base_delay_seconds=1.0,
        reduce_ratio=0.5,
    ),
    ErrorKind.AUTH_ERROR: RecoveryStrategy(
        action=RecoveryAction.REAUTHENTICATE,
        max_retries=1,
    ),
    ErrorKind.PAYLOAD_TOO_LARGE: RecoveryStrategy(
        action=RecoveryAction.SPLIT,
        max_retries=3,
        split_ratio=0.5,
    ),
    ErrorKind.SERVER_ERROR: RecoveryStrategy(
        action=RecoveryAction.CIRCUIT_BREAKER_RETRY,
        max_retries=4,
        base_delay_seconds=5.0,
    ),
    ErrorKind.NETWORK_ERROR: RecoveryStrategy(
        action=RecoveryAction.SIMPLE_RETRY,
        max_retries=3,
        base_delay_seconds=1.0,
    ),
    ErrorKind.UNKNOWN: RecoveryStrategy(
        action=RecoveryAction.SIMPLE_RETRY,
        max_retries=2,
        base_delay_seconds=1.0,
    ),
}


# =============================================================================
# Result Merging
# =============================================================================


def merge_results(results: list[Any]) -> Any:
    """
    Merge the results of split sub-operations.

    Lists are concatenated. Dicts are deep-merged: lists inside them are
    concatenated, nested dicts are merged recursively and scalars from later
    results win. None results are skipped. Any other type yields the last
    result.

    Args:
        results: Results in sub-operation order

    Returns:
        The merged result, or None when there is nothing to merge
    """
    present = [result for result in results if result is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]

    first = present[0]
    if isinstance(first, list):
        merged_list: list[Any] = []
        for result in present:
            if isinstance(result, list):
                merged_list.extend(result)
            else:
                merged_list.append(result)
        return merged_list

    if isinstance(first, dict):
        merged: dict[str, Any] = {}
        for result in present:
            if isinstance(result, dict):
                _deep_merge_into(merged, result)
        return merged

    return present[-1]


def _deep_merge_into(target: dict[str, Any], source: dict[str, Any]) -> None:
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, list) and isinstance(value, list):
            target[key] = existing + value
        elif isinstance(existing, dict) and isinstance(value, dict):
            nested = dict(existing)
            _deep_merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = list(value) if isinstance(value, list) else value


# =============================================================================
# Error History
# =============================================================================


@dataclass
class ErrorRecord:
    """One classified failure seen by the dispatcher."""

    timestamp: float
    message: str
    error_kind: ErrorKind
    status_code: Optional[int]
    attempt: int
    operation_type: Optional[str]
    project_id: Optional[str]
    batch_size: Optional[int]


@dataclass
class ErrorPattern:
    """Occurrences of one "<kind>:<operation_type>" combination."""

    count: int = 0
    last_seen: float = 0.0
    attempts: list[int] = field(default_factory=list)

    @property
    def average_attempts(self) -> float:
        return sum(self.attempts) / len(self.attempts) if self.attempts else 0.0


# =============================================================================
# ErrorRecoveryDispatcher
# =============================================================================


class ErrorRecoveryDispatcher:
    """
    Classifies errors and applies recovery strategies.

    Example:
        >>> dispatcher = ErrorRecoveryDispatcher()
        >>> jobs = await dispatcher.execute(fetch_jobs, RecoveryContext(project_id="p1"))
    """

    def __init__(
        self,
        classifier: Callable[[BaseException], ErrorKind] = classify_error,
        strategies: Optional[dict[ErrorKind, RecoveryStrategy]] = None,
        timeout_seconds: float = DEFAULT_RECOVERY_TIMEOUT_SECONDS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize ErrorRecoveryDispatcher.

        Args:
            classifier: Maps an exception to an ErrorKind
            strategies: Overrides merged over DEFAULT_STRATEGIES
            timeout_seconds: Default bound for TIMEOUT strategy retries
            sleep: Async sleep used for backoff (default: asyncio.sleep)
            clock: Monotonic clock returning seconds (default: time.monotonic)
            rng: Random source for jitter
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self._classifier = classifier
        self._strategies = {**DEFAULT_STRATEGIES, **(strategies or {})}
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._rng = rng or random.Random()

        self._error_history: deque[ErrorRecord] = deque(maxlen=MAX_ERROR_HISTORY)
        self._error_patterns: dict[str, ErrorPattern] = {}

        self._total_operations = 0
        self._recovered_operations = 0
        self._exhausted_operations = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "ErrorRecoveryDispatcher":
        """Create a dispatcher from application settings."""
        return cls(timeout_seconds=settings.recovery_timeout_seconds)

    @property
    def timeout_seconds(self) -> float:
        """Default bound for TIMEOUT strategy retries."""
        return self._timeout_seconds

    def register_strategy(self, kind: ErrorKind, strategy: RecoveryStrategy) -> None:
        """Replace the strategy used for an ErrorKind."""
        self._strategies[kind] = strategy

    def get_strategy(self, kind: ErrorKind, context: RecoveryContext) -> RecoveryStrategy:
        """
        Get the strategy for kind, customized by the context.

        High priority raises the retry budget by two (at most 7). Batch
        contexts shed more load on timeouts.
        """
        strategy = self._strategies.get(kind, self._strategies[ErrorKind.UNKNOWN])

        if context.operation_type == "batch" and strategy.action == RecoveryAction.REDUCED_LOAD:
            strategy = replace(strategy, reduce_ratio=BATCH_REDUCE_RATIO)

        if context.priority == "high":
            strategy = replace(
                strategy,
                max_retries=min(strategy.max_retries + 2, MAX_PRIORITY_RETRIES),
            )

        return strategy

    def calculate_delay(self, strategy: RecoveryStrategy, attempt: int) -> float:
        """
        Backoff delay in seconds before retry number ``attempt``.

        base * 2^(attempt-1) with +/-25% jitter when enabled, then capped at
        max_delay and never below 0.1s.
        """
        delay = strategy.base_delay_seconds * 2 ** (attempt - 1)

        if strategy.jitter:
            jitter_range = delay * JITTER_RATIO
            delay += (self._rng.random() - 0.5) * 2 * jitter_range

        if strategy.max_delay_seconds is not None:
            delay = min(delay, strategy.max_delay_seconds)

        return max(MIN_DELAY_SECONDS, delay)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: Optional[RecoveryContext] = None,
    ) -> Any:
        """
        Run operation once and recover from its failure.

        Args:
            operation: Async callable taking the RecoveryContext
            context: Operation context (default: empty context)

        Returns:
            The operation's result, possibly after recovery

        Raises:
            CircuitOpenError: A circuit breaker rejected the call
            RecoveryExhaustedError: Recovery gave up
        """
        context = context or RecoveryContext()
        self._total_operations += 1

        try:
            return await operation(context)
        except (CircuitOpenError, RecoveryExhaustedError):
            raise
        except Exception as e:
            return await self.recover(e, operation, context)

    async def recover(
        self,
        error: BaseException,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: RecoveryContext,
        attempt: int = 1,
    ) -> Any:
        """
        Recover from error by applying the strategy for its classification.

        Recurses with attempt + 1 whenever the recovery action fails.

        Args:
            error: The failure to recover from
            operation: Async callable taking the RecoveryContext
            context: Operation context
            attempt: Recovery attempt number, starting at 1

        Returns:
            The result of the first successful recovery action

        Raises:
            CircuitOpenError: Propagated unchanged
            RecoveryExhaustedError: attempt exceeded the strategy's retries
        """
        if isinstance(error, (CircuitOpenError, RecoveryExhaustedError)):
            raise error

        kind = self._classifier(error)
        strategy = self.get_strategy(kind, context)
        self._record_error(error, kind, context, attempt)

        if attempt > strategy.max_retries:
            self._exhausted_operations += 1
            record_recovery_attempt(kind.value, "exhausted")
            logger.warning(
                "recovery exhausted",
                error_kind=kind.value,
                attempts=attempt,
                error=str(error),
                **context.summary(),
            )
            raise RecoveryExhaustedError(error, kind, attempt, context) from error

        if strategy.base_delay_seconds > 0:
            delay = self.calculate_delay(strategy, attempt)
            logger.info(
                "recovery retry scheduled",
                error_kind=kind.value,
                action=strategy.action.value,
                attempt=attempt,
                delay_seconds=round(delay, 3),
            )
            await self._sleep(delay)

        record_recovery_attempt(kind.value, "retry")
        try:
            result = await self._execute_strategy(strategy, operation, context, attempt)
        except Exception as retry_error:
            return await self.recover(retry_error, operation, context, attempt + 1)

        self._recovered_operations += 1
        record_recovery_attempt(kind.value, "recovered")
        return result

    async def _execute_strategy(
        self,
        strategy: RecoveryStrategy,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: RecoveryContext,
        attempt: int,
    ) -> Any:
        if strategy.action == RecoveryAction.REDUCED_LOAD:
            return await self._retry_with_reduced_load(operation, context, strategy, attempt)

        if strategy.action == RecoveryAction.REAUTHENTICATE:
            return await self._reauthenticate_and_retry(operation, context, attempt)

        if strategy.action == RecoveryAction.SPLIT:
            return await self._split_and_retry(operation, context, strategy, attempt)

        if strategy.action == RecoveryAction.CIRCUIT_BREAKER_RETRY and context.circuit_breaker:
            return await context.circuit_breaker.execute(
                operation, context, fallback=context.fallback
            )

        return await operation(context)

    # =========================================================================
    # Strategy Actions
    # =========================================================================

    async def _retry_with_reduced_load(
        self,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: RecoveryContext,
        strategy: RecoveryStrategy,
        attempt: int,
    ) -> Any:
        timeout_seconds = context.timeout_seconds or self._timeout_seconds
        # Repeated timeouts shed load progressively: ratio ** attempt.
        ratio = strategy.reduce_ratio**attempt

        if context.items:
            size = max(1, int(len(context.items) * ratio))
            logger.info(
                "retrying with reduced load",
                items=len(context.items),
                sub_chunk_size=size,
                attempt=attempt,
            )
            results = []
            for start in range(0, len(context.items), size):
                part = context.items[start : start + size]
                sub_context = replace(context, items=part, batch_size=len(part))
                results.append(
                    await call_with_timeout(operation, timeout_seconds, sub_context)
                )
            return merge_results(results)

        if context.batch_size:
            new_size = max(1, int(context.batch_size * ratio))
            logger.info(
                "retrying with reduced batch size",
                batch_size=context.batch_size,
                new_batch_size=new_size,
                attempt=attempt,
            )
            context = replace(context, batch_size=new_size)

        return await call_with_timeout(operation, timeout_seconds, context)

    async def _reauthenticate_and_retry(
        self,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: RecoveryContext,
        attempt: int,
    ) -> Any:
        authenticate = getattr(context.client, "authenticate", None)
        if callable(authenticate):
            logger.info("re-authenticating after auth error", **context.summary())
            try:
                await authenticate()
            except Exception as auth_error:
                raise RecoveryExhaustedError(
                    auth_error, ErrorKind.AUTH_ERROR, attempt, context
                ) from auth_error

        return await operation(context)

    async def _split_and_retry(
        self,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: RecoveryContext,
        strategy: RecoveryStrategy,
        attempt: int,
    ) -> Any:
        items = context.items
        if not items:
            return await operation(context)

        split_size = max(1, int(len(items) * strategy.split_ratio))
        logger.info("splitting operation", items=len(items), split_size=split_size)

        results = []
        for part in (items[:split_size], items[split_size:]):
            if not part:
                continue
            sub_context = replace(context, items=part, batch_size=len(part))
            results.append(
                await self._execute_split_part(operation, sub_context, strategy, attempt)
            )

        return merge_results(results)

    async def _execute_split_part(
        self,
        operation: Callable[[RecoveryContext], Awaitable[Any]],
        context: RecoveryContext,
        strategy: RecoveryStrategy,
        attempt: int,
    ) -> Any:
        try:
            return await operation(context)
        except (CircuitOpenError, RecoveryExhaustedError):
            raise
        except Exception as e:
            if self._classifier(e) != ErrorKind.PAYLOAD_TOO_LARGE:
                raise
            assert context.items is not None
            if len(context.items) > 1:
                return await self._split_and_retry(operation, context, strategy, attempt)

            self._record_error(e, ErrorKind.PAYLOAD_TOO_LARGE, context, attempt)
            self._exhausted_operations += 1
            record_recovery_attempt(ErrorKind.PAYLOAD_TOO_LARGE.value, "exhausted")
            logger.warning("single item too large", **context.summary())
            raise RecoveryExhaustedError(
                e, ErrorKind.PAYLOAD_TOO_LARGE, attempt, context
            ) from e

    # =========================================================================
    # History and Analysis
    # =========================================================================

    def _record_error(
        self,
        error: BaseException,
        kind: ErrorKind,
        context: RecoveryContext,
        attempt: int,
    ) -> None:
        now = self._clock()
        self._error_history.append(
            ErrorRecord(
                timestamp=now,
                message=str(error),
                error_kind=kind,
                status_code=extract_status_code(error),
                attempt=attempt,
                operation_type=context.operation_type,
                project_id=context.project_id,
                batch_size=context.batch_size,
            )
        )

        key = f"{kind.value}:{context.operation_type or 'unknown'}"
        pattern = self._error_patterns.setdefault(key, ErrorPattern())
        pattern.count += 1
        pattern.last_seen = now
        pattern.attempts.append(attempt)

    def analyze_error_patterns(self) -> dict[str, Any]:
        """
        Summarize recorded errors and suggest mitigations.

        Returns:
            Dict with "summary", "patterns" and "recommendations"
        """
        now = self._clock()
        error_kinds: dict[str, int] = {}
        operation_types: dict[str, int] = {}
        last_hour = 0
        last_day = 0
        initial_failures = 0
        retry_failures = 0

        for record in self._error_history:
            error_kinds[record.error_kind.value] = error_kinds.get(record.error_kind.value, 0) + 1
            operation = record.operation_type or "unknown"
            operation_types[operation] = operation_types.get(operation, 0) + 1

            age = now - record.timestamp
            if age < HOUR_SECONDS:
                last_hour += 1
            if age < DAY_SECONDS:
                last_day += 1

            if record.attempt == 1:
                initial_failures += 1
            else:
                retry_failures += 1

        summary = {
            "total_errors": len(self._error_history),
            "error_kinds": error_kinds,
            "operation_types": operation_types,
            "last_hour": last_hour,
            "last_day": last_day,
            "initial_failures": initial_failures,
            "retry_failures": retry_failures,
        }

        return {
            "summary": summary,
            "patterns": [
                {
                    "pattern": key,
                    "occurrences": pattern.count,
                    "seconds_since_last_seen": round(now - pattern.last_seen, 3),
                    "average_attempts": round(pattern.average_attempts, 2),
                }
                for key, pattern in self._error_patterns.items()
            ],
            "recommendations": self._generate_recommendations(summary),
        }

    @staticmethod
    def _generate_recommendations(summary: dict[str, Any]) -> list[dict[str, str]]:
        recommendations = []

        if summary["last_hour"] > 10:
            recommendations.append(
                {
                    "type": "high_error_rate",
                    "severity": "warning",
                    "message": f"High error rate detected: {summary['last_hour']} errors in the last hour",
                    "suggestion": "Consider a circuit breaker or reducing the request rate",
                }
            )

        for kind, count in summary["error_kinds"].items():
            if count <= 5:
                continue
            if kind == ErrorKind.RATE_LIMIT.value:
                recommendations.append(
                    {
                        "type": "rate_limiting",
                        "severity": "info",
                        "message": f"Frequent rate limiting detected ({count} occurrences)",
                        "suggestion": "Space requests further apart or reduce batch sizes",
                    }
                )
            elif kind == ErrorKind.TIMEOUT.value:
                recommendations.append(
                    {
                        "type": "timeout_issues",
                        "severity": "warning",
                        "message": f"Multiple timeout errors ({count} occurrences)",
                        "suggestion": "Increase timeout values or shrink request payloads",
                    }
                )

        return recommendations

    def get_stats(self) -> dict[str, Any]:
        """Dispatcher counters and history sizes as plain data."""
        now = self._clock()
        return {
            "total_operations": self._total_operations,
            "recovered_operations": self._recovered_operations,
            "exhausted_operations": self._exhausted_operations,
            "total_errors": len(self._error_history),
            "strategies": len(self._strategies),
            "patterns": len(self._error_patterns),
            "recent_errors": sum(
                1 for record in self._error_history if now - record.timestamp < HOUR_SECONDS
            ),
        }

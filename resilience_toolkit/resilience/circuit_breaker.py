"""
Adaptive Circuit Breaker with Health Scoring

This module implements a circuit breaker that, on top of the classic
three-state machine, keeps a smoothed health score and adapts its failure
threshold and recovery time to the failures it observes.

State Machine:
    CLOSED: Normal operation. Each failure increments failure_count; at
        failure_count >= threshold the circuit opens.
    OPEN: Calls fail fast with CircuitOpenError. After the recovery time has
        elapsed since the last failure the circuit moves to HALF_OPEN.
    HALF_OPEN: Calls pass through as probes. Three successes close the
        circuit (failure_count reset to 0); any failure reopens it.

Health Score:
    A 0-100 score updated by exponential smoothing after every call. Fast
    successes raise it, slow failures lower it most. While CLOSED and below
    the health threshold, calls are routed through a degraded-mode strategy
    picked from the health tier:
        < 30  fallback value (periodic probe of the real operation)
        < 60  timeout-bounded call
        else  retry with linear backoff

Adaptive Threshold:
    Once the monitoring window holds enough calls, the dynamic threshold is
    lowered by one when the failure rate exceeds 50% and raised by one when it
    is under 10%.

Concurrency:
    State is only mutated in synchronous methods with no await between read
    and write, so tasks sharing one event loop cannot interleave a transition.
"""

import asyncio
import inspect
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from resilience_toolkit.core.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
    ErrorCode,
)
from resilience_toolkit.observability.logging import get_logger
from resilience_toolkit.resilience.metrics import (
    record_circuit_health,
    record_circuit_state_transition,
)
from resilience_toolkit.resilience.timeout import call_with_timeout

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Constants
# =============================================================================

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_TIME_SECONDS = 60.0
DEFAULT_MONITORING_PERIOD_SECONDS = 60.0
DEFAULT_HEALTH_SCORE_THRESHOLD = 50.0
DEFAULT_DEGRADED_TIMEOUT_SECONDS = 5.0

HALF_OPEN_SUCCESS_THRESHOLD = 3
MAX_HISTORY_SIZE = 100
MAX_PATTERN_CONTEXTS = 10

FALLBACK_HEALTH_TIER = 30.0
TIMEOUT_HEALTH_TIER = 60.0


# =============================================================================
# Enums
# =============================================================================


class CircuitBreakerState(Enum):
    """
    State of a circuit breaker.

    States:
        CLOSED: Normal operation, all requests pass through
        OPEN: Circuit is tripped, requests fail immediately
        HALF_OPEN: Recovery testing, probe requests pass through
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BackoffStrategy(str, Enum):
    """How the recovery time grows with repeated openings."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    IMMEDIATE = "immediate"


class DegradedStrategy(str, Enum):
    """Degraded-mode routing used while the health score is low."""

    RETRY = "retry"
    TIMEOUT = "timeout"
    FALLBACK = "fallback"


# =============================================================================
# Configuration and Records
# =============================================================================


@dataclass
class CircuitBreakerConfig:
    """
    Configuration for an AdaptiveCircuitBreaker.

    Attributes:
        failure_threshold: Static failure threshold (initial dynamic threshold)
        recovery_time_seconds: Base wait before probing an open circuit
        monitoring_period_seconds: Rolling window for failure-rate analysis
        health_score_threshold: Health below which degraded routing kicks in
        adaptive_thresholds: Whether the dynamic threshold is recalculated
        degraded_timeout_seconds: Bound for the degraded timeout strategy
        degraded_retry_attempts: Attempts made by the degraded retry strategy
        degraded_retry_delay_seconds: Base delay of the degraded retry strategy
        health_smoothing: Weight of the newest outcome in the health score
        adaptive_min_samples: Calls needed in the window before adapting
        min_dynamic_threshold: Lower bound of the dynamic threshold
        max_dynamic_threshold: Upper bound of the dynamic threshold
    """

    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    recovery_time_seconds: float = DEFAULT_RECOVERY_TIME_SECONDS
    monitoring_period_seconds: float = DEFAULT_MONITORING_PERIOD_SECONDS
    health_score_threshold: float = DEFAULT_HEALTH_SCORE_THRESHOLD
    adaptive_thresholds: bool = True
    degraded_timeout_seconds: float = DEFAULT_DEGRADED_TIMEOUT_SECONDS
    degraded_retry_attempts: int = 2
    degraded_retry_delay_seconds: float = 1.0
    health_smoothing: float = 0.1
    adaptive_min_samples: int = 10
    min_dynamic_threshold: int = 2
    max_dynamic_threshold: int = 10

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.degraded_timeout_seconds <= 0:
            raise ValueError("degraded_timeout_seconds must be positive")
        if not 0 < self.health_smoothing <= 1:
            raise ValueError("health_smoothing must be in (0, 1]")


@dataclass
class CallRecord:
    """One entry of the rolling call history."""

    success: bool
    timestamp: float
    duration_seconds: float
    error_type: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class FailurePattern:
    """Aggregated occurrences of one kind of failure."""

    count: int
    first_seen: float
    last_seen: float
    contexts: deque = field(default_factory=lambda: deque(maxlen=MAX_PATTERN_CONTEXTS))

    def frequency(self, now: float) -> float:
        """Occurrences per second since first seen."""
        elapsed = now - self.first_seen
        if elapsed <= 0:
            return float("inf")
        return self.count / elapsed


@dataclass
class CircuitBreakerMetrics:
    """Cumulative counters of a circuit breaker."""

    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0
    circuit_opens: int = 0
    circuit_closes: int = 0
    recovery_attempts: int = 0
    degraded_calls: int = 0
    rejected_calls: int = 0


# =============================================================================
# Adaptive Circuit Breaker
# =============================================================================


class AdaptiveCircuitBreaker:
    """
    Circuit breaker with health scoring, adaptive threshold and adaptive recovery.

    Example:
        >>> breaker = AdaptiveCircuitBreaker("jobs-api")
        >>> result = await breaker.execute(client.get_jobs, project_id)

    Attributes:
        name: Identifier for this circuit breaker
        config: Breaker configuration
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        """
        Initialize AdaptiveCircuitBreaker.

        Args:
            name: Name for identification, logs and metrics
            config: Breaker configuration (defaults to CircuitBreakerConfig())
            clock: Monotonic clock returning seconds (default: time.monotonic)
            sleep: Async sleep used by the degraded retry strategy
        """
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

        self._state = CircuitBreakerState.CLOSED
        self._health_score = 100.0
        self._failure_count = 0
        self._success_count = 0
        self._half_open_successes = 0
        self._last_failure_at: Optional[float] = None
        self._last_success_at: Optional[float] = None
        self._last_attempt_at: Optional[float] = None

        self._dynamic_threshold = self._config.failure_threshold
        self._current_strategy = BackoffStrategy.EXPONENTIAL
        self._failure_patterns: dict[str, FailurePattern] = {}
        self._history: deque[CallRecord] = deque(maxlen=MAX_HISTORY_SIZE)
        self._metrics = CircuitBreakerMetrics()

    @classmethod
    def from_settings(cls, name: str, settings: Any) -> "AdaptiveCircuitBreaker":
        """Create a breaker configured from application settings."""
        return cls(
            name=name,
            config=CircuitBreakerConfig(
                failure_threshold=settings.circuit_breaker_failure_threshold,
                recovery_time_seconds=settings.circuit_breaker_recovery_time_seconds,
                monitoring_period_seconds=settings.circuit_breaker_monitoring_period_seconds,
                health_score_threshold=settings.circuit_breaker_health_score_threshold,
                adaptive_thresholds=settings.circuit_breaker_adaptive_thresholds,
                degraded_timeout_seconds=settings.circuit_breaker_degraded_timeout_seconds,
            ),
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        """Name of this circuit breaker."""
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        """Breaker configuration."""
        return self._config

    @property
    def state(self) -> CircuitBreakerState:
        """
        Current state of the circuit breaker.

        Reading the state performs the OPEN -> HALF_OPEN transition once the
        recovery time has elapsed.
        """
        return self._refresh_state()

    @property
    def failure_count(self) -> int:
        """Failures counted towards the open threshold."""
        return self._failure_count

    @property
    def success_count(self) -> int:
        """Cumulative successful calls."""
        return self._success_count

    @property
    def health_score(self) -> float:
        """Smoothed 0-100 health score."""
        return self._health_score

    @property
    def dynamic_threshold(self) -> int:
        """Adaptive failure threshold."""
        return self._dynamic_threshold

    @property
    def current_threshold(self) -> int:
        """Threshold in effect: dynamic when adaptive, else static."""
        if self._config.adaptive_thresholds:
            return self._dynamic_threshold
        return self._config.failure_threshold

    @property
    def current_strategy(self) -> BackoffStrategy:
        """Backoff strategy used to compute the recovery time."""
        return self._current_strategy

    @property
    def last_failure_at(self) -> Optional[float]:
        """Clock reading of the most recent failure."""
        return self._last_failure_at

    @property
    def metrics(self) -> CircuitBreakerMetrics:
        """Cumulative counters."""
        return self._metrics

    @property
    def recovery_time_seconds(self) -> float:
        """
        Seconds an open circuit waits before probing.

        The first opening waits the configured base time under exponential
        and linear backoff; later openings wait longer.
        """
        base = self._config.recovery_time_seconds
        reopenings = max(0, self._metrics.circuit_opens - 1)

        if self._current_strategy == BackoffStrategy.EXPONENTIAL:
            return base * 2 ** min(5, reopenings)
        if self._current_strategy == BackoffStrategy.LINEAR:
            return base * (1 + reopenings * 0.5)
        return base * 0.1

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        fallback: Optional[Callable[[], Any]] = None,
        **kwargs: Any,
    ) -> T:
        """
        Execute an async function through the circuit breaker.

        Args:
            func: Async function to call
            *args: Positional arguments for the function
            fallback: Value provider used by the degraded fallback strategy
            **kwargs: Keyword arguments for the function

        Returns:
            The result of the function call (or of the fallback)

        Raises:
            CircuitOpenError: The circuit is open, func was not called
            CircuitBreakerError: Degraded mode needed a fallback and had none
            Exception: Any exception raised by the wrapped function
        """
        self._metrics.total_calls += 1
        state = self._refresh_state()

        if state == CircuitBreakerState.OPEN:
            self._metrics.rejected_calls += 1
            raise CircuitOpenError(
                self._name,
                f"Circuit is open - failing fast (threshold={self.current_threshold})",
            )

        if (
            state == CircuitBreakerState.CLOSED
            and self._health_score < self._config.health_score_threshold
        ):
            return await self._execute_degraded(func, args, kwargs, fallback)

        return await self._monitored_call(func, *args, **kwargs)

    async def _monitored_call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        started = self._clock()
        self._last_attempt_at = started
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e, self._clock() - started)
            raise
        self.record_success(self._clock() - started)
        return result

    # =========================================================================
    # Degraded Mode
    # =========================================================================

    def select_degraded_strategy(self) -> DegradedStrategy:
        """Pick the degraded-mode strategy for the current health tier."""
        if self._health_score < FALLBACK_HEALTH_TIER:
            return DegradedStrategy.FALLBACK
        if self._health_score < TIMEOUT_HEALTH_TIER:
            return DegradedStrategy.TIMEOUT
        return DegradedStrategy.RETRY

    async def _execute_degraded(
        self,
        func: Callable[..., Awaitable[T]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        fallback: Optional[Callable[[], Any]],
    ) -> T:
        self._metrics.degraded_calls += 1
        strategy = self.select_degraded_strategy()
        logger.info(
            "circuit degraded routing",
            circuit=self._name,
            strategy=strategy.value,
            health_score=round(self._health_score, 1),
        )

        if strategy == DegradedStrategy.FALLBACK:
            return await self._execute_fallback(func, args, kwargs, fallback)

        if strategy == DegradedStrategy.TIMEOUT:
            return await self._monitored_call(
                call_with_timeout,
                func,
                self._config.degraded_timeout_seconds,
                *args,
                **kwargs,
            )

        return await self._execute_with_retry(func, args, kwargs)

    async def _execute_with_retry(
        self,
        func: Callable[..., Awaitable[T]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> T:
        last_error: Optional[Exception] = None

        for attempt in range(1, self._config.degraded_retry_attempts + 1):
            if attempt > 1:
                if self._refresh_state() == CircuitBreakerState.OPEN:
                    raise CircuitOpenError(self._name, "Circuit opened during degraded retry")
                await self._sleep(self._config.degraded_retry_delay_seconds * attempt)
            try:
                return await self._monitored_call(func, *args, **kwargs)
            except Exception as e:
                last_error = e

        assert last_error is not None
        raise last_error

    async def _execute_fallback(
        self,
        func: Callable[..., Awaitable[T]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        fallback: Optional[Callable[[], Any]],
    ) -> T:
        if self._probe_due():
            logger.info("circuit probing degraded operation", circuit=self._name)
            return await self._monitored_call(func, *args, **kwargs)

        if fallback is None:
            raise CircuitBreakerError(
                self._name,
                "Fallback not available",
                error_code=ErrorCode.NO_FALLBACK,
            )

        value = fallback()
        if inspect.isawaitable(value):
            value = await value
        return value

    def _probe_due(self) -> bool:
        if self._last_attempt_at is None:
            return True
        return self._clock() - self._last_attempt_at >= self._config.recovery_time_seconds

    # =========================================================================
    # Outcome Recording
    # =========================================================================

    def record_success(self, duration_seconds: float = 0.0) -> None:
        """
        Record a successful call.

        In HALF_OPEN the third success closes the circuit. In CLOSED a
        success forgives one counted failure.
        """
        now = self._clock()
        self._success_count += 1
        self._last_success_at = now
        self._metrics.total_successes += 1
        self._history.append(CallRecord(True, now, duration_seconds))

        self._update_health_score(True, duration_seconds)
        self._update_adaptive_threshold()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= HALF_OPEN_SUCCESS_THRESHOLD:
                self._close()
        else:
            self._failure_count = max(0, self._failure_count - 1)

    def record_failure(
        self,
        error: BaseException,
        duration_seconds: float = 0.0,
        context: Any = None,
    ) -> None:
        """
        Record a failed call.

        Opens the circuit from HALF_OPEN immediately, or from CLOSED once
        failure_count reaches the threshold in effect.
        """
        now = self._clock()
        self._failure_count += 1
        self._last_failure_at = now
        self._metrics.total_failures += 1
        self._history.append(
            CallRecord(False, now, duration_seconds, type(error).__name__, str(error))
        )

        self._update_health_score(False, duration_seconds)
        self._analyze_failure_pattern(error, context, now)
        self._update_adaptive_threshold()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._open()
        elif (
            self._state == CircuitBreakerState.CLOSED
            and self._failure_count >= self.current_threshold
        ):
            self._open()

    def _update_health_score(self, success: bool, duration_seconds: float) -> None:
        if success:
            impact = 5.0 * max(0.5, 2.0 - duration_seconds)
        else:
            impact = -10.0 * min(2.0, max(0.5, duration_seconds))

        alpha = self._config.health_smoothing
        smoothed = self._health_score * (1 - alpha) + (self._health_score + impact) * alpha
        self._health_score = max(0.0, min(100.0, smoothed))
        record_circuit_health(self._name, self._health_score)

    def _analyze_failure_pattern(self, error: BaseException, context: Any, now: float) -> None:
        code = getattr(error, "error_code", None) or getattr(error, "status_code", None)
        key = f"{type(error).__name__}:{code.value if isinstance(code, Enum) else code or 'UNKNOWN'}"

        pattern = self._failure_patterns.get(key)
        if pattern is None:
            pattern = FailurePattern(count=0, first_seen=now, last_seen=now)
            self._failure_patterns[key] = pattern

        pattern.count += 1
        pattern.last_seen = now
        pattern.contexts.append(context)

        frequency = pattern.frequency(now)
        if frequency > 1:
            self._current_strategy = BackoffStrategy.EXPONENTIAL
        elif frequency > 0.1:
            self._current_strategy = BackoffStrategy.LINEAR
        else:
            self._current_strategy = BackoffStrategy.IMMEDIATE

    def _update_adaptive_threshold(self) -> None:
        if not self._config.adaptive_thresholds:
            return

        recent = self._recent_history()
        if len(recent) < self._config.adaptive_min_samples:
            return

        failure_rate = self._failure_rate(recent)
        ceiling = max(self._config.max_dynamic_threshold, self._config.failure_threshold)
        if failure_rate > 0.5:
            self._dynamic_threshold = max(
                self._config.min_dynamic_threshold, self._dynamic_threshold - 1
            )
        elif failure_rate < 0.1:
            self._dynamic_threshold = min(ceiling, self._dynamic_threshold + 1)

    # =========================================================================
    # Transitions
    # =========================================================================

    def _refresh_state(self) -> CircuitBreakerState:
        if (
            self._state == CircuitBreakerState.OPEN
            and self._last_failure_at is not None
            and self._clock() - self._last_failure_at >= self.recovery_time_seconds
        ):
            self._transition(CircuitBreakerState.HALF_OPEN)
            self._half_open_successes = 0
            self._metrics.recovery_attempts += 1
        return self._state

    def _open(self) -> None:
        if self._state == CircuitBreakerState.OPEN:
            return
        self._metrics.circuit_opens += 1
        self._transition(CircuitBreakerState.OPEN)
        logger.warning(
            "circuit opened",
            circuit=self._name,
            failures=self._failure_count,
            health_score=round(self._health_score, 1),
            recovery_time_seconds=self.recovery_time_seconds,
        )

    def _close(self) -> None:
        if self._state == CircuitBreakerState.CLOSED:
            return
        self._failure_count = 0
        self._half_open_successes = 0
        self._metrics.circuit_closes += 1
        self._transition(CircuitBreakerState.CLOSED)
        logger.info(
            "circuit closed",
            circuit=self._name,
            health_score=round(self._health_score, 1),
        )

    def _transition(self, new_state: CircuitBreakerState) -> None:
        old_state = self._state
        self._state = new_state
        record_circuit_state_transition(self._name, new_state.value, old_state.value)

    # =========================================================================
    # History Helpers
    # =========================================================================

    def _recent_history(self) -> list[CallRecord]:
        cutoff = self._clock() - self._config.monitoring_period_seconds
        return [record for record in self._history if record.timestamp > cutoff]

    @staticmethod
    def _failure_rate(history: list[CallRecord]) -> float:
        if not history:
            return 0.0
        failures = sum(1 for record in history if not record.success)
        return failures / len(history)

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        """
        Get a serializable snapshot of the breaker.

        Returns:
            Plain dict with state, health, counters, thresholds and patterns
        """
        now = self._clock()
        state = self._refresh_state()
        return {
            "name": self._name,
            "state": state.value,
            "health_score": round(self._health_score),
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "current_strategy": self._current_strategy.value,
            "dynamic_threshold": self._dynamic_threshold,
            "recovery_time_seconds": self.recovery_time_seconds,
            "recent_failure_rate": round(self._failure_rate(self._recent_history()) * 100, 1),
            "metrics": asdict(self._metrics),
            "failure_patterns": {
                key: {
                    "count": pattern.count,
                    "frequency_per_second": round(min(pattern.frequency(now), 1e6), 3),
                    "seconds_since_last_seen": round(now - pattern.last_seen, 3),
                }
                for key, pattern in self._failure_patterns.items()
            },
            "seconds_since_last_failure": (
                round(now - self._last_failure_at, 3) if self._last_failure_at is not None else None
            ),
            "seconds_since_last_success": (
                round(now - self._last_success_at, 3) if self._last_success_at is not None else None
            ),
        }

    def reset(self) -> None:
        """Return the breaker to a fresh CLOSED state with full health."""
        if self._state != CircuitBreakerState.CLOSED:
            self._transition(CircuitBreakerState.CLOSED)
        self._health_score = 100.0
        self._failure_count = 0
        self._success_count = 0
        self._half_open_successes = 0
        self._last_failure_at = None
        self._last_success_at = None
        self._last_attempt_at = None
        self._failure_patterns.clear()
        self._history.clear()
        self._dynamic_threshold = self._config.failure_threshold
        self._current_strategy = BackoffStrategy.EXPONENTIAL
        logger.info("circuit reset", circuit=self._name)


# =============================================================================
# Circuit Breaker Manager
# =============================================================================


class CircuitBreakerManager:
    """
    Registry of named circuit breakers.

    One breaker per protected operation. The manager is an ordinary object:
    the application owns its lifecycle.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._default_config = default_config
        self._clock = clock
        self._sleep = sleep
        self._breakers: dict[str, AdaptiveCircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "CircuitBreakerManager":
        """Create a manager whose breakers default to application settings."""
        template = AdaptiveCircuitBreaker.from_settings("template", settings)
        return cls(default_config=template.config)

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def create_breaker(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> AdaptiveCircuitBreaker:
        """Create (or replace) the breaker registered under name."""
        breaker = AdaptiveCircuitBreaker(
            name,
            config=config or self._default_config,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._breakers[name] = breaker
        return breaker

    def get_breaker(self, name: str) -> Optional[AdaptiveCircuitBreaker]:
        """Get the breaker registered under name, if any."""
        return self._breakers.get(name)

    def get_or_create(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> AdaptiveCircuitBreaker:
        """Get the breaker registered under name, creating it when missing."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self.create_breaker(name, config)
        return breaker

    async def execute_with_breaker(
        self,
        name: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute func through the named breaker.

        Raises:
            KeyError: No breaker is registered under name
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            raise KeyError(f'Circuit breaker "{name}" not found')
        return await breaker.execute(func, *args, **kwargs)

    def get_overall_health(self) -> int:
        """Mean health score across breakers (100 when none are registered)."""
        if not self._breakers:
            return 100
        total = sum(breaker.health_score for breaker in self._breakers.values())
        return round(total / len(self._breakers))

    def get_all_statuses(self) -> dict[str, Any]:
        """Statuses of every breaker plus the overall health."""
        return {
            "overall_health": self.get_overall_health(),
            "breakers": {
                name: breaker.get_status() for name, breaker in self._breakers.items()
            },
        }

    def reset_all(self) -> None:
        """Reset every registered breaker."""
        for breaker in self._breakers.values():
            breaker.reset()

"""
Resilience Metrics

This module provides Prometheus metrics for the circuit breaker, the
error-recovery dispatcher and the batch engine.

Metrics Provided:
- Circuit breaker state transitions (counter) and current state (gauge)
- Circuit breaker health score (gauge)
- Recovery attempts by error kind and outcome (counter)
- Batch chunk outcomes (counter) and chunk duration (histogram)
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Constants
# =============================================================================

METRIC_CIRCUIT_TRANSITIONS = "resilience_toolkit_circuit_breaker_state_transitions_total"
METRIC_CIRCUIT_STATE = "resilience_toolkit_circuit_breaker_state"
METRIC_CIRCUIT_HEALTH = "resilience_toolkit_circuit_breaker_health_score"
METRIC_RECOVERY_ATTEMPTS = "resilience_toolkit_recovery_attempts_total"
METRIC_BATCH_CHUNKS = "resilience_toolkit_batch_chunks_total"
METRIC_BATCH_CHUNK_DURATION = "resilience_toolkit_batch_chunk_duration_seconds"


# =============================================================================
# Circuit Breaker Metrics
# =============================================================================

CIRCUIT_STATE_TRANSITIONS = Counter(
    name=METRIC_CIRCUIT_TRANSITIONS,
    documentation="Total number of circuit breaker state transitions",
    labelnames=["circuit_name", "to_state", "from_state"],
)

CIRCUIT_STATE_GAUGE = Gauge(
    name=METRIC_CIRCUIT_STATE,
    documentation="Current state of circuit breaker (0=closed, 1=half_open, 2=open)",
    labelnames=["circuit_name"],
)

CIRCUIT_HEALTH_GAUGE = Gauge(
    name=METRIC_CIRCUIT_HEALTH,
    documentation="Smoothed 0-100 health score of a circuit breaker",
    labelnames=["circuit_name"],
)

_STATE_TO_NUMERIC = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
}


def record_circuit_state_transition(
    circuit_name: str,
    to_state: str,
    from_state: str,
) -> None:
    """
    Record a circuit breaker state transition.

    Args:
        circuit_name: Name of the circuit breaker
        to_state: State transitioning to (closed, open, half_open)
        from_state: State transitioning from (closed, open, half_open)
    """
    CIRCUIT_STATE_TRANSITIONS.labels(
        circuit_name=circuit_name,
        to_state=to_state,
        from_state=from_state,
    ).inc()

    CIRCUIT_STATE_GAUGE.labels(circuit_name=circuit_name).set(
        _STATE_TO_NUMERIC.get(to_state, 0)
    )


def record_circuit_health(circuit_name: str, health_score: float) -> None:
    """Publish the current health score of a circuit breaker."""
    CIRCUIT_HEALTH_GAUGE.labels(circuit_name=circuit_name).set(health_score)


# =============================================================================
# Recovery Metrics
# =============================================================================

RECOVERY_ATTEMPTS = Counter(
    name=METRIC_RECOVERY_ATTEMPTS,
    documentation="Recovery attempts by error kind and outcome",
    labelnames=["error_kind", "outcome"],
)


def record_recovery_attempt(error_kind: str, outcome: str) -> None:
    """
    Record one recovery attempt.

    Args:
        error_kind: ErrorKind value of the error being recovered
        outcome: "retry", "recovered" or "exhausted"
    """
    RECOVERY_ATTEMPTS.labels(error_kind=error_kind, outcome=outcome).inc()


# =============================================================================
# Batch Metrics
# =============================================================================

BATCH_CHUNKS = Counter(
    name=METRIC_BATCH_CHUNKS,
    documentation="Batch chunks processed by outcome",
    labelnames=["outcome"],
)

BATCH_CHUNK_DURATION = Histogram(
    name=METRIC_BATCH_CHUNK_DURATION,
    documentation="Wall time spent per batch chunk in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


def record_batch_chunk(outcome: str, duration_seconds: float) -> None:
    """
    Record a processed batch chunk.

    Args:
        outcome: "success", "failure" or "skipped"
        duration_seconds: Time spent on the chunk
    """
    BATCH_CHUNKS.labels(outcome=outcome).inc()
    if outcome != "skipped":
        BATCH_CHUNK_DURATION.observe(duration_seconds)

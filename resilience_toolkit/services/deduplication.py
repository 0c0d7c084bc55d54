"""
Request Deduplication Service

This module collapses concurrent identical calls into a single execution.

While a call for a key is in flight, every other caller with the same key
attaches to the same asyncio.Future and receives the same outcome. The
operation runs exactly once per key per in-flight window. A successful result
is retained for a short grace window so bursts arriving just after the call
settles are served without a new execution. Failures are never retained.

Concurrency: the in-flight check and registration happen with no await in
between, so two tasks on the same event loop can never both start the
operation for one key.
"""

import asyncio
import hashlib
import json
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from resilience_toolkit.core.exceptions import DeduplicationPropagatedError
from resilience_toolkit.observability.logging import get_logger
from resilience_toolkit.observability.metrics import record_deduplicated_request

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Default Configuration
# =============================================================================

DEFAULT_GRACE_SECONDS = 5.0
DEFAULT_MAX_RETAINED = 10_000


# =============================================================================
# Key Derivation
# =============================================================================


def make_request_key(
    method: str,
    url: str,
    params: Optional[dict[str, Any]] = None,
    body: Any = None,
    headers: Optional[dict[str, str]] = None,
) -> str:
    """
    Build a stable deduplication key for an HTTP-style request.

    Callers may use any key scheme; this helper covers the common
    method + URL + params + body case.

    Args:
        method: HTTP method
        url: Request URL or path
        params: Query parameters
        body: JSON-serializable request body
        headers: Headers that change the response (e.g. Accept-Language)

    Returns:
        "<METHOD>:<url>:<sha256 prefix>"
    """
    key_parts = {
        "params": params or {},
        "body": body,
        "headers": headers or {},
    }
    key_json = json.dumps(key_parts, sort_keys=True, default=str)
    key_hash = hashlib.sha256(key_json.encode()).hexdigest()[:32]
    return f"{method.upper()}:{url}:{key_hash}"


# =============================================================================
# RequestDeduplicator Service
# =============================================================================


class RequestDeduplicator:
    """
    Exactly-once execution per key for concurrent identical calls.

    Example:
        >>> dedup = RequestDeduplicator()
        >>> key = make_request_key("GET", "/projects/p1")
        >>> result = await dedup.deduped_call(key, fetch_project, "p1")

    Attributes:
        grace_seconds: How long a settled success is served to late arrivals
    """

    def __init__(
        self,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        max_retained: int = DEFAULT_MAX_RETAINED,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize RequestDeduplicator.

        Args:
            grace_seconds: Retention window for settled results (0 disables it)
            max_retained: Maximum number of retained results
            clock: Monotonic clock returning seconds (default: time.monotonic)
        """
        self._grace_seconds = grace_seconds
        self._max_retained = max_retained
        self._clock = clock or time.monotonic

        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        self._waiters: dict[str, int] = {}
        self._recent: dict[str, tuple[float, Any]] = {}

        self._total_requests = 0
        self._deduplicated_requests = 0
        self._recent_hits = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "RequestDeduplicator":
        """Create a deduplicator from application settings."""
        return cls(grace_seconds=settings.dedup_grace_seconds)

    @property
    def grace_seconds(self) -> float:
        """Retention window for settled results."""
        return self._grace_seconds

    def in_flight(self, key: str) -> bool:
        """Whether a call for key is currently executing."""
        return key in self._in_flight

    # =========================================================================
    # Execution
    # =========================================================================

    async def deduped_call(
        self,
        key: str,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute operation once per key, sharing the outcome with concurrent callers.

        Args:
            key: Caller-derived deduplication key (not normalized here)
            operation: Async callable to execute
            *args: Positional arguments for the operation
            **kwargs: Keyword arguments for the operation

        Returns:
            The operation's result

        Raises:
            DeduplicationPropagatedError: When attached to a call that failed
            Exception: The original error, for the caller that executed it
        """
        self._total_requests += 1

        pending = self._in_flight.get(key)
        if pending is not None:
            return await self._attach(key, pending)

        retained = self._get_retained(key)
        if retained is not None:
            self._recent_hits += 1
            record_deduplicated_request("recent")
            return retained[1]

        # The operation runs in its own task so cancelling the caller that
        # started it does not cancel the outcome shared with the waiters.
        task: asyncio.Future[Any] = asyncio.ensure_future(operation(*args, **kwargs))
        self._in_flight[key] = task
        self._waiters[key] = 0
        task.add_done_callback(lambda done: self._settle(key, done))

        return await asyncio.shield(task)

    def _settle(self, key: str, task: "asyncio.Future[Any]") -> None:
        """Release the key once its operation settles and retain a success."""
        waiters = 0
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            waiters = self._waiters.pop(key, 0)

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("deduplicated call failed", key=key, waiters=waiters, error=str(error))
            return
        self._retain(key, task.result())

    async def _attach(self, key: str, pending: "asyncio.Future[Any]") -> Any:
        self._deduplicated_requests += 1
        self._waiters[key] = self._waiters.get(key, 0) + 1
        record_deduplicated_request("in_flight")
        logger.debug("attached to in-flight call", key=key)

        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise DeduplicationPropagatedError(key, e) from e

    # =========================================================================
    # Grace Window
    # =========================================================================

    def _get_retained(self, key: str) -> Optional[tuple[float, Any]]:
        retained = self._recent.get(key)
        if retained is None:
            return None
        if self._clock() - retained[0] >= self._grace_seconds:
            del self._recent[key]
            return None
        return retained

    def _retain(self, key: str, result: Any) -> None:
        if self._grace_seconds <= 0:
            return
        self._recent.pop(key, None)
        if len(self._recent) >= self._max_retained:
            oldest_key = next(iter(self._recent))
            del self._recent[oldest_key]
        self._recent[key] = (self._clock(), result)

    def cleanup(self) -> int:
        """
        Drop retained results whose grace window has elapsed.

        Returns:
            Number of retained results removed
        """
        now = self._clock()
        expired = [
            key
            for key, (stored_at, _) in self._recent.items()
            if now - stored_at >= self._grace_seconds
        ]
        for key in expired:
            del self._recent[key]
        return len(expired)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """
        Get deduplication statistics.

        Returns:
            Plain dict with request counts, efficiency and table sizes
        """
        saved = self._deduplicated_requests + self._recent_hits
        efficiency = saved / self._total_requests * 100 if self._total_requests else 0.0
        return {
            "total_requests": self._total_requests,
            "deduplicated_requests": self._deduplicated_requests,
            "recent_hits": self._recent_hits,
            "saved_requests": saved,
            "efficiency_rate": round(efficiency, 2),
            "in_flight": len(self._in_flight),
            "retained": len(self._recent),
        }

    def reset_metrics(self) -> None:
        """Reset request counters."""
        self._total_requests = 0
        self._deduplicated_requests = 0
        self._recent_hits = 0

    def clear(self) -> None:
        """Forget retained results. In-flight calls are left to settle."""
        self._recent.clear()

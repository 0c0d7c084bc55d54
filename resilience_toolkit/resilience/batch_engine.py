"""
Batch Engine

This module splits a large item list into chunks and runs them sequentially,
each through the error-recovery dispatcher.

Behavior:
- Chunks are taken lazily from the remaining items, so an adapted chunk size
  applies to the next chunk only. A remainder smaller than 30% of the chunk
  size is merged into the current chunk instead of running alone.
- Adaptive sizing scales the chunk size by sqrt(target / actual) whenever a
  chunk finishes outside the +/-20% band around the target duration, clamped
  to [min_chunk_size, max_chunk_size].
- A pause is inserted between chunks.
- When more than 3 chunks have been processed and over half of them failed,
  the remaining items are reported as failed (skipped) and the batch stops.
- A progress notification follows every chunk; callback errors are logged and
  never abort the batch.

Operations are called as ``await operation(items, context)`` where context is
the RecoveryContext of the chunk. Recovery strategies may shrink or split the
items they pass.
"""

import asyncio
import inspect
import math
import secrets
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Optional

from pydantic import ValidationError

from resilience_toolkit.core.exceptions import BatchConfigurationError
from resilience_toolkit.models.batch import (
    BatchConfig,
    BatchHistoryEntry,
    BatchProgress,
    BatchResult,
    ChunkError,
    ChunkTiming,
)
from resilience_toolkit.observability.logging import correlation_id_context, get_logger
from resilience_toolkit.resilience.error_recovery import (
    ErrorRecoveryDispatcher,
    RecoveryContext,
)
from resilience_toolkit.resilience.metrics import record_batch_chunk
from resilience_toolkit.services.analytics import AnalyticsAggregator

logger = get_logger(__name__)

BatchOperation = Callable[[list[Any], RecoveryContext], Awaitable[Any]]


# =============================================================================
# Constants
# =============================================================================

MAX_BATCH_HISTORY = 100
ANALYSIS_WINDOW = 20
MIN_MEASURABLE_DURATION_SECONDS = 0.001
SLOW_BATCH_SECONDS = 30.0


@dataclass
class PerformanceMetrics:
    """Cumulative engine counters."""

    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    total_chunks: int = 0
    total_chunk_seconds: float = 0.0
    adaptations: int = 0

    @property
    def average_chunk_seconds(self) -> float:
        if self.total_chunks == 0:
            return 0.0
        return self.total_chunk_seconds / self.total_chunks


@dataclass
class ActiveBatch:
    """A batch currently being processed."""

    batch_id: str
    operation: str
    total_items: int
    started: float
    config: BatchConfig


# =============================================================================
# BatchEngine
# =============================================================================


class BatchEngine:
    """
    Chunked, recoverable processing of large item lists.

    Example:
        >>> engine = BatchEngine()
        >>> result = await engine.process_batch(tag_strings, hashcodes)
        >>> replay = result.failed_items()
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        recovery: Optional[ErrorRecoveryDispatcher] = None,
        client: Any = None,
        analytics: Optional[AnalyticsAggregator] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        """
        Initialize BatchEngine.

        Args:
            config: Default batch configuration
            recovery: Dispatcher wrapping every chunk (a default one is built)
            client: Passed to chunk contexts for re-authentication
            analytics: Receives a summary of every finished batch
            clock: Monotonic clock returning seconds (default: time.monotonic)
            sleep: Async sleep used between chunks (default: asyncio.sleep)
        """
        self._config = config or BatchConfig()
        self._recovery = recovery or ErrorRecoveryDispatcher()
        self._client = client
        self._analytics = analytics
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

        self._active: dict[str, ActiveBatch] = {}
        self._history: deque[BatchHistoryEntry] = deque(maxlen=MAX_BATCH_HISTORY)
        self._metrics = PerformanceMetrics()

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        recovery: Optional[ErrorRecoveryDispatcher] = None,
        client: Any = None,
        analytics: Optional[AnalyticsAggregator] = None,
    ) -> "BatchEngine":
        """Create an engine configured from application settings."""
        return cls(
            config=BatchConfig.from_settings(settings),
            recovery=recovery or ErrorRecoveryDispatcher.from_settings(settings),
            client=client,
            analytics=analytics,
        )

    @property
    def config(self) -> BatchConfig:
        """Default batch configuration."""
        return self._config

    # =========================================================================
    # Chunk Planning
    # =========================================================================

    @staticmethod
    def next_chunk_length(remaining: int, chunk_size: int, undersized_ratio: float = 0.3) -> int:
        """
        Length of the next chunk given the remaining item count.

        The whole remainder is taken when what would be left afterwards is
        smaller than undersized_ratio * chunk_size.
        """
        if remaining <= chunk_size:
            return remaining
        leftover = remaining - chunk_size
        if leftover < chunk_size * undersized_ratio:
            return remaining
        return chunk_size

    @classmethod
    def plan_chunk_sizes(
        cls, total: int, chunk_size: int, undersized_ratio: float = 0.3
    ) -> list[int]:
        """Chunk lengths for total items at a fixed chunk size."""
        if chunk_size < 1:
            raise BatchConfigurationError(
                "chunk_size must be at least 1", field="chunk_size", value=chunk_size
            )
        sizes = []
        remaining = total
        while remaining > 0:
            size = cls.next_chunk_length(remaining, chunk_size, undersized_ratio)
            sizes.append(size)
            remaining -= size
        return sizes

    @classmethod
    def plan_chunks(
        cls, items: list[Any], chunk_size: int, undersized_ratio: float = 0.3
    ) -> list[list[Any]]:
        """
        Partition items into chunks of chunk_size.

        Example:
            >>> [len(c) for c in BatchEngine.plan_chunks(list(range(250)), 100)]
            [100, 100, 50]
        """
        chunks = []
        position = 0
        for size in cls.plan_chunk_sizes(len(items), chunk_size, undersized_ratio):
            chunks.append(items[position : position + size])
            position += size
        return chunks

    @staticmethod
    def adapt_chunk_size(current: int, duration_seconds: float, config: BatchConfig) -> int:
        """
        Chunk size for the next chunk after one took duration_seconds.

        Unchanged inside the tolerance band around the target duration;
        otherwise scaled by sqrt(target / actual) and clamped to bounds.
        """
        target = config.target_chunk_duration_seconds
        actual = max(duration_seconds, MIN_MEASURABLE_DURATION_SECONDS)

        if target * (1 - config.duration_tolerance) <= actual <= target * (
            1 + config.duration_tolerance
        ):
            return current

        scaled = int(current * math.sqrt(target / actual))
        return max(config.min_chunk_size, min(config.max_chunk_size, scaled))

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_batch(
        self,
        operation: BatchOperation,
        items: Iterable[Any],
        config: Optional[BatchConfig] = None,
        *,
        project_id: Optional[str] = None,
        operation_name: Optional[str] = None,
        **overrides: Any,
    ) -> BatchResult:
        """
        Process items in chunks through operation.

        Args:
            operation: Async callable ``(items, context) -> result``
            items: Items to process
            config: Configuration for this batch (default: engine config)
            project_id: Passed to chunk contexts
            operation_name: Label for logs and history
            **overrides: BatchConfig fields overriding config for this batch

        Returns:
            BatchResult with successful + failed == number of items

        Raises:
            BatchConfigurationError: overrides do not form a valid BatchConfig
        """
        config = config or self._config
        if overrides:
            config = self._merge_config(config, overrides)

        items = list(items)
        batch_id = self.generate_batch_id()
        name = operation_name or getattr(operation, "__name__", "unknown")
        started = self._clock()
        started_at = datetime.now(timezone.utc)

        self._active[batch_id] = ActiveBatch(batch_id, name, len(items), started, config)

        with correlation_id_context(batch_id):
            logger.info(
                "batch started",
                operation=name,
                total_items=len(items),
                chunk_size=config.chunk_size,
            )
            try:
                result = await self._execute_chunks(
                    operation, items, config, batch_id, project_id, started
                )
            except Exception as e:
                self._record_history(
                    batch_id, name, len(items), started, started_at, None, error=str(e)
                )
                logger.error("batch failed", operation=name, error=str(e))
                raise
            finally:
                self._active.pop(batch_id, None)

            self._record_history(batch_id, name, len(items), started, started_at, result)
            self._update_performance_metrics(result)
            if self._analytics is not None:
                self._analytics.record_batch_metrics(
                    batch_id,
                    result.total_items,
                    result.successful,
                    result.timing.total_seconds,
                    failed_items=result.failed,
                )
            logger.info(
                "batch completed",
                operation=name,
                successful=result.successful,
                failed=result.failed,
                aborted=result.aborted,
                duration_seconds=round(result.timing.total_seconds, 3),
            )
        return result

    async def _execute_chunks(
        self,
        operation: BatchOperation,
        items: list[Any],
        config: BatchConfig,
        batch_id: str,
        project_id: Optional[str],
        started: float,
    ) -> BatchResult:
        result = BatchResult(batch_id=batch_id, total_items=len(items))
        chunk_size = config.chunk_size
        position = 0
        index = 0
        processed_chunks = 0
        failed_chunks = 0

        while position < len(items):
            length = self.next_chunk_length(
                len(items) - position, chunk_size, config.undersized_chunk_ratio
            )
            chunk = items[position : position + length]
            position += length
            total_chunks = (
                index
                + 1
                + len(
                    self.plan_chunk_sizes(
                        len(items) - position, chunk_size, config.undersized_chunk_ratio
                    )
                )
            )
            result.chunk_sizes.append(len(chunk))

            context = RecoveryContext(
                operation_type="batch",
                project_id=project_id,
                batch_size=len(chunk),
                items=chunk,
                client=self._client,
                chunk_index=index,
                total_chunks=total_chunks,
                chunk_size=chunk_size,
            )

            chunk_started = self._clock()
            abort_reason = None
            try:
                chunk_result = await self._recovery.execute(
                    partial(self._run_chunk, operation), context
                )
            except Exception as e:
                duration = self._clock() - chunk_started
                processed_chunks += 1
                failed_chunks += 1
                result.failed += len(chunk)
                result.errors.append(
                    ChunkError(
                        chunk_index=index,
                        items=chunk,
                        error=str(e),
                        error_type=type(e).__name__,
                        duration_seconds=duration,
                    )
                )
                record_batch_chunk("failure", duration)
                logger.warning(
                    "batch chunk failed",
                    chunk_index=index,
                    total_chunks=total_chunks,
                    error=str(e),
                )
                abort_reason = self._abort_reason(config, processed_chunks, failed_chunks)
            else:
                duration = self._clock() - chunk_started
                processed_chunks += 1
                result.successful += len(chunk)
                result.results.append(chunk_result)
                result.timing.chunks.append(
                    ChunkTiming(index=index, size=len(chunk), duration_seconds=duration)
                )
                record_batch_chunk("success", duration)

                if config.adaptive_sizing:
                    adapted = self.adapt_chunk_size(chunk_size, duration, config)
                    if adapted != chunk_size:
                        self._metrics.adaptations += 1
                        logger.info(
                            "adapted chunk size",
                            previous=chunk_size,
                            adapted=adapted,
                            chunk_duration_seconds=round(duration, 3),
                        )
                    chunk_size = adapted

            await self._report_progress(config, result, index, total_chunks, started)
            index += 1

            if abort_reason is not None and position < len(items):
                remaining = items[position:]
                position = len(items)
                result.failed += len(remaining)
                result.errors.append(
                    ChunkError(
                        chunk_index=index,
                        items=remaining,
                        error=f"Batch aborted: {abort_reason}",
                        skipped=True,
                    )
                )
                result.aborted = True
                record_batch_chunk("skipped", 0.0)
                logger.warning(
                    "batch aborted",
                    reason=abort_reason,
                    skipped_items=len(remaining),
                )
                break

            if position < len(items) and config.delay_between_chunks_seconds > 0:
                await self._sleep(config.delay_between_chunks_seconds)

        result.timing.total_seconds = self._clock() - started
        return result

    @staticmethod
    async def _run_chunk(operation: BatchOperation, context: RecoveryContext) -> Any:
        return await operation(list(context.items or []), context)

    @staticmethod
    def _abort_reason(
        config: BatchConfig, processed_chunks: int, failed_chunks: int
    ) -> Optional[str]:
        if not config.continue_on_failure:
            return "chunk failed and continue_on_failure is disabled"
        failure_rate = failed_chunks / processed_chunks
        if processed_chunks > config.abort_min_chunks and failure_rate > config.abort_failure_rate:
            return f"high failure rate ({failure_rate * 100:.1f}%)"
        return None

    async def _report_progress(
        self,
        config: BatchConfig,
        result: BatchResult,
        chunk_index: int,
        total_chunks: int,
        started: float,
    ) -> None:
        processed = result.successful + result.failed
        progress = BatchProgress(
            batch_id=result.batch_id,
            batch_progress=round(processed / result.total_items * 100, 1),
            items_processed=processed,
            total_items=result.total_items,
            success_rate=result.successful / processed * 100 if processed else 0.0,
            elapsed_seconds=self._clock() - started,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
        )
        logger.debug(
            "batch progress",
            batch_progress=progress.batch_progress,
            items_processed=processed,
            total_items=result.total_items,
        )

        if config.progress_callback is None:
            return
        try:
            outcome = config.progress_callback(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("progress callback failed", error=str(e))

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _merge_config(config: BatchConfig, changes: dict[str, Any]) -> BatchConfig:
        data = config.model_dump()
        data["progress_callback"] = config.progress_callback
        data.update(changes)
        try:
            return BatchConfig.model_validate(data)
        except ValidationError as e:
            raise BatchConfigurationError(f"Invalid batch configuration: {e}") from e

    def update_config(self, **changes: Any) -> BatchConfig:
        """
        Update the engine's default configuration.

        Raises:
            BatchConfigurationError: The result is not a valid BatchConfig
        """
        self._config = self._merge_config(self._config, changes)
        logger.info(
            "batch engine config updated",
            changes={key: value for key, value in changes.items() if key != "progress_callback"},
        )
        return self._config

    # =========================================================================
    # Bookkeeping and Reporting
    # =========================================================================

    @staticmethod
    def generate_batch_id() -> str:
        """Identifier of the form batch_<epoch ms>_<9 hex chars>."""
        return f"batch_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"

    def _record_history(
        self,
        batch_id: str,
        operation: str,
        total_items: int,
        started: float,
        started_at: datetime,
        result: Optional[BatchResult],
        error: Optional[str] = None,
    ) -> None:
        self._history.append(
            BatchHistoryEntry(
                batch_id=batch_id,
                operation=operation,
                total_items=total_items,
                duration_seconds=self._clock() - started,
                success=result is not None and result.failed == 0,
                started_at=started_at,
                successful=result.successful if result else None,
                failed=result.failed if result else None,
                error_count=len(result.errors) if result else None,
                error=error,
            )
        )

    def _update_performance_metrics(self, result: BatchResult) -> None:
        self._metrics.total_items += result.total_items
        self._metrics.processed_items += result.successful
        self._metrics.failed_items += result.failed
        for timing in result.timing.chunks:
            self._metrics.total_chunks += 1
            self._metrics.total_chunk_seconds += timing.duration_seconds

    def get_performance_metrics(self) -> dict[str, Any]:
        """Cumulative counters as plain data."""
        metrics = self._metrics
        success_rate = (
            metrics.processed_items / metrics.total_items * 100 if metrics.total_items else 0.0
        )
        return {
            "total_items": metrics.total_items,
            "processed_items": metrics.processed_items,
            "failed_items": metrics.failed_items,
            "average_chunk_seconds": round(metrics.average_chunk_seconds, 4),
            "adaptations": metrics.adaptations,
            "success_rate": round(success_rate, 2),
            "active_batches": len(self._active),
            "history_size": len(self._history),
        }

    def get_active_batches(self) -> list[dict[str, Any]]:
        """Batches currently being processed."""
        now = self._clock()
        return [
            {
                "batch_id": batch.batch_id,
                "operation": batch.operation,
                "total_items": batch.total_items,
                "elapsed_seconds": round(now - batch.started, 3),
                "config": batch.config.model_dump(),
            }
            for batch in self._active.values()
        ]

    def get_batch_history(self, limit: int = 10) -> list[BatchHistoryEntry]:
        """The most recent finished batches, newest first."""
        if limit <= 0:
            return []
        return list(reversed(list(self._history)[-limit:]))

    def analyze_performance(self) -> dict[str, Any]:
        """
        Analyze the last 20 batches.

        Returns:
            Counts, success rate, averages and recommendations, or a message
            when no batch has finished yet
        """
        recent = list(self._history)[-ANALYSIS_WINDOW:]
        if not recent:
            return {"message": "No batch history available"}

        successful = [entry for entry in recent if entry.success]
        average_duration = (
            sum(entry.duration_seconds for entry in successful) / len(successful)
            if successful
            else 0.0
        )
        throughputs = [
            entry.total_items / entry.duration_seconds
            for entry in successful
            if entry.duration_seconds > 0
        ]
        average_items_per_second = sum(throughputs) / len(throughputs) if throughputs else 0.0

        return {
            "total_batches": len(recent),
            "successful_batches": len(successful),
            "failed_batches": len(recent) - len(successful),
            "success_rate": round(len(successful) / len(recent) * 100, 1),
            "average_duration_seconds": round(average_duration, 3),
            "average_items_per_second": round(average_items_per_second),
            "adaptations": self._metrics.adaptations,
            "recommendations": self._generate_recommendations(recent),
        }

    def _generate_recommendations(self, batches: list[BatchHistoryEntry]) -> list[dict[str, str]]:
        recommendations = []
        average_duration = sum(entry.duration_seconds for entry in batches) / len(batches)
        failure_rate = sum(1 for entry in batches if not entry.success) / len(batches)

        if average_duration > SLOW_BATCH_SECONDS:
            recommendations.append(
                {
                    "type": "performance",
                    "message": "Batches are taking too long on average",
                    "suggestion": "Reduce the chunk size or optimize the operation",
                }
            )

        if failure_rate > 0.1:
            recommendations.append(
                {
                    "type": "reliability",
                    "message": f"High failure rate detected: {failure_rate * 100:.1f}%",
                    "suggestion": "Review error patterns and recovery strategies",
                }
            )

        if self._metrics.adaptations > len(batches) * 0.5:
            recommendations.append(
                {
                    "type": "stability",
                    "message": "Frequent chunk size adaptations detected",
                    "suggestion": "Adjust the default chunk size to the operation's cost",
                }
            )

        return recommendations

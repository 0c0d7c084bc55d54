"""
Batch Models

This module contains Pydantic models for batch engine configuration,
progress notifications and results.

Pattern: Results are plain serializable data; failed items are kept on the
chunk error records so callers can replay them.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# Configuration
# =============================================================================


class BatchConfig(BaseModel):
    """
    Batch engine configuration.

    Attributes:
        chunk_size: Initial chunk size, within [min_chunk_size, max_chunk_size]
        min_chunk_size: Lower bound for adaptive sizing
        max_chunk_size: Upper bound for adaptive sizing
        delay_between_chunks_seconds: Pause between consecutive chunks
        adaptive_sizing: Rescale chunk size from observed chunk durations
        target_chunk_duration_seconds: Duration adaptive sizing aims for
        duration_tolerance: Relative band around the target left untouched
        continue_on_failure: Keep going after a failed chunk
        abort_failure_rate: Chunk failure rate that aborts the batch
        abort_min_chunks: Chunks that must be processed before rate-based abort
        undersized_chunk_ratio: Remainders below this share are merged
        progress_callback: Called with a BatchProgress after each chunk
    """

    chunk_size: int = Field(default=100, ge=1, description="Initial chunk size")
    min_chunk_size: int = Field(default=10, ge=1, description="Minimum chunk size")
    max_chunk_size: int = Field(default=500, ge=1, description="Maximum chunk size")
    delay_between_chunks_seconds: float = Field(
        default=0.2, ge=0.0, description="Pause between chunks"
    )
    adaptive_sizing: bool = Field(default=True, description="Adaptive chunk sizing")
    target_chunk_duration_seconds: float = Field(
        default=5.0, gt=0.0, description="Target per-chunk duration"
    )
    duration_tolerance: float = Field(
        default=0.2, ge=0.0, lt=1.0, description="Tolerance around the target"
    )
    continue_on_failure: bool = Field(default=True, description="Continue after failures")
    abort_failure_rate: float = Field(
        default=0.5, gt=0.0, le=1.0, description="Failure rate that aborts"
    )
    abort_min_chunks: int = Field(
        default=3, ge=0, description="Chunks processed before rate-based abort"
    )
    undersized_chunk_ratio: float = Field(
        default=0.3, ge=0.0, lt=1.0, description="Undersized remainder ratio"
    )
    progress_callback: Optional[Callable[..., Any]] = Field(
        default=None, exclude=True, description="Progress callback"
    )

    @model_validator(mode="after")
    def validate_chunk_bounds(self) -> "BatchConfig":
        """Ensure min <= chunk_size <= max."""
        if self.min_chunk_size > self.max_chunk_size:
            raise ValueError("min_chunk_size must not exceed max_chunk_size")
        if not self.min_chunk_size <= self.chunk_size <= self.max_chunk_size:
            raise ValueError(
                f"chunk_size must be within [{self.min_chunk_size}, {self.max_chunk_size}]"
            )
        return self

    @classmethod
    def from_settings(cls, settings: Any) -> "BatchConfig":
        """Build a BatchConfig from application settings."""
        return cls(
            chunk_size=settings.batch_chunk_size,
            min_chunk_size=settings.batch_min_chunk_size,
            max_chunk_size=settings.batch_max_chunk_size,
            delay_between_chunks_seconds=settings.batch_delay_between_chunks_seconds,
            adaptive_sizing=settings.batch_adaptive_sizing,
            target_chunk_duration_seconds=settings.batch_target_chunk_duration_seconds,
        )


# =============================================================================
# Progress
# =============================================================================


class BatchProgress(BaseModel):
    """
    Progress notification sent after each chunk.

    Attributes:
        batch_id: Batch identifier
        batch_progress: Percent of items processed (0-100)
        items_processed: Items processed so far (successful + failed)
        total_items: Items in the batch
        success_rate: Percent of processed items that succeeded
        elapsed_seconds: Time since the batch started
        chunk_index: Index of the chunk just processed
        total_chunks: Estimated number of chunks
    """

    batch_id: str
    batch_progress: float
    items_processed: int
    total_items: int
    success_rate: float
    elapsed_seconds: float
    chunk_index: int
    total_chunks: int


# =============================================================================
# Results
# =============================================================================


class ChunkTiming(BaseModel):
    """Timing of one successful chunk."""

    index: int
    size: int
    duration_seconds: float


class ChunkError(BaseModel):
    """
    Failure record for one chunk.

    Attributes:
        chunk_index: Index of the failed chunk
        items: Items of the chunk, kept for replay
        error: Error message
        error_type: Exception class name
        duration_seconds: Time spent before the chunk failed
        skipped: True when the items were never attempted (batch aborted)
    """

    chunk_index: int
    items: list[Any]
    error: str
    error_type: Optional[str] = None
    duration_seconds: float = 0.0
    skipped: bool = False


class BatchTiming(BaseModel):
    """Overall and per-chunk timing."""

    total_seconds: float = 0.0
    chunks: list[ChunkTiming] = Field(default_factory=list)


class BatchResult(BaseModel):
    """
    Outcome of a batch.

    successful + failed always equals total_items. A batch with failed
    chunks is a normal result; callers inspect errors.

    Attributes:
        batch_id: Batch identifier
        total_items: Items submitted
        successful: Items in successful chunks
        failed: Items in failed or skipped chunks
        results: Results of successful chunks, in chunk order
        errors: Failure records, in chunk order
        timing: Overall and per-chunk timing
        aborted: Whether remaining chunks were skipped
        chunk_sizes: Size of every attempted chunk, in order
    """

    batch_id: str
    total_items: int
    successful: int = 0
    failed: int = 0
    results: list[Any] = Field(default_factory=list)
    errors: list[ChunkError] = Field(default_factory=list)
    timing: BatchTiming = Field(default_factory=BatchTiming)
    aborted: bool = False
    chunk_sizes: list[int] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Percent of items that succeeded."""
        if self.total_items == 0:
            return 100.0
        return self.successful / self.total_items * 100

    def failed_items(self) -> list[Any]:
        """All items from failed and skipped chunks, in chunk order."""
        return [item for error in self.errors for item in error.items]


class BatchHistoryEntry(BaseModel):
    """Summary of a finished batch kept in the engine's history."""

    batch_id: str
    operation: str
    total_items: int
    duration_seconds: float
    success: bool
    started_at: datetime
    successful: Optional[int] = None
    failed: Optional[int] = None
    error_count: Optional[int] = None
    error: Optional[str] = None

"""Pydantic models for the resilience toolkit."""

from resilience_toolkit.models.batch import (
    BatchConfig,
    BatchHistoryEntry,
    BatchProgress,
    BatchResult,
    BatchTiming,
    ChunkError,
    ChunkTiming,
)

__all__ = [
    "BatchConfig",
    "BatchHistoryEntry",
    "BatchProgress",
    "BatchResult",
    "BatchTiming",
    "ChunkError",
    "ChunkTiming",
]

"""
Health Router

Health, resilience introspection and Prometheus metrics endpoints.

This surface is read-only: it reports component state as plain JSON and
never changes it.
"""

from typing import Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

from resilience_toolkit import __version__
from resilience_toolkit.api.deps import get_registry
from resilience_toolkit.observability.metrics import generate_metrics
from resilience_toolkit.registry import ResilienceRegistry


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str


class ResilienceStatusResponse(BaseModel):
    """Resilience introspection response model."""

    status: str
    overall_health: int
    breakers: dict[str, Any]
    cache: dict[str, Any]
    deduplication: dict[str, Any]
    recovery: dict[str, Any]
    batch: dict[str, Any]
    analytics: dict[str, Any]


# =============================================================================
# Router
# =============================================================================

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Liveness check.

    Returns:
        HealthResponse: {"status": "healthy", "version": ...}
    """
    return HealthResponse(status="healthy", version=__version__)


@router.get("/health/resilience", response_model=ResilienceStatusResponse)
async def resilience_status(
    registry: ResilienceRegistry = Depends(get_registry),
) -> ResilienceStatusResponse:
    """
    Snapshot of breakers, cache, deduplication, recovery, batch and analytics.

    status is "degraded" when any breaker is open or the overall breaker
    health is below the configured threshold.
    """
    return ResilienceStatusResponse(**registry.get_status())


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition of every toolkit metric."""
    return Response(content=generate_metrics(), media_type=CONTENT_TYPE_LATEST)

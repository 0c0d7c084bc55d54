"""
Resilience Toolkit - Application Entry Point

FastAPI application exposing the introspection API. The lifespan builds the
ResilienceRegistry, the only place process-wide component instances live.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI

from resilience_toolkit import __version__
from resilience_toolkit.api.routes.health import router as health_router
from resilience_toolkit.core.config import Settings, get_settings
from resilience_toolkit.observability.logging import configure_logging, get_logger
from resilience_toolkit.observability.metrics import MetricsMiddleware
from resilience_toolkit.registry import ResilienceRegistry

APP_NAME = "Resilience Toolkit"
APP_DESCRIPTION = "Introspection API for caching, circuit breaking and recovery"

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ResilienceRegistry] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings (default: get_settings())
        registry: Pre-built registry (for testing); built in the lifespan otherwise

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        app_settings = settings or get_settings()
        configure_logging(app_settings.log_level, force=True)

        app.state.registry = registry or ResilienceRegistry.build(app_settings)
        logger.info(
            "application started",
            service=app_settings.service_name,
            environment=app_settings.environment,
            version=__version__,
        )

        yield

        await app.state.registry.aclose()
        app.state.registry = None
        logger.info("application stopped", service=app_settings.service_name)

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(MetricsMiddleware)
    app.include_router(health_router)

    @app.get("/", tags=["Info"])
    async def root() -> dict[str, Any]:
        """Root endpoint returning basic service information."""
        return {"service": APP_NAME, "version": __version__}

    return app


app = create_app()

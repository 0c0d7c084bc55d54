"""
API Dependencies

FastAPI dependency functions for the introspection API. Each can be
overridden in tests through app.dependency_overrides.
"""

from fastapi import Request

from resilience_toolkit.registry import ResilienceRegistry


def get_registry(request: Request) -> ResilienceRegistry:
    """
    Registry built by the application lifespan.

    Raises:
        RuntimeError: The application was started without a registry
    """
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("Resilience registry is not initialized")
    return registry

"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
"""

from fastapi import APIRouter

from codeloom.api.routes.health import router as health_router
from codeloom.api.routes.sessions import router as sessions_router
from codeloom.api.routes.stream import router as stream_router


def create_api_router() -> APIRouter:
    """Create and configure the API router."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(sessions_router)
    api_router.include_router(stream_router)
    return api_router


__all__ = ["create_api_router"]

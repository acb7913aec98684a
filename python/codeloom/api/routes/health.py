"""Health check endpoints."""

from fastapi import APIRouter

from codeloom.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness only: neither Gemini nor the store is consulted."""
    return success_response({"status": "ok"})

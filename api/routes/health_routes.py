"""Health check endpoints.

Both paths are exempt from redirection and are never teed.
"""

from fastapi import APIRouter

from schemas import HealthResponse

SERVICE_NAME = "gddo-shim"

router = APIRouter(tags=["health"])


@router.get("/_ah/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Platform health check endpoint."""
    return HealthResponse(status="healthy", service=SERVICE_NAME)


@router.get("/-/bot", response_model=HealthResponse)
async def bot_check() -> HealthResponse:
    """Uptime-checker endpoint."""
    return HealthResponse(status="healthy", service=SERVICE_NAME)

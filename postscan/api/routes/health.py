"""Health check endpoint."""

from fastapi import APIRouter, Request
from pydantic import BaseModel

from postscan.utils.config import get_settings
from postscan.utils.version import VERSION

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    app: str
    version: str
    scheduler_running: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Check application health status."""
    settings = get_settings()
    coordinator = getattr(http_request.app.state, "coordinator", None)
    scheduler_running = bool(coordinator and coordinator.trigger.is_available())

    return HealthResponse(
        status="healthy" if scheduler_running else "degraded",
        app=settings.app_name,
        version=VERSION,
        scheduler_running=scheduler_running,
    )

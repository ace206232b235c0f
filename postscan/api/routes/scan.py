"""Posts maintenance scan endpoints."""

from typing import Optional, List
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from postscan.core.scanner import (
    ScanCoordinator,
    ScanState,
    ScanStatusView,
    SourceUnavailableError,
)

router = APIRouter()


class ScanStartRequest(BaseModel):
    """Request to start a new scan."""
    categories: Optional[List[str]] = Field(default=None, description="Post types to scan, default used when empty")
    batch_size: Optional[int] = None  # Out of range values fall back to the default


class ScanStartResponse(BaseModel):
    """Result of a start request."""
    accepted: bool
    message: str
    state: ScanState
    default_filter_applied: bool = False
    dropped_categories: List[str] = []
    warning: Optional[str] = None


class ScanCancelResponse(BaseModel):
    """Result of a cancel request."""
    cancelled: bool
    message: str
    state: ScanState


def _coordinator(http_request: Request) -> ScanCoordinator:
    return http_request.app.state.coordinator


@router.get("/status", response_model=ScanStatusView)
async def get_scan_status(http_request: Request):
    """Get current scan progress and the selectable post types."""
    return await _coordinator(http_request).get_status()


@router.post("/scan", response_model=ScanStartResponse)
async def start_scan(request: ScanStartRequest, http_request: Request):
    """Start a background scan. A running scan is reported, not restarted."""
    coordinator = _coordinator(http_request)

    try:
        result = await coordinator.start_scan(request.categories, request.batch_size)
    except SourceUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return ScanStartResponse(
        accepted=result.accepted,
        message="Scan started in background." if result.accepted else "Scan already running.",
        state=result.state,
        default_filter_applied=result.default_filter_applied,
        dropped_categories=result.dropped_categories,
        warning=result.warning,
    )


@router.post("/cancel", response_model=ScanCancelResponse)
async def cancel_scan(http_request: Request):
    """Stop the running scan."""
    result = await _coordinator(http_request).cancel_scan()

    return ScanCancelResponse(
        cancelled=result.cancelled,
        message="Scan cancelled." if result.cancelled else "No scan is currently running.",
        state=result.state,
    )

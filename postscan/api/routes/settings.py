"""Settings management endpoints."""

from typing import Optional, List
from datetime import timezone
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ValidationError
from apscheduler.triggers.cron import CronTrigger

from postscan.core.activity import log_activity
from postscan.core.scheduler import configure_daily_scan
from postscan.db.models import ActionType
from postscan.utils.config import get_config, update_config, ScanConfig

router = APIRouter()


class ScanSettingsUpdate(BaseModel):
    """Scan settings update."""
    default_batch_size: Optional[int] = None
    max_batch_size: Optional[int] = None
    default_categories: Optional[List[str]] = None
    batch_delay_seconds: Optional[float] = None
    retry_delay_seconds: Optional[float] = None
    stale_after_seconds: Optional[int] = None
    scheduled_scan_enabled: Optional[bool] = None
    scheduled_scan_cron: Optional[str] = None


@router.get("/scan", response_model=ScanConfig)
async def get_scan_settings():
    """Get the scan configuration."""
    return get_config().scan


@router.put("/scan", response_model=ScanConfig)
async def update_scan_settings(update: ScanSettingsUpdate, http_request: Request):
    """Update scan settings. Unset fields keep their current value."""
    changes = update.model_dump(exclude_none=True)
    if not changes:
        return get_config().scan

    if "scheduled_scan_cron" in changes:
        try:
            CronTrigger.from_crontab(changes["scheduled_scan_cron"], timezone=timezone.utc)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Invalid cron expression: {e}")

    try:
        config = update_config({"scan": changes})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    scheduler = getattr(http_request.app.state, "scheduler", None)
    if scheduler is not None:
        configure_daily_scan(scheduler, config.scan)

    await log_activity(
        ActionType.SETTINGS_CHANGED,
        "Scan settings updated",
        ", ".join(sorted(changes)),
        changes,
    )

    return config.scan

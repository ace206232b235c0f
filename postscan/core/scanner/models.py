"""Scan state and result models."""

from datetime import datetime, timezone
from typing import Optional, List

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Category(BaseModel):
    """A selectable item category (content type)."""
    slug: str
    label: str


class ScanState(BaseModel):
    """Configuration and progress of the current (or last) scan."""
    running: bool = False
    item_filter: List[str] = Field(default_factory=list)
    batch_size: int = 50
    offset: int = 0
    processed: int = 0
    # None until captured; fixed for the rest of the scan once set
    total: Optional[int] = None

    last_scan_completed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def percentage(self) -> float:
        if not self.total or self.total <= 0:
            return 0.0
        return round(min(100.0, self.processed / self.total * 100), 1)


class StoredState(BaseModel):
    """A scan state together with the store version it was read at."""
    state: ScanState
    version: int = 0


class StartResult(BaseModel):
    """Outcome of a start request."""
    accepted: bool
    state: ScanState
    default_filter_applied: bool = False
    dropped_categories: List[str] = Field(default_factory=list)
    warning: Optional[str] = None


class CancelResult(BaseModel):
    """Outcome of a cancel request."""
    cancelled: bool
    state: ScanState


class BatchResult(BaseModel):
    """Outcome of one batch execution."""
    batch_number: int
    fetched: int
    processed: int
    total: int
    offset: int
    completed: bool
    stale: bool = False


class ScanStatusView(BaseModel):
    """Read-only projection returned to UI/CLI callers."""
    running: bool
    processed: int
    total: int
    percentage: float
    offset: int
    batch_size: int
    selected_filter: List[str]
    last_scan_completed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    available_categories: List[Category] = Field(default_factory=list)
    trigger_available: bool
    pending_batches: int = 0
    stale: bool = False
    warning: Optional[str] = None
    default_batch_size: int
    max_batch_size: int

"""Batch scan coordinator API."""

from .coordinator import ScanCoordinator, build_coordinator
from .exceptions import ScanErrorBase, SourceUnavailableError, StateConflictError
from .item_source import ItemSource, PostItemSource
from .models import (
    BatchResult,
    CancelResult,
    Category,
    ScanState,
    ScanStatusView,
    StartResult,
)
from .state_store import ScanStateStore
from .trigger import BatchTrigger, QueueTrigger

__all__ = [
    "BatchResult",
    "BatchTrigger",
    "build_coordinator",
    "CancelResult",
    "Category",
    "ItemSource",
    "PostItemSource",
    "QueueTrigger",
    "ScanCoordinator",
    "ScanErrorBase",
    "ScanState",
    "ScanStateStore",
    "ScanStatusView",
    "SourceUnavailableError",
    "StartResult",
    "StateConflictError",
]

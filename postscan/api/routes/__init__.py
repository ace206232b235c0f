"""API Routes package."""

from . import (
    scan,
    settings,
    activity,
    health,
)

__all__ = [
    "scan",
    "settings",
    "activity",
    "health",
]

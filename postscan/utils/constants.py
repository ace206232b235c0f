"""
Centralized constants for postscan.

This module contains the magic numbers and storage keys used across the
application. Having them in one place:
- Makes it easy to adjust values
- Prevents duplication between the API, the CLI and the scheduler

Usage:
    from postscan.utils.constants import SCAN, OPTIONS
"""


# ============================================================================
# Scan Configuration
# ============================================================================

class SCAN:
    """
    Batch scan constants.
    """

    DEFAULT_BATCH_SIZE = 50
    MAX_BATCH_SIZE = 200

    # Used when a request selects no valid category
    DEFAULT_CATEGORIES = ["post", "page"]

    # Only items in this status are scanned
    ACTIVE_STATUS = "publish"

    # Post meta key stamped on every processed item
    PROCESSED_META_KEY = "last_scan"

    BATCH_DELAY_SECONDS = 1.0        # Delay between chained batches
    RETRY_DELAY_SECONDS = 30.0       # Delay before retrying a failed batch
    STALE_AFTER_SECONDS = 600        # Running scan with no update for this long is reported stale


# ============================================================================
# Persisted option keys
# ============================================================================

class OPTIONS:
    """
    Keys of the rows kept in the scan_options table.
    """

    STATE = "posts_maintenance_state"
    LAST_SCAN = "posts_maintenance_last_scan"


# ============================================================================
# Scheduler Configuration
# ============================================================================

class JOBS:
    """
    APScheduler job identifiers.
    """

    BATCH_PREFIX = "posts-maintenance-batch-"
    DAILY_SCAN = "posts-maintenance-daily"

    @classmethod
    def batch_id(cls, batch_number: int) -> str:
        return f"{cls.BATCH_PREFIX}{batch_number}"


# ============================================================================
# API Configuration
# ============================================================================

class API:
    """
    API-related constants.
    """

    DEFAULT_ACTIVITY_LIMIT = 50
    MAX_ACTIVITY_LIMIT = 500

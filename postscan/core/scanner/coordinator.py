"""Batch Scan Coordinator - starts scans, runs batches and reports progress."""

import asyncio
from datetime import timezone
from typing import Iterable, List, Optional, Tuple, Union

import structlog

from postscan.core.activity import log_activity
from postscan.core.scanner.exceptions import SourceUnavailableError, StateConflictError
from postscan.core.scanner.item_source import ItemSource, PostItemSource
from postscan.core.scanner.models import (
    BatchResult,
    CancelResult,
    Category,
    ScanState,
    ScanStatusView,
    StartResult,
    utcnow,
)
from postscan.core.scanner.state_store import ScanStateStore
from postscan.core.scanner.trigger import BatchTrigger
from postscan.db.models import ActionType
from postscan.utils.config import ScanConfig, get_config

logger = structlog.get_logger(__name__)

TRIGGER_UNAVAILABLE_WARNING = (
    "Background processing is unavailable; the scan is recorded but batches "
    "will not run until the scheduler is back."
)
SOURCE_UNAVAILABLE_WARNING = "Item source unavailable; categories could not be listed."


class ScanCoordinator:
    """
    Runs one scan at a time over an item source, one batch per trigger firing.

    Every call re-reads the persisted state, so a batch can run in a different
    process than the one that started the scan.
    """

    def __init__(
        self,
        source: ItemSource,
        trigger: BatchTrigger,
        store: Optional[ScanStateStore] = None,
        config: Optional[ScanConfig] = None,
    ):
        self.source = source
        self.trigger = trigger
        self.store = store or ScanStateStore()
        self._config = config
        self._lock = asyncio.Lock()

    @property
    def config(self) -> ScanConfig:
        return self._config or get_config().scan

    # =========================================================================
    # Request validation
    # =========================================================================

    def clamp_batch_size(self, requested) -> int:
        """Requested size if it lies in [1, max_batch_size], else the default."""
        default = self.config.effective_default_batch_size
        if requested is None or isinstance(requested, bool):
            return default
        try:
            size = int(requested)
        except (TypeError, ValueError):
            return default
        if size < 1 or size > self.config.max_batch_size:
            return default
        return size

    async def resolve_filter(
        self,
        requested: Union[None, str, Iterable[str]],
    ) -> Tuple[List[str], List[str], bool]:
        """
        Validate requested categories against the live list.

        Returns (filter, dropped, default_applied). Unknown categories are
        dropped; an empty result falls back to the configured default.
        """
        if isinstance(requested, str):
            requested = requested.split(",")

        valid = {category.slug for category in await self.source.list_categories()}

        selected: List[str] = []
        dropped: List[str] = []
        for slug in requested or []:
            slug = str(slug).strip()
            if not slug:
                continue
            if slug in valid:
                if slug not in selected:
                    selected.append(slug)
            elif slug not in dropped:
                dropped.append(slug)

        if selected:
            return selected, dropped, False
        return list(self.config.default_categories), dropped, True

    # =========================================================================
    # Controller
    # =========================================================================

    async def start_scan(
        self,
        categories: Union[None, str, Iterable[str]] = None,
        batch_size=None,
    ) -> StartResult:
        """Start a scan, or report the running one unchanged."""
        async with self._lock:
            stored = await self.store.load()
            if stored.state.running:
                logger.info("Scan already running", processed=stored.state.processed, total=stored.state.total)
                return StartResult(accepted=False, state=stored.state, warning=self._trigger_warning())

            item_filter, dropped, default_applied = await self.resolve_filter(categories)
            if dropped:
                logger.warning("Dropped unknown categories", dropped=dropped)
            if default_applied:
                logger.info("No valid category selected, using default", categories=item_filter)

            size = self.clamp_batch_size(batch_size)
            total = await self.source.count(item_filter, active_only=True)

            now = utcnow()
            state = ScanState(
                running=True,
                item_filter=item_filter,
                batch_size=size,
                offset=0,
                processed=0,
                total=total,
                last_scan_completed_at=stored.state.last_scan_completed_at,
                started_at=now,
                updated_at=now,
            )

            try:
                await self.store.save(state, stored.version)
            except StateConflictError:
                current = await self.store.load()
                logger.info("Another start won the race", running=current.state.running)
                return StartResult(accepted=False, state=current.state, warning=self._trigger_warning())

            dropped_pending = self.trigger.cancel_all_pending()
            if dropped_pending:
                logger.info("Cancelled stale batches", count=dropped_pending)
            armed = self.trigger.arm(0, delay=0.0)

            logger.info(
                "Scan started",
                categories=item_filter,
                batch_size=size,
                total=total,
                trigger_armed=armed,
            )
            await log_activity(
                ActionType.SCAN_STARTED,
                "Posts scan started",
                f"{total} item(s) in {', '.join(item_filter)}",
                {"categories": item_filter, "batch_size": size, "total": total},
            )

            return StartResult(
                accepted=True,
                state=state,
                default_filter_applied=default_applied,
                dropped_categories=dropped,
                warning=None if armed else TRIGGER_UNAVAILABLE_WARNING,
            )

    async def cancel_scan(self) -> CancelResult:
        """Stop the running scan without recording a completion."""
        async with self._lock:
            stored = await self.store.load()
            state = stored.state
            if not state.running:
                return CancelResult(cancelled=False, state=state)

            now = utcnow()
            state.running = False
            state.cancelled_at = now
            state.updated_at = now

            try:
                await self.store.save(state, stored.version)
            except StateConflictError:
                current = await self.store.load()
                return CancelResult(cancelled=False, state=current.state)

            self.trigger.cancel_all_pending()
            logger.info("Scan cancelled", processed=state.processed, total=state.total)
            await log_activity(
                ActionType.SCAN_CANCELLED,
                "Posts scan cancelled",
                f"Stopped after {state.processed}/{state.total or 0} item(s)",
            )
            return CancelResult(cancelled=True, state=state)

    async def resume(self) -> bool:
        """Re-arm a running scan that has no pending batch (e.g. after a restart)."""
        async with self._lock:
            state = (await self.store.load()).state
            if not state.running or self.trigger.pending_count() > 0:
                return False

            batch_number = state.offset // max(state.batch_size, 1)
            armed = self.trigger.arm(batch_number, delay=0.0)
            logger.info("Resuming interrupted scan", batch_number=batch_number, offset=state.offset, armed=armed)
            return armed

    # =========================================================================
    # Batch Executor
    # =========================================================================

    async def run_one(self, batch_number: int) -> Optional[BatchResult]:
        """
        Process one batch of the running scan.

        Returns None when there is nothing to do, including a batch number that
        does not match the stored offset (a duplicate or superseded firing). Raises SourceUnavailableError
        without recording progress when the item source fails.
        """
        if not self.trigger.is_available():
            logger.debug("Trigger unavailable, skipping batch", batch_number=batch_number)
            return None

        async with self._lock:
            stored = await self.store.load()
            state = stored.state
            if not state.running:
                logger.debug("No running scan, ignoring batch", batch_number=batch_number)
                return None

            expected = state.offset // max(state.batch_size, 1)
            if batch_number != expected:
                logger.warning("Out of sequence batch dropped", batch_number=batch_number, expected=expected)
                return None

            try:
                item_ids = await self.source.page(state.item_filter, True, state.offset, state.batch_size)

                if state.total is None:
                    state.total = await self.source.count(state.item_filter, active_only=True)

                now = utcnow()
                for item_id in item_ids:
                    if not await self.source.mark_processed(item_id, now):
                        raise SourceUnavailableError(f"Item {item_id} could not be marked processed")
            except SourceUnavailableError as e:
                logger.error("Batch failed, progress not recorded", batch_number=batch_number, offset=state.offset, error=str(e))
                await log_activity(
                    ActionType.BATCH_FAILED,
                    f"Batch {batch_number} failed",
                    str(e)[:500],
                    {"batch_number": batch_number, "offset": state.offset},
                )
                raise

            fetched = len(item_ids)
            state.processed += fetched
            state.offset += state.batch_size
            state.updated_at = now

            completed = state.processed >= state.total or fetched == 0
            if completed:
                state.running = False
                state.last_scan_completed_at = now

            try:
                if completed:
                    await self.store.save_completed(state, stored.version)
                else:
                    await self.store.save(state, stored.version)
            except StateConflictError:
                logger.warning("Stale batch invocation dropped", batch_number=batch_number)
                return BatchResult(
                    batch_number=batch_number,
                    fetched=fetched,
                    processed=state.processed - fetched,
                    total=state.total,
                    offset=state.offset - state.batch_size,
                    completed=False,
                    stale=True,
                )

            logger.info(
                "Batch processed",
                batch_number=batch_number,
                fetched=fetched,
                processed=state.processed,
                total=state.total,
            )

            if completed:
                logger.info("Scan completed", processed=state.processed, total=state.total)
                await log_activity(
                    ActionType.SCAN_COMPLETED,
                    "Posts scan completed",
                    f"{state.processed} item(s) stamped",
                    {"processed": state.processed, "total": state.total},
                )
            else:
                self.trigger.arm(batch_number + 1, delay=self.config.batch_delay_seconds)

            return BatchResult(
                batch_number=batch_number,
                fetched=fetched,
                processed=state.processed,
                total=state.total,
                offset=state.offset,
                completed=completed,
            )

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self) -> ScanStatusView:
        """Current state, available categories and trigger health. Never raises for an idle scanner."""
        state = (await self.store.load()).state
        config = self.config

        warnings = []
        try:
            categories: List[Category] = await self.source.list_categories()
        except SourceUnavailableError:
            categories = []
            warnings.append(SOURCE_UNAVAILABLE_WARNING)

        trigger_available = self.trigger.is_available()
        if not trigger_available:
            warnings.append(TRIGGER_UNAVAILABLE_WARNING)

        return ScanStatusView(
            running=state.running,
            processed=state.processed,
            total=state.total or 0,
            percentage=state.percentage,
            offset=state.offset,
            batch_size=state.batch_size,
            selected_filter=state.item_filter or list(config.default_categories),
            last_scan_completed_at=state.last_scan_completed_at,
            started_at=state.started_at,
            updated_at=state.updated_at,
            available_categories=categories,
            trigger_available=trigger_available,
            pending_batches=self.trigger.pending_count(),
            stale=self._is_stale(state),
            warning=" ".join(warnings) or None,
            default_batch_size=config.effective_default_batch_size,
            max_batch_size=config.max_batch_size,
        )

    def _is_stale(self, state: ScanState) -> bool:
        if not state.running or state.updated_at is None:
            return False
        updated_at = state.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        age = (utcnow() - updated_at).total_seconds()
        return age > self.config.stale_after_seconds

    def _trigger_warning(self) -> Optional[str]:
        return None if self.trigger.is_available() else TRIGGER_UNAVAILABLE_WARNING


def build_coordinator(trigger: BatchTrigger, config: Optional[ScanConfig] = None) -> ScanCoordinator:
    """Coordinator over the posts table. Without ``config`` the live app config is used."""
    scan_config = config or get_config().scan
    source = PostItemSource(
        meta_key=scan_config.processed_meta_key,
        active_status=scan_config.active_status,
    )
    return ScanCoordinator(source, trigger, config=config)

"""APScheduler - runs scan batches and the daily maintenance scan.

1. Scan batches: one DateTrigger job per armed batch, chained by the coordinator
2. Daily maintenance: CronTrigger job starting a scan with the last selected
   categories (only when scheduled_scan_enabled)

Batch jobs are plain module-level coroutines so a durable SQLAlchemy job store
can persist them across restarts.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from postscan.core.scanner.exceptions import SourceUnavailableError
from postscan.core.scanner.trigger import BatchTrigger
from postscan.utils.config import ScanConfig, Settings
from postscan.utils.constants import JOBS

logger = structlog.get_logger(__name__)

# Coordinator the jobs run against, set by setup_scheduler()
_coordinator = None


def register_coordinator(coordinator) -> None:
    global _coordinator
    _coordinator = coordinator


def get_coordinator():
    return _coordinator


async def process_batch_job(batch_number: int):
    """Run one batch; re-arm the same batch later if the item source failed."""
    coordinator = get_coordinator()
    if coordinator is None:
        logger.warning("No coordinator registered, dropping batch", batch_number=batch_number)
        return

    try:
        await coordinator.run_one(batch_number)
    except SourceUnavailableError as e:
        delay = coordinator.config.retry_delay_seconds
        logger.warning("Batch will be retried", batch_number=batch_number, delay_seconds=delay, error=str(e))
        coordinator.trigger.arm(batch_number, delay=delay)


async def daily_scan_job():
    """Daily maintenance: rescan the last selected categories."""
    coordinator = get_coordinator()
    if coordinator is None:
        return

    logger.info("Daily posts maintenance starting")
    try:
        state = (await coordinator.store.load()).state
        result = await coordinator.start_scan(state.item_filter or None, coordinator.config.effective_default_batch_size)
    except SourceUnavailableError as e:
        logger.error("Daily posts maintenance could not start", error=str(e))
        return

    if not result.accepted:
        logger.info("Daily posts maintenance skipped, scan already running")


class SchedulerTrigger(BatchTrigger):
    """Arms batches as one-shot APScheduler jobs."""

    def __init__(self, scheduler: AsyncIOScheduler):
        self.scheduler = scheduler

    def arm(self, batch_number: int, delay: float = 0.0) -> bool:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay, 0.0))
        self.scheduler.add_job(
            process_batch_job,
            DateTrigger(run_date=run_date),
            args=[batch_number],
            id=JOBS.batch_id(batch_number),
            name=f"Posts maintenance batch {batch_number}",
            replace_existing=True,
            misfire_grace_time=None,
            coalesce=True,
        )
        available = self.is_available()
        if not available:
            logger.warning("Scheduler not running, batch queued until it starts", batch_number=batch_number)
        return available

    def cancel_all_pending(self) -> int:
        jobs = self._batch_jobs()
        for job in jobs:
            self.scheduler.remove_job(job.id)
        return len(jobs)

    def is_available(self) -> bool:
        return self.scheduler.running

    def pending_count(self) -> int:
        return len(self._batch_jobs())

    def _batch_jobs(self) -> List[Job]:
        return [job for job in self.scheduler.get_jobs() if job.id.startswith(JOBS.BATCH_PREFIX)]


def create_scheduler(settings: Settings) -> AsyncIOScheduler:
    """Build the scheduler, with a durable job store when one is configured."""
    jobstores = {}
    if settings.scheduler_jobstore_url:
        from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore

        jobstores["default"] = SQLAlchemyJobStore(url=settings.scheduler_jobstore_url)
        logger.info("Using durable job store", url=settings.scheduler_jobstore_url)

    return AsyncIOScheduler(jobstores=jobstores, timezone=timezone.utc)


def configure_daily_scan(scheduler: AsyncIOScheduler, scan_config: ScanConfig) -> Optional[Job]:
    """Add, replace or remove the daily maintenance job to match the config."""
    existing = scheduler.get_job(JOBS.DAILY_SCAN)

    if not scan_config.scheduled_scan_enabled:
        if existing is not None:
            scheduler.remove_job(JOBS.DAILY_SCAN)
            logger.info("Daily posts maintenance disabled")
        return None

    job = scheduler.add_job(
        daily_scan_job,
        CronTrigger.from_crontab(scan_config.scheduled_scan_cron, timezone=timezone.utc),
        id=JOBS.DAILY_SCAN,
        name="Daily posts maintenance",
        replace_existing=True,
    )
    logger.info("Daily posts maintenance scheduled", cron=scan_config.scheduled_scan_cron)
    return job


def setup_scheduler(scheduler: AsyncIOScheduler, coordinator, scan_config: ScanConfig) -> None:
    """Register the coordinator, the daily job, and start the scheduler."""
    register_coordinator(coordinator)
    configure_daily_scan(scheduler, scan_config)

    scheduler.start()
    logger.info("Scheduler started", jobs=len(scheduler.get_jobs()))


def shutdown_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler without waiting for running jobs."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

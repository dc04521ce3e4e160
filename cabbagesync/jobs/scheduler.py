"""APScheduler setup for background jobs."""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cabbagesync.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def setup_scheduler() -> AsyncIOScheduler:
    """Set up and start the background scheduler."""
    global _scheduler

    settings = get_settings()

    _scheduler = AsyncIOScheduler()

    # Sync cursor retention - daily at 3 AM
    _scheduler.add_job(
        "cabbagesync.jobs.cleanup:prune_stale_sync_cursors",
        trigger=CronTrigger(hour=3, minute=0),
        id="prune_sync_cursors",
        name="Prune Stale Sync Cursors",
        replace_existing=True,
    )

    # Abandoned consent screens
    _scheduler.add_job(
        "cabbagesync.jobs.cleanup:purge_expired_code_verifiers",
        trigger=IntervalTrigger(minutes=settings.cleanup_interval_minutes),
        id="purge_code_verifiers",
        name="Purge Expired PKCE Code Verifiers",
        replace_existing=True,
    )

    _scheduler.start()
    logger.info("Background scheduler started")

    return _scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler

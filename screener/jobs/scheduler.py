"""APScheduler configuration and lifecycle management."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from screener.config import UPDATE_INTERVAL_MINUTES
from screener.jobs.update_stocks import scheduled_delta_update
from screener.services.enrichment import EnrichmentPipeline

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def create_scheduler(
    pipeline: EnrichmentPipeline,
    interval_minutes: int = UPDATE_INTERVAL_MINUTES,
) -> AsyncIOScheduler:
    """Create and configure the scheduler.

    The pipeline is passed as a job kwarg so the job function remains
    testable without global state.
    """
    scheduler = AsyncIOScheduler(timezone="US/Eastern")

    # -- Delta refresh: every N minutes, checks market hours at runtime -----
    scheduler.add_job(
        scheduled_delta_update,
        trigger="interval",
        minutes=interval_minutes,
        id="delta_update",
        name="Refresh most active symbols (US market hours only)",
        kwargs={"pipeline": pipeline},
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    return scheduler


def start_scheduler(pipeline: EnrichmentPipeline) -> AsyncIOScheduler:
    """Create, start, and return the scheduler."""
    global _scheduler
    _scheduler = create_scheduler(pipeline)
    _scheduler.start()
    logger.info("Scheduler started with %d jobs", len(_scheduler.get_jobs()))
    return _scheduler


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None

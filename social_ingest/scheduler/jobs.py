"""
Scheduled jobs and component wiring for the ingestion runtime.

APScheduler ticks:
- fetch_scheduling: hourly, creates distributed fetch jobs for both platforms
- job_processing: every PROCESSOR_INTERVAL_SECONDS, runs one processor cycle
- catalog_sync: every CATALOG_SYNC_INTERVAL_HOURS, queues a catalog sync job
- maintenance: every MAINTENANCE_INTERVAL_MINUTES, sweeps locks/orphans/posts
"""

import logging
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..archivist.models import JobKind, Platform
from ..catalog.synchronizer import CatalogSynchronizer, make_sync_handler
from ..config.settings import settings
from ..harvester.base import IncrementalFetcher
from ..harvester.farcaster import FarcasterFetcher
from ..harvester.twitter import TwitterFetcher
from .fetch_jobs import make_fetch_handler
from .job_scheduler import schedule_all_fetch_jobs, schedule_catalog_sync
from .maintenance import run_maintenance
from .processor import JobProcessor

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

# Shared components, created on first use
_fetchers: Dict[str, IncrementalFetcher] = {}
_synchronizer: Optional[CatalogSynchronizer] = None
_processor: Optional[JobProcessor] = None


def get_fetchers() -> Dict[str, IncrementalFetcher]:
    if not _fetchers:
        _fetchers[Platform.TWITTER.value] = TwitterFetcher()
        _fetchers[Platform.FARCASTER.value] = FarcasterFetcher()
    return _fetchers


def get_synchronizer() -> CatalogSynchronizer:
    global _synchronizer
    if _synchronizer is None:
        _synchronizer = CatalogSynchronizer()
    return _synchronizer


def get_processor() -> JobProcessor:
    global _processor
    if _processor is None:
        fetchers = get_fetchers()
        _processor = JobProcessor(handlers={
            JobKind.TWITTER_FETCH.value: make_fetch_handler(fetchers[Platform.TWITTER.value]),
            JobKind.FARCASTER_FETCH.value: make_fetch_handler(fetchers[Platform.FARCASTER.value]),
            JobKind.PROJECT_SYNC.value: make_sync_handler(get_synchronizer()),
        })
    return _processor


async def close_components() -> None:
    """Close HTTP clients held by fetchers and the catalog client."""
    global _synchronizer, _processor
    for fetcher in _fetchers.values():
        await fetcher.close()
    _fetchers.clear()
    if _synchronizer is not None:
        await _synchronizer.client.close()
    _synchronizer = None
    _processor = None


async def scheduled_fetch_scheduling_job():
    try:
        counts = await schedule_all_fetch_jobs()
        logger.info(f"Fetch scheduling tick: {counts}")
    except Exception as e:
        logger.error(f"Fetch scheduling tick failed: {e}", exc_info=True)


async def scheduled_processing_job():
    try:
        await get_processor().run_cycle("scheduled")
    except Exception as e:
        logger.error(f"Job processing tick failed: {e}", exc_info=True)


async def scheduled_catalog_sync_job():
    try:
        await schedule_catalog_sync()
    except Exception as e:
        logger.error(f"Catalog sync scheduling failed: {e}", exc_info=True)


async def scheduled_maintenance_job():
    try:
        await run_maintenance()
    except Exception as e:
        logger.error(f"Maintenance tick failed: {e}", exc_info=True)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Initialize and start the APScheduler.

    Every tick is single-instance: a tick that is still running when the
    next one fires causes the new one to be dropped.
    """
    global scheduler

    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Collapse missed runs into one
            "max_instances": 1,  # Only one instance at a time
            "misfire_grace_time": 600,
        }
    )

    scheduler.add_job(
        scheduled_fetch_scheduling_job,
        trigger=CronTrigger(minute=0),
        id="fetch_scheduling",
        name="Schedule social fetch jobs (hourly)",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_processing_job,
        trigger=IntervalTrigger(seconds=settings.processor_interval_seconds),
        id="job_processing",
        name=f"Process due jobs (every {settings.processor_interval_seconds}s)",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_catalog_sync_job,
        trigger=IntervalTrigger(hours=settings.catalog_sync_interval_hours),
        id="catalog_sync",
        name=f"Queue catalog sync (every {settings.catalog_sync_interval_hours}h)",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_maintenance_job,
        trigger=IntervalTrigger(minutes=settings.maintenance_interval_minutes),
        id="maintenance",
        name=f"Sweep locks, orphans and old posts (every {settings.maintenance_interval_minutes}m)",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

    return scheduler


def shutdown_scheduler():
    """Shutdown the scheduler without waiting for running jobs.

    Jobs interrupted by the shutdown stay in processing and are handed back
    to pending by the orphan sweep after restart.
    """
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")
        scheduler = None

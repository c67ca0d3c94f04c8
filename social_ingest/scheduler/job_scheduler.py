"""
Job scheduler - turns "projects with a handle" into time-distributed fetch jobs.

Each run spreads the new jobs evenly over the scheduling window with a small
random jitter, so the processor never hits a source with a burst of
requests. Projects that already have a pending job of the same kind are
skipped. No network calls happen here; only job rows are written.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..archivist import database
from ..archivist.account_storage import list_accounts_with_handle
from ..archivist.job_store import create_job, filter_without_pending, has_pending_job
from ..archivist.models import JobKind, Platform, PLATFORM_JOB_KINDS, utc_now_naive
from ..config.settings import settings

logger = logging.getLogger(__name__)

CATALOG_ENTITY_ID = "catalog"


def distribution_offset(index: int, total: int, window_minutes: int, max_jitter_seconds: int) -> timedelta:
    """Offset of job `index` of `total`: evenly spaced plus random jitter."""
    spacing = (index * window_minutes / total) if total else 0
    jitter = random.uniform(0, max_jitter_seconds) if max_jitter_seconds > 0 else 0
    return timedelta(minutes=spacing, seconds=jitter)


async def schedule_fetch_jobs(platform: Platform, now: Optional[datetime] = None) -> int:
    """Create one pending fetch job per project with a handle and no pending job.

    Returns the number of jobs created.
    """
    kind = PLATFORM_JOB_KINDS[platform].value
    now = now or utc_now_naive()

    async with database.get_session() as session:
        accounts = await list_accounts_with_handle(session, platform.value)
    if not accounts:
        logger.info(f"No projects with {platform.value} handles to schedule")
        return 0

    async with database.get_session() as session:
        project_ids = await filter_without_pending(session, [a.project_id for a in accounts], kind)

    skipped = len(accounts) - len(project_ids)
    if not project_ids:
        logger.info(f"All {len(accounts)} {platform.value} projects already have pending jobs")
        return 0

    total = len(project_ids)
    created = 0
    for index, project_id in enumerate(project_ids):
        scheduled_for = now + distribution_offset(
            index, total, settings.schedule_window_minutes, settings.schedule_max_jitter_seconds
        )
        try:
            async with database.get_session() as session:
                await create_job(
                    session,
                    entity_id=project_id,
                    kind=kind,
                    scheduled_for=scheduled_for,
                    details={
                        "platform": platform.value,
                        "scheduled_by": "job_scheduler",
                        "scheduled_at": now.isoformat(),
                        "distribution_index": index,
                        "total_in_batch": total,
                    },
                )
            created += 1
        except Exception as e:
            logger.error(f"Failed to schedule {kind} job for project {project_id}: {e}")

    logger.info(
        f"JOBS_SCHEDULED: {created} {kind} jobs over {settings.schedule_window_minutes}m "
        f"({skipped} skipped with pending jobs)"
    )
    return created


async def schedule_all_fetch_jobs() -> Dict[str, int]:
    """Schedule both platforms; a failure on one does not stop the other."""
    counts: Dict[str, int] = {}
    for platform in Platform:
        try:
            counts[platform.value] = await schedule_fetch_jobs(platform)
        except Exception as e:
            logger.error(f"Failed to schedule {platform.value} fetch jobs: {e}", exc_info=True)
            counts[platform.value] = 0
    counts["total"] = counts.get(Platform.TWITTER.value, 0) + counts.get(Platform.FARCASTER.value, 0)
    return counts


async def schedule_catalog_sync() -> bool:
    """Queue one catalog sync job unless one is already pending."""
    kind = JobKind.PROJECT_SYNC.value
    async with database.get_session() as session:
        if await has_pending_job(session, CATALOG_ENTITY_ID, kind):
            logger.info("Catalog sync already pending, not scheduling another")
            return False
        await create_job(
            session,
            entity_id=CATALOG_ENTITY_ID,
            kind=kind,
            details={"scheduled_by": "job_scheduler", "scheduled_at": utc_now_naive().isoformat()},
        )
    logger.info("JOBS_SCHEDULED: catalog sync job queued")
    return True

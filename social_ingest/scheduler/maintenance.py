"""
Periodic maintenance: expired locks, orphaned jobs, post retention.

Each step runs on its own so one failing sweep does not block the others.
"""

import logging
from typing import Dict

from ..archivist import database
from ..archivist.job_store import recover_orphaned_jobs
from ..archivist.locks import sweep_expired_locks
from ..archivist.post_storage import sweep_retention
from ..config.settings import settings

logger = logging.getLogger(__name__)


async def _recover_orphans() -> int:
    async with database.get_session() as session:
        return await recover_orphaned_jobs(session, settings.stuck_job_timeout_minutes)


async def _sweep_posts() -> int:
    async with database.get_session() as session:
        return await sweep_retention(session)


async def run_maintenance() -> Dict[str, int]:
    results: Dict[str, int] = {}
    steps = (
        ("expired_locks", sweep_expired_locks),
        ("orphaned_jobs", _recover_orphans),
        ("expired_posts", _sweep_posts),
    )
    for name, step in steps:
        try:
            results[name] = await step()
        except Exception as e:
            logger.error(f"Maintenance step {name} failed: {e}", exc_info=True)
            results[name] = -1

    if any(count > 0 for count in results.values()):
        logger.info(f"Maintenance: {results}")
    return results

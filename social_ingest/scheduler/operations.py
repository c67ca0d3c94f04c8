"""
Operational actions behind the admin API.

Each action goes through the same components as the scheduled path:
a forced fetch uses the incremental-fetch contract and cursor rules, and a
manual sync still has to win the sync lock.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from ..archivist import database
from ..archivist.account_storage import get_account, get_account_statistics, reset_cursor as reset_account_cursor
from ..archivist.job_store import get_job_statistics
from ..archivist.locks import get_lock_statistics
from ..archivist.models import Platform
from ..archivist.post_storage import get_post_statistics, get_recent_posts, purge_posts
from . import jobs
from .fetch_jobs import run_fetch
from .job_scheduler import schedule_all_fetch_jobs

logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    pass


async def trigger_catalog_sync() -> Dict[str, Any]:
    logger.info("Manual catalog sync requested")
    return await jobs.get_synchronizer().run()


async def trigger_processing() -> Optional[Dict[str, Any]]:
    return await jobs.get_processor().trigger_manual()


async def trigger_scheduling() -> Dict[str, int]:
    return await schedule_all_fetch_jobs()


async def force_fetch(project_id: str, platforms: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Fetch now for every platform the project has a handle for."""
    async with database.get_session() as session:
        account = await get_account(session, project_id)
    if account is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")

    wanted = set(platforms) if platforms else {p.value for p in Platform}
    fetchers = jobs.get_fetchers()
    results: Dict[str, Any] = {}

    for platform in Platform:
        if platform.value not in wanted:
            continue
        if not account.handle_for(platform.value):
            results[platform.value] = {"skipped": True, "reason": f"No {platform.value} handle"}
            continue
        try:
            results[platform.value] = await run_fetch(project_id, fetchers[platform.value])
        except Exception as e:
            logger.error(f"Force fetch of {platform.value} for project {project_id} failed: {e}")
            results[platform.value] = {"success": False, "error": str(e)}

    return {"project_id": project_id, "results": results}


async def reset_cursor(
    project_id: str,
    platform: Optional[str] = None,
    purge: bool = False,
) -> Dict[str, Any]:
    """Reset a project's cursor, optionally deleting its stored posts first."""
    if platform is not None:
        platform = Platform(platform).value

    async with database.get_session() as session:
        if await get_account(session, project_id) is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        purged = await purge_posts(session, project_id, platform) if purge else 0
        await reset_account_cursor(session, project_id, platform)

    logger.info(f"Reset cursor for project {project_id} (platform={platform or 'all'}, purged={purged})")
    return {"project_id": project_id, "platform": platform or "all", "posts_purged": purged}


async def get_recent_project_posts(project_id: str, limit: int = 10, platform: Optional[str] = None):
    async with database.get_session() as session:
        posts = await get_recent_posts(session, project_id, limit, platform)
    return [
        {
            "post_id": post.post_id,
            "platform": post.platform,
            "text": post.text,
            "url": post.url,
            "posted_at": post.posted_at.isoformat(),
        }
        for post in posts
    ]


async def get_statistics() -> Dict[str, Any]:
    async with database.get_session() as session:
        job_stats = await get_job_statistics(session)
        account_stats = await get_account_statistics(session)
        post_stats = await get_post_statistics(session)
    return {
        "jobs": job_stats,
        "locks": await get_lock_statistics(),
        "accounts": account_stats,
        "posts": post_stats,
    }

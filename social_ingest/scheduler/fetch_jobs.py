"""
Fetch job handlers: one incremental fetch for one project on one platform.

Outcome handling:
- ok: new posts stored, cursor advanced, attempt recorded
- auth_failed: attempt recorded, job completes (the next scheduled fetch
  tries to log in again)
- transient_error: attempt recorded, TransientFetchError raised so the
  processor retries with backoff
- invalid handle: error recorded on the account, job fails without retry
- no handle: job fails without retry
"""

import logging
import time
from typing import Any, Dict

from ..archivist import database
from ..archivist.account_storage import get_or_create_account, record_fetch_attempt
from ..archivist.models import ScheduledJob
from ..archivist.post_storage import store_posts
from ..harvester.base import FetchOutcome, IncrementalFetcher
from .processor import NonRetryableJobError, TransientFetchError

logger = logging.getLogger(__name__)


async def run_fetch(project_id: str, fetcher: IncrementalFetcher) -> Dict[str, Any]:
    """Fetch and store new posts for one project. Used by jobs and force-fetch."""
    platform = fetcher.platform
    started = time.monotonic()

    async with database.get_session() as session:
        account = await get_or_create_account(session, project_id)
        handle = account.handle_for(platform)
        since = account.cursor_for(platform)

    if not handle:
        raise NonRetryableJobError(f"Project {project_id} has no {platform} handle")

    if fetcher.normalize_handle(handle) is None:
        error = f"Invalid {platform} handle: {handle!r}"
        async with database.get_session() as session:
            await record_fetch_attempt(
                session,
                project_id,
                platform,
                {"platform": platform, "handle": handle, "outcome": "invalid_handle", "posts_found": 0},
                error=error,
            )
        raise NonRetryableJobError(f"Project {project_id}: {error}")

    result = await fetcher.fetch_incremental(handle, since)
    summary: Dict[str, Any] = {
        "platform": platform,
        "handle": handle,
        "outcome": result.outcome.value,
        "posts_found": len(result.items),
        "posts_stored": 0,
        "duplicates": 0,
        "scanned": result.scanned,
        "since": since.isoformat() if since else None,
    }

    if result.outcome != FetchOutcome.OK:
        summary["processing_time_ms"] = int((time.monotonic() - started) * 1000)
        async with database.get_session() as session:
            await record_fetch_attempt(session, project_id, platform, summary, error=result.error)
        if result.outcome == FetchOutcome.TRANSIENT_ERROR:
            raise TransientFetchError(f"{platform} fetch for {handle} failed: {result.error}")
        return summary

    async with database.get_session() as session:
        stored = await store_posts(session, project_id, platform, result.items)
        summary.update(
            posts_stored=stored["stored"],
            duplicates=stored["duplicates"],
            cursor=stored["cursor"],
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        await record_fetch_attempt(session, project_id, platform, summary)

    return summary


def make_fetch_handler(fetcher: IncrementalFetcher):
    """Adapt run_fetch to the job processor's handler signature."""

    async def handle_fetch_job(job: ScheduledJob) -> Dict[str, Any]:
        return await run_fetch(job.entity_id, fetcher)

    return handle_fetch_job

"""
Storage functions for fetched social posts.

Posts are deduplicated on their external post id; storing a batch also
advances the project's cursor for that platform and prunes old posts.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..config.settings import settings
from .account_storage import get_or_create_account, advance_cursor
from .database import dialect_insert
from .models import StoredSocialPost, as_naive_utc, utc_now_naive

logger = logging.getLogger(__name__)


async def store_posts(
    session: AsyncSession,
    project_id: str,
    platform: str,
    posts: Sequence[Any],
) -> Dict[str, Any]:
    """Persist new posts for a project and move its cursor forward.

    `posts` are harvester SocialPost objects (external_id, text, url,
    timestamp, author). Posts whose id is already stored are skipped.
    """
    account = await get_or_create_account(session, project_id)
    stored_ids: List[str] = []

    if posts:
        now = utc_now_naive()
        rows = [
            {
                "post_id": post.external_id,
                "project_id": project_id,
                "platform": platform,
                "text": post.text or "",
                "url": post.url,
                "author": post.author,
                "posted_at": as_naive_utc(post.timestamp),
                "fetched_at": now,
                "details": {},
            }
            for post in posts
        ]
        stmt = (
            dialect_insert(session, StoredSocialPost)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["post_id"])
            .returning(StoredSocialPost.post_id)
        )
        result = await session.execute(stmt)
        stored_ids = list(result.scalars().all())

    newest = max((as_naive_utc(p.timestamp) for p in posts), default=None)
    cursor = await advance_cursor(session, account, platform, newest)
    await session.flush()

    pruned = await prune_posts(session, project_id, platform)

    if stored_ids:
        logger.info(
            f"Stored {len(stored_ids)}/{len(posts)} {platform} posts for project {project_id} "
            f"(cursor={cursor.isoformat() if cursor else None}, pruned={pruned})"
        )

    return {
        "found": len(posts),
        "stored": len(stored_ids),
        "duplicates": len(posts) - len(stored_ids),
        "cursor": cursor.isoformat() if cursor else None,
        "pruned": pruned,
    }


async def prune_posts(
    session: AsyncSession,
    project_id: str,
    platform: str,
    max_age_days: Optional[int] = None,
    max_count: Optional[int] = None,
) -> int:
    """Delete posts past the age limit and beyond the newest `max_count`."""
    if max_age_days is None:
        max_age_days = settings.post_max_age_days
    if max_count is None:
        max_count = settings.post_max_count
    cutoff = utc_now_naive() - timedelta(days=max_age_days)

    aged = await session.execute(
        delete(StoredSocialPost)
        .where(
            StoredSocialPost.project_id == project_id,
            StoredSocialPost.platform == platform,
            StoredSocialPost.posted_at < cutoff,
        )
        .execution_options(synchronize_session=False)
    )

    overflow = await session.execute(
        select(StoredSocialPost.id)
        .where(
            StoredSocialPost.project_id == project_id,
            StoredSocialPost.platform == platform,
        )
        .order_by(StoredSocialPost.posted_at.desc(), StoredSocialPost.id.desc())
        .offset(max_count)
    )
    overflow_ids = list(overflow.scalars().all())
    if overflow_ids:
        await session.execute(
            delete(StoredSocialPost)
            .where(StoredSocialPost.id.in_(overflow_ids))
            .execution_options(synchronize_session=False)
        )

    return (aged.rowcount or 0) + len(overflow_ids)


async def sweep_retention(session: AsyncSession, max_age_days: Optional[int] = None) -> int:
    """Global age-based sweep across all projects."""
    if max_age_days is None:
        max_age_days = settings.post_max_age_days
    cutoff = utc_now_naive() - timedelta(days=max_age_days)
    result = await session.execute(
        delete(StoredSocialPost)
        .where(StoredSocialPost.posted_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0
    if deleted:
        logger.info(f"Retention sweep removed {deleted} posts older than {cutoff.date()}")
    return deleted


async def get_recent_posts(
    session: AsyncSession,
    project_id: str,
    limit: int = 10,
    platform: Optional[str] = None,
) -> List[StoredSocialPost]:
    stmt = (
        select(StoredSocialPost)
        .where(StoredSocialPost.project_id == project_id)
        .order_by(StoredSocialPost.posted_at.desc())
        .limit(limit)
    )
    if platform:
        stmt = stmt.where(StoredSocialPost.platform == platform)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def purge_posts(session: AsyncSession, project_id: str, platform: Optional[str] = None) -> int:
    stmt = delete(StoredSocialPost).where(StoredSocialPost.project_id == project_id)
    if platform:
        stmt = stmt.where(StoredSocialPost.platform == platform)
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0


async def get_post_statistics(session: AsyncSession) -> Dict[str, Any]:
    result = await session.execute(
        select(StoredSocialPost.platform, func.count(StoredSocialPost.id)).group_by(StoredSocialPost.platform)
    )
    by_platform = {platform: count for platform, count in result.all()}
    return {"total_posts": sum(by_platform.values()), "posts_by_platform": by_platform}

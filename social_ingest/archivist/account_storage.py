"""
Storage functions for project social accounts (handles, cursors, catalog metadata).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .database import dialect_insert
from .models import ProjectSocialAccount, Platform, utc_now_naive

logger = logging.getLogger(__name__)

# Columns the catalog synchronizer is allowed to overwrite
CATALOG_FIELDS = (
    "twitter_handle",
    "farcaster_username",
    "title",
    "slug",
    "description",
    "project_status",
    "quality_score",
    "power_rank",
    "total_donations",
    "last_update_date",
    "last_update_title",
    "last_update_content",
)


def _handle_column(platform: str):
    if platform == Platform.TWITTER.value:
        return ProjectSocialAccount.twitter_handle
    if platform == Platform.FARCASTER.value:
        return ProjectSocialAccount.farcaster_username
    raise ValueError(f"Unknown platform: {platform}")


def _cursor_attr(platform: str) -> str:
    return f"latest_{Platform(platform).value}_post_at"


def _fetch_attr(platform: str) -> str:
    return f"last_{Platform(platform).value}_fetch"


async def get_account(session: AsyncSession, project_id: str) -> Optional[ProjectSocialAccount]:
    result = await session.execute(
        select(ProjectSocialAccount).where(ProjectSocialAccount.project_id == project_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_account(session: AsyncSession, project_id: str) -> ProjectSocialAccount:
    """Load the account for a project, creating an empty one on first contact."""
    stmt = (
        dialect_insert(session, ProjectSocialAccount)
        .values(
            project_id=project_id,
            details={"created_by": "fetch"},
            created_at=utc_now_naive(),
            updated_at=utc_now_naive(),
        )
        .on_conflict_do_nothing(index_elements=["project_id"])
    )
    await session.execute(stmt)
    account = await get_account(session, project_id)
    if account is None:
        raise RuntimeError(f"Account for project {project_id} vanished after insert")
    return account


async def upsert_catalog_account(session: AsyncSession, data: Dict[str, Any]) -> None:
    """Insert or update one project's catalog metadata.

    Cursor and fetch-time columns are never touched here, so a sync can
    not move a cursor backwards.
    """
    now = utc_now_naive()
    values = {field: data.get(field) for field in CATALOG_FIELDS}
    details = dict(data.get("details") or {})

    existing = await get_account(session, data["project_id"])
    if existing is None:
        stmt = (
            dialect_insert(session, ProjectSocialAccount)
            .values(project_id=data["project_id"], details=details, created_at=now, updated_at=now, **values)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["project_id"],
            set_={**values, "updated_at": now},
        )
        await session.execute(stmt)
        return

    for field, value in values.items():
        setattr(existing, field, value)
    existing.details = {**(existing.details or {}), **details}
    existing.updated_at = now
    session.add(existing)
    await session.flush()


async def list_accounts_with_handle(session: AsyncSession, platform: str) -> List[ProjectSocialAccount]:
    """Accounts that should be scheduled for the platform."""
    column = _handle_column(platform)
    stmt = (
        select(ProjectSocialAccount)
        .where(column.is_not(None), column != "")
        .order_by(ProjectSocialAccount.project_id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def advance_cursor(
    session: AsyncSession,
    account: ProjectSocialAccount,
    platform: str,
    newest: Optional[datetime],
) -> Optional[datetime]:
    """Move the platform cursor forward to `newest`. Never moves backwards.

    Returns the cursor value after the call.
    """
    attr = _cursor_attr(platform)
    current = getattr(account, attr)
    if newest is None or (current is not None and newest <= current):
        return current

    setattr(account, attr, newest)
    account.updated_at = utc_now_naive()
    session.add(account)
    return newest


async def record_fetch_attempt(
    session: AsyncSession,
    project_id: str,
    platform: str,
    summary: Dict[str, Any],
    error: Optional[str] = None,
) -> None:
    """Stamp the fetch attempt time and store the result summary on the account."""
    account = await get_or_create_account(session, project_id)
    now = utc_now_naive()

    details = dict(account.details or {})
    details[f"last_{platform}_fetch_result"] = {**summary, "timestamp": now.isoformat(), "success": error is None}
    if error is not None:
        details[f"last_{platform}_error"] = error
    else:
        details.pop(f"last_{platform}_error", None)

    setattr(account, _fetch_attr(platform), now)
    account.details = details
    account.updated_at = now
    session.add(account)


async def reset_cursor(
    session: AsyncSession,
    project_id: str,
    platform: Optional[str] = None,
) -> bool:
    """Administrative reset of one or all platform cursors.

    The only operation allowed to move a cursor backwards.
    """
    account = await get_account(session, project_id)
    if account is None:
        return False

    platforms = [platform] if platform else [p.value for p in Platform]
    for name in platforms:
        setattr(account, _cursor_attr(name), None)

    now = utc_now_naive()
    account.details = {
        **(account.details or {}),
        "cursor_reset_at": now.isoformat(),
        "cursor_reset_platforms": platforms,
    }
    account.updated_at = now
    session.add(account)
    logger.info(f"Cursor reset for project {project_id}: {', '.join(platforms)}")
    return True


async def get_rank_context(session: AsyncSession, project_id: str) -> Dict[str, Optional[int]]:
    """Rank inputs consumed by the external scorer: own rank and total ranked projects."""
    account = await get_account(session, project_id)
    result = await session.execute(
        select(func.count(ProjectSocialAccount.id)).where(ProjectSocialAccount.power_rank.is_not(None))
    )
    return {
        "rank": account.power_rank if account else None,
        "total_ranked": result.scalar() or 0,
    }


async def get_account_statistics(session: AsyncSession) -> Dict[str, int]:
    def has(column):
        return and_(column.is_not(None), column != "")

    total = await session.execute(select(func.count(ProjectSocialAccount.id)))
    twitter = await session.execute(
        select(func.count(ProjectSocialAccount.id)).where(has(ProjectSocialAccount.twitter_handle))
    )
    farcaster = await session.execute(
        select(func.count(ProjectSocialAccount.id)).where(has(ProjectSocialAccount.farcaster_username))
    )
    any_social = await session.execute(
        select(func.count(ProjectSocialAccount.id)).where(
            or_(has(ProjectSocialAccount.twitter_handle), has(ProjectSocialAccount.farcaster_username))
        )
    )
    return {
        "total_accounts": total.scalar() or 0,
        "with_twitter": twitter.scalar() or 0,
        "with_farcaster": farcaster.scalar() or 0,
        "with_social_media": any_social.scalar() or 0,
    }

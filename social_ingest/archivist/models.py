"""
Database models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- ScheduledJob: Persisted unit of ingestion work with a status state machine
- ProjectSocialAccount: Per-project social handles, fetch cursors and catalog metadata
- StoredSocialPost: Deduplicated tweets/casts keyed by external post id
- SyncLock: TTL-bounded exclusive claim on a named resource
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Index, JSON, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import SQLModel, Field


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns require naive datetimes.
    Using timezone-aware datetimes causes asyncpg DataError.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _json_column() -> Column:
    # JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
    return Column("details", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)


class JobKind(str, Enum):
    TWITTER_FETCH = "twitter_fetch"
    FARCASTER_FETCH = "farcaster_fetch"
    PROJECT_SYNC = "project_sync"
    # Evaluation kinds are handled by the external scoring service
    SINGLE_CAUSE_EVALUATION = "single_cause_evaluation"
    MULTI_CAUSE_EVALUATION = "multi_cause_evaluation"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Platform(str, Enum):
    TWITTER = "twitter"
    FARCASTER = "farcaster"


# Fetch job kind for each platform
PLATFORM_JOB_KINDS = {
    Platform.TWITTER: JobKind.TWITTER_FETCH,
    Platform.FARCASTER: JobKind.FARCASTER_FETCH,
}


class ScheduledJob(SQLModel, table=True):
    """A persisted unit of ingestion work.

    Lifecycle: pending -> processing -> completed, or back to pending with
    attempts + 1 and a later scheduled_for on a retryable failure, or failed
    once retries are exhausted. Jobs stuck in processing are reset to pending
    by the orphan recovery sweep.
    """
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        Index("ix_scheduled_jobs_status_scheduled_for", "status", "scheduled_for"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)  # Project id, or "catalog" for sync jobs
    kind: str = Field(index=True)  # JobKind value
    status: str = Field(default=JobStatus.PENDING.value, index=True)
    scheduled_for: datetime = Field(default_factory=utc_now_naive, index=True)
    attempts: int = Field(default=0)
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    details: dict = Field(default_factory=dict, sa_column=_json_column())
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now_naive)
    updated_at: datetime = Field(default_factory=utc_now_naive)


class ProjectSocialAccount(SQLModel, table=True):
    """Social handles, incremental cursors and catalog metadata for one project."""
    __tablename__ = "project_social_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(unique=True, index=True)

    # Handles (presence means the project gets scheduled for that platform)
    twitter_handle: Optional[str] = None
    farcaster_username: Optional[str] = None

    # Last fetch attempt per platform (success or failure)
    last_twitter_fetch: Optional[datetime] = None
    last_farcaster_fetch: Optional[datetime] = None

    # Incremental cursors: timestamp of newest stored post per platform
    latest_twitter_post_at: Optional[datetime] = None
    latest_farcaster_post_at: Optional[datetime] = None

    # Catalog metadata
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    project_status: Optional[str] = None
    quality_score: Optional[float] = None
    power_rank: Optional[int] = None
    total_donations: Optional[float] = None
    last_update_date: Optional[datetime] = None
    last_update_title: Optional[str] = None
    last_update_content: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    details: dict = Field(default_factory=dict, sa_column=_json_column())
    created_at: datetime = Field(default_factory=utc_now_naive)
    updated_at: datetime = Field(default_factory=utc_now_naive)

    def handle_for(self, platform: str) -> Optional[str]:
        if platform == Platform.TWITTER.value:
            return self.twitter_handle
        return self.farcaster_username

    def cursor_for(self, platform: str) -> Optional[datetime]:
        if platform == Platform.TWITTER.value:
            return self.latest_twitter_post_at
        return self.latest_farcaster_post_at


class StoredSocialPost(SQLModel, table=True):
    """A tweet or cast, deduplicated on its external post id."""
    __tablename__ = "social_posts"
    __table_args__ = (
        Index("ix_social_posts_project_platform_posted", "project_id", "platform", "posted_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: str = Field(unique=True, index=True)
    project_id: str = Field(index=True)
    platform: str
    text: str = Field(sa_column=Column(Text, nullable=False))
    url: Optional[str] = None
    author: Optional[str] = None
    posted_at: datetime = Field(index=True)
    fetched_at: datetime = Field(default_factory=utc_now_naive)
    details: dict = Field(default_factory=dict, sa_column=_json_column())


class SyncLock(SQLModel, table=True):
    """Exclusive, TTL-bounded claim on a named resource."""
    __tablename__ = "sync_locks"

    id: Optional[int] = Field(default=None, primary_key=True)
    lock_key: str = Field(unique=True)
    acquired_by: str
    acquired_at: datetime = Field(default_factory=utc_now_naive)
    expires_at: datetime = Field(index=True)

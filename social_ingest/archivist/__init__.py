from .database import get_session, get_db, init_db, close_db
from .models import (
    ScheduledJob,
    ProjectSocialAccount,
    StoredSocialPost,
    SyncLock,
    JobKind,
    JobStatus,
    Platform,
    PLATFORM_JOB_KINDS,
    utc_now_naive,
)
from .locks import DistributedLock, sweep_expired_locks, get_lock_statistics

__all__ = [
    "get_session",
    "get_db",
    "init_db",
    "close_db",
    "ScheduledJob",
    "ProjectSocialAccount",
    "StoredSocialPost",
    "SyncLock",
    "JobKind",
    "JobStatus",
    "Platform",
    "PLATFORM_JOB_KINDS",
    "utc_now_naive",
    "DistributedLock",
    "sweep_expired_locks",
    "get_lock_statistics",
]

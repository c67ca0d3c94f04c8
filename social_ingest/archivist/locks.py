"""
DistributedLock - TTL-based mutual exclusion backed by the sync_locks table.

Keeps long-running work (catalog sync) singleton across instances:
- acquire() is an atomic insert-if-absent on the unique lock_key
- release() only deletes the row owned by this holder
- extend() pushes expires_at forward; hold() does it from a background
  heartbeat so long work never outlives its TTL
- sweep_expired_locks() removes rows left behind by crashed holders

Usage:
    lock = DistributedLock()
    async with lock.hold("project_sync", ttl=timedelta(minutes=30)) as acquired:
        if not acquired:
            return  # someone else is running it
        ...
"""

import asyncio
import logging
import os
import socket
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import select, delete, func, update

from . import database
from .models import SyncLock, utc_now_naive

logger = logging.getLogger(__name__)


def default_holder_id() -> str:
    """host:pid:random - unique per process instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class DistributedLock:
    """Lock over the relational store. Each instance has its own holder identity."""

    def __init__(self, holder: Optional[str] = None):
        self.holder = holder or default_holder_id()

    async def acquire(self, key: str, ttl: timedelta) -> bool:
        """Try to take the lock. Returns True if this holder now owns it."""
        now = utc_now_naive()
        async with database.get_session() as session:
            # An expired row belongs to a crashed holder; reclaim it
            await session.execute(
                delete(SyncLock)
                .where(SyncLock.lock_key == key, SyncLock.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            stmt = (
                database.dialect_insert(session, SyncLock)
                .values(lock_key=key, acquired_by=self.holder, acquired_at=now, expires_at=now + ttl)
                .on_conflict_do_nothing(index_elements=["lock_key"])
                .returning(SyncLock.id)
            )
            result = await session.execute(stmt)
            acquired = result.scalar_one_or_none() is not None

        if acquired:
            logger.info(f"Lock acquired: {key} by {self.holder} (ttl={ttl})")
        else:
            logger.debug(f"Lock {key} is held by another process")
        return acquired

    async def release(self, key: str) -> None:
        """Release the lock if this holder owns it. No-op otherwise."""
        async with database.get_session() as session:
            result = await session.execute(
                delete(SyncLock)
                .where(SyncLock.lock_key == key, SyncLock.acquired_by == self.holder)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(f"Lock released: {key} by {self.holder}")

    async def extend(self, key: str, ttl: timedelta) -> bool:
        """Reset expires_at to now + ttl. False if this holder no longer owns the lock."""
        async with database.get_session() as session:
            result = await session.execute(
                update(SyncLock)
                .where(SyncLock.lock_key == key, SyncLock.acquired_by == self.holder)
                .values(expires_at=utc_now_naive() + ttl)
                .execution_options(synchronize_session=False)
            )
        extended = result.rowcount == 1
        if extended:
            logger.debug(f"Lock extended: {key} by {self.holder}")
        else:
            logger.warning(f"Lock {key} lost by {self.holder} before it could be extended")
        return extended

    async def _heartbeat_loop(self, key: str, ttl: timedelta, interval: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                await self.extend(key, ttl)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Lock heartbeat for {key} failed: {e}")

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        ttl: timedelta,
        heartbeat_interval: Optional[float] = None,
    ) -> AsyncIterator[bool]:
        """Context manager yielding whether the lock was acquired; always releases.

        While held, the lock is extended every `heartbeat_interval` seconds
        (a third of the TTL by default).
        """
        acquired = await self.acquire(key, ttl)
        heartbeat: Optional[asyncio.Task] = None
        if acquired:
            interval = heartbeat_interval or ttl.total_seconds() / 3
            heartbeat = asyncio.create_task(
                self._heartbeat_loop(key, ttl, interval),
                name=f"lock_heartbeat_{key}",
            )
        try:
            yield acquired
        finally:
            if heartbeat:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
            if acquired:
                await self.release(key)


async def sweep_expired_locks() -> int:
    """Delete every lock past its expires_at (crash recovery)."""
    now = utc_now_naive()
    async with database.get_session() as session:
        result = await session.execute(
            delete(SyncLock)
            .where(SyncLock.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
    swept = result.rowcount or 0
    if swept:
        logger.warning(f"Swept {swept} expired locks")
    return swept


async def get_lock_statistics() -> Dict[str, Any]:
    now = utc_now_naive()
    async with database.get_session() as session:
        result = await session.execute(
            select(SyncLock.lock_key, func.count(SyncLock.id)).group_by(SyncLock.lock_key)
        )
        by_key = {key: count for key, count in result.all()}
        expired = await session.execute(
            select(func.count(SyncLock.id)).where(SyncLock.expires_at <= now)
        )
        expired_count = expired.scalar() or 0

    total = sum(by_key.values())
    return {
        "total_locks": total,
        "active_locks": total - expired_count,
        "expired_locks": expired_count,
        "locks_by_key": by_key,
    }

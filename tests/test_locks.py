"""
Tests for the table-backed DistributedLock.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from social_ingest.archivist import database
from social_ingest.archivist.locks import DistributedLock, get_lock_statistics, sweep_expired_locks
from social_ingest.archivist.models import SyncLock, utc_now_naive

TTL = timedelta(minutes=30)


async def expire(key: str) -> None:
    async with database.get_session() as session:
        await session.execute(
            update(SyncLock)
            .where(SyncLock.lock_key == key)
            .values(expires_at=utc_now_naive() - timedelta(minutes=1))
        )


async def expires_at(key: str):
    async with database.get_session() as session:
        result = await session.execute(select(SyncLock.expires_at).where(SyncLock.lock_key == key))
        return result.scalar_one_or_none()


class TestDistributedLock:

    @pytest.mark.asyncio
    async def test_only_one_holder_wins(self, db):
        first, second = DistributedLock("a"), DistributedLock("b")

        assert await first.acquire("project_sync", TTL) is True
        assert await second.acquire("project_sync", TTL) is False

    @pytest.mark.asyncio
    async def test_release_lets_next_holder_in(self, db):
        first, second = DistributedLock("a"), DistributedLock("b")
        await first.acquire("project_sync", TTL)

        await first.release("project_sync")

        assert await second.acquire("project_sync", TTL) is True

    @pytest.mark.asyncio
    async def test_release_by_non_owner_is_noop(self, db):
        first, second = DistributedLock("a"), DistributedLock("b")
        await first.acquire("project_sync", TTL)

        await second.release("project_sync")

        assert await second.acquire("project_sync", TTL) is False

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self, db):
        crashed, survivor = DistributedLock("crashed"), DistributedLock("survivor")
        await crashed.acquire("project_sync", TTL)
        await expire("project_sync")

        assert await survivor.acquire("project_sync", TTL) is True

    @pytest.mark.asyncio
    async def test_independent_keys(self, db):
        lock = DistributedLock("a")
        assert await lock.acquire("one", TTL) is True
        assert await DistributedLock("b").acquire("two", TTL) is True

    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self, db):
        lock = DistributedLock("a")

        with pytest.raises(RuntimeError):
            async with lock.hold("project_sync", TTL) as acquired:
                assert acquired is True
                raise RuntimeError("sync blew up")

        assert await DistributedLock("b").acquire("project_sync", TTL) is True

    @pytest.mark.asyncio
    async def test_hold_yields_false_when_busy(self, db):
        await DistributedLock("a").acquire("project_sync", TTL)

        async with DistributedLock("b").hold("project_sync", TTL) as acquired:
            assert acquired is False

        # the busy holder must not have released someone else's lock
        stats = await get_lock_statistics()
        assert stats["locks_by_key"] == {"project_sync": 1}


class TestLockExtension:

    @pytest.mark.asyncio
    async def test_owner_extends_expiry(self, db):
        lock = DistributedLock("a")
        await lock.acquire("project_sync", timedelta(minutes=1))

        assert await lock.extend("project_sync", TTL) is True
        assert await expires_at("project_sync") > utc_now_naive() + timedelta(minutes=25)

    @pytest.mark.asyncio
    async def test_non_owner_cannot_extend(self, db):
        await DistributedLock("a").acquire("project_sync", TTL)
        before = await expires_at("project_sync")

        assert await DistributedLock("b").extend("project_sync", timedelta(hours=5)) is False
        assert await expires_at("project_sync") == before

    @pytest.mark.asyncio
    async def test_hold_keeps_long_work_locked(self, db):
        lock = DistributedLock("a")

        async with lock.hold("project_sync", TTL, heartbeat_interval=0.01) as acquired:
            assert acquired is True
            # simulate work running past the original expiry
            await expire("project_sync")
            await asyncio.sleep(0.2)

            assert await expires_at("project_sync") > utc_now_naive()
            assert await DistributedLock("b").acquire("project_sync", TTL) is False

        assert await expires_at("project_sync") is None
        assert await DistributedLock("b").acquire("project_sync", TTL) is True


class TestLockMaintenance:

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, db):
        await DistributedLock("a").acquire("stale", TTL)
        await DistributedLock("a").acquire("fresh", TTL)
        await expire("stale")

        assert await sweep_expired_locks() == 1
        stats = await get_lock_statistics()
        assert stats["locks_by_key"] == {"fresh": 1}
        assert stats["active_locks"] == 1
        assert stats["expired_locks"] == 0

"""
Tests for admin operations, maintenance and the API key guard.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from social_ingest.archivist import database
from social_ingest.archivist.account_storage import get_account
from social_ingest.archivist.job_store import create_job
from social_ingest.archivist.locks import DistributedLock
from social_ingest.archivist.models import JobStatus, ScheduledJob, StoredSocialPost, SyncLock, utc_now_naive
from social_ingest.archivist.post_storage import store_posts
from social_ingest.harvester.base import SocialPost
from social_ingest.main import app
from social_ingest.scheduler import jobs, maintenance, operations

from tests.test_helpers import FakeFetcher, add_account, make_items


@pytest.fixture
def fake_fetchers(monkeypatch):
    fetchers = {
        "twitter": FakeFetcher("twitter", make_items([1, 2, 3])),
        "farcaster": FakeFetcher("farcaster", make_items([1], prefix="c"), fail_times=1),
    }
    monkeypatch.setattr(jobs, "_fetchers", fetchers)
    return fetchers


class TestForceFetch:

    @pytest.mark.asyncio
    async def test_unknown_project(self, db, fake_fetchers):
        with pytest.raises(operations.ProjectNotFoundError):
            await operations.force_fetch("missing")

    @pytest.mark.asyncio
    async def test_fetches_every_platform_with_a_handle(self, db, no_delays, fake_fetchers):
        await add_account("p1", twitter_handle="proj")

        result = await operations.force_fetch("p1")

        assert result["results"]["twitter"]["posts_stored"] == 3
        assert result["results"]["farcaster"] == {"skipped": True, "reason": "No farcaster handle"}

    @pytest.mark.asyncio
    async def test_failed_platform_is_reported_not_raised(self, db, no_delays, fake_fetchers):
        await add_account("p1", twitter_handle="proj", farcaster_username="alice")

        result = await operations.force_fetch("p1", ["farcaster"])

        assert list(result["results"]) == ["farcaster"]
        assert result["results"]["farcaster"]["success"] is False


class TestResetCursor:

    @pytest.mark.asyncio
    async def test_reset_with_purge(self, db, no_delays, fake_fetchers):
        await add_account("p1", twitter_handle="proj")
        await operations.force_fetch("p1", ["twitter"])

        result = await operations.reset_cursor("p1", "twitter", purge=True)

        assert result == {"project_id": "p1", "platform": "twitter", "posts_purged": 3}
        async with database.get_session() as session:
            acc = await get_account(session, "p1")
        assert acc.latest_twitter_post_at is None
        assert await operations.get_recent_project_posts("p1") == []

    @pytest.mark.asyncio
    async def test_refetch_after_reset_stores_again(self, db, no_delays, fake_fetchers):
        await add_account("p1", twitter_handle="proj")
        await operations.force_fetch("p1", ["twitter"])
        await operations.reset_cursor("p1", "twitter", purge=True)

        result = await operations.force_fetch("p1", ["twitter"])

        assert result["results"]["twitter"]["posts_stored"] == 3

    @pytest.mark.asyncio
    async def test_unknown_platform(self, db):
        await add_account("p1", twitter_handle="proj")
        with pytest.raises(ValueError):
            await operations.reset_cursor("p1", "myspace")


class TestStatistics:

    @pytest.mark.asyncio
    async def test_statistics_cover_every_store(self, db):
        await add_account("p1", twitter_handle="proj", farcaster_username="alice")
        async with database.get_session() as session:
            await create_job(session, "p1", "twitter_fetch")
            await store_posts(session, "p1", "twitter", [
                SocialPost(external_id="1", text="hi", timestamp=utc_now_naive(), url=None, platform="twitter"),
            ])

        stats = await operations.get_statistics()

        assert stats["jobs"]["pending"] == 1
        assert stats["accounts"]["with_social_media"] == 1
        assert stats["posts"]["posts_by_platform"] == {"twitter": 1}
        assert stats["locks"]["total_locks"] == 0


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_sweeps_locks_orphans_and_old_posts(self, db):
        stale = utc_now_naive() - timedelta(hours=2)
        await DistributedLock("crashed").acquire("project_sync", timedelta(minutes=30))
        async with database.get_session() as session:
            job = await create_job(session, "p1", "twitter_fetch")
            session.add(StoredSocialPost(
                post_id="ancient", project_id="p1", platform="twitter", text="",
                posted_at=utc_now_naive() - timedelta(days=120),
            ))
        async with database.get_session() as session:
            await session.execute(update(SyncLock).values(expires_at=utc_now_naive() - timedelta(minutes=1)))
            await session.execute(
                update(ScheduledJob)
                .where(ScheduledJob.id == job.id)
                .values(status=JobStatus.PROCESSING.value, updated_at=stale)
            )

        results = await maintenance.run_maintenance()

        assert results == {"expired_locks": 1, "orphaned_jobs": 1, "expired_posts": 1}

    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_the_others(self, db, monkeypatch):
        async def broken():
            raise RuntimeError("db unavailable")

        monkeypatch.setattr(maintenance, "sweep_expired_locks", broken)

        results = await maintenance.run_maintenance()

        assert results["expired_locks"] == -1
        assert results["orphaned_jobs"] == 0
        assert results["expired_posts"] == 0


class TestApiKeyGuard:

    def test_admin_routes_need_a_key(self):
        client = TestClient(app)
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/admin/stats").status_code == 401
        assert client.get("/admin/stats", headers={"X-API-Key": "wrong"}).status_code == 403

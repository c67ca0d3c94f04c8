"""
Tests for table definitions: timestamp columns stay TIMESTAMP WITHOUT TIME ZONE.
"""

import pytest
from sqlalchemy import DateTime, select

from social_ingest.archivist import database
from social_ingest.archivist.models import (
    JobKind,
    ProjectSocialAccount,
    ScheduledJob,
    StoredSocialPost,
    SyncLock,
    utc_now_naive,
)


class TestTimestampColumns:

    def test_datetime_columns_are_naive(self):
        for model in (ScheduledJob, ProjectSocialAccount, StoredSocialPost, SyncLock):
            for column in model.__table__.columns:
                if isinstance(column.type, DateTime):
                    assert column.type.timezone is False, f"{model.__name__}.{column.name}"

        assert isinstance(ScheduledJob.__table__.c.scheduled_for.type, DateTime)
        assert isinstance(SyncLock.__table__.c.expires_at.type, DateTime)

    @pytest.mark.asyncio
    async def test_naive_utc_round_trips(self, db):
        now = utc_now_naive()
        async with database.get_session() as session:
            session.add(ScheduledJob(entity_id="p1", kind=JobKind.TWITTER_FETCH.value, scheduled_for=now))

        async with database.get_session() as session:
            job = (await session.execute(select(ScheduledJob))).scalars().one()

        assert job.scheduled_for == now
        assert job.scheduled_for.tzinfo is None

"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures.
For fake sources and builders, see test_helpers.py.
"""

import os

# Point settings at sqlite before any social_ingest module is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel


# =============================================================================
# Database fixtures
# =============================================================================
@pytest.fixture
async def db(tmp_path, monkeypatch):
    """Fresh file-backed sqlite database wired into get_session()."""
    from social_ingest.archivist import database
    from social_ingest.archivist import models  # noqa: F401 - registers tables

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ingest.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "async_session_factory", factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def no_delays(monkeypatch):
    """Zero out every rate-limit window."""
    from social_ingest.config.settings import settings

    for name in (
        "twitter_min_delay", "twitter_max_delay",
        "farcaster_min_delay", "farcaster_max_delay",
        "default_min_delay", "default_max_delay",
    ):
        monkeypatch.setattr(settings, name, 0.0)

"""
Database session management for async SQLAlchemy operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

from ..config.settings import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    """Pool and driver options for the configured backend."""
    if not url.startswith("postgresql+asyncpg"):
        return {"echo": False}
    return {
        "echo": False,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,   # Detect stale connections before use
        "pool_recycle": 3600,    # Recycle connections every hour
        "pool_timeout": 30,      # Wait max 30s for connection from pool
        "connect_args": {
            "command_timeout": 30,  # Timeout for individual queries (asyncpg)
            "server_settings": {
                "statement_timeout": "30000",  # PostgreSQL statement timeout (ms)
            },
        },
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db():
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Commits when the block exits cleanly, rolls back and re-raises otherwise.
    PostgreSQL statement_timeout bounds stuck transactions at the database level.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database session error, rolling back: {e}")
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Use get_session() for non-FastAPI code (scheduler, processor, synchronizer).
    """
    async with get_session() as session:
        yield session


def dialect_insert(session: AsyncSession, model):
    """Return an INSERT construct supporting ON CONFLICT for the session's backend."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)

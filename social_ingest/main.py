"""
Social Ingest - Main Application Entry Point

Runs the scheduled ingestion runtime (APScheduler) inside a FastAPI app
and exposes a small API-key protected admin surface:
- manual catalog sync, processing and scheduling triggers
- force fetch / cursor reset for one project
- aggregate statistics
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Security
from fastapi.security import APIKeyHeader

from .archivist import close_db, init_db
from .config.settings import settings
from .scheduler import close_components, setup_scheduler, shutdown_scheduler
from .scheduler import operations

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ----- API Key Security -----

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for protected endpoints."""
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")
    if api_key not in settings.valid_api_keys:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return api_key


def run_migrations():
    """Run Alembic migrations on startup. Failures are logged, not raised."""
    import subprocess
    import sys

    logger.info("Running database migrations...")
    try:
        result = subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            capture_output=True,
            text=True,
            timeout=120,  # 2 minute timeout
        )
        if result.returncode == 0:
            logger.info("Database migrations completed successfully")
        else:
            logger.warning(f"Migration warning: {result.stderr[-500:]}")
    except subprocess.TimeoutExpired:
        logger.warning("Migration timed out (database may be unavailable)")
    except Exception as e:
        logger.warning(f"Could not run migrations: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Social Ingest...")

    if settings.run_migrations_on_startup:
        run_migrations()

    if settings.auto_create_tables:
        try:
            await init_db()
            logger.info("Database tables ensured")
        except Exception as e:
            logger.warning(f"Could not create tables: {e}")

    try:
        setup_scheduler()
    except Exception as e:
        logger.error(f"Could not start scheduler: {e}", exc_info=True)

    yield

    logger.info("Shutting down...")
    shutdown_scheduler()

    try:
        await close_components()
    except Exception as e:
        logger.warning(f"Error closing HTTP clients: {e}")

    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database: {e}")


app = FastAPI(
    title="Social Ingest",
    description="Scheduled ingestion of project social activity and catalog metadata",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/admin/sync", dependencies=[Security(verify_api_key)])
async def admin_sync():
    return await operations.trigger_catalog_sync()


@app.post("/admin/process", dependencies=[Security(verify_api_key)])
async def admin_process():
    summary = await operations.trigger_processing()
    if summary is None:
        return {"skipped": True, "reason": "Processor cycle already running"}
    return summary


@app.post("/admin/schedule", dependencies=[Security(verify_api_key)])
async def admin_schedule():
    return await operations.trigger_scheduling()


@app.post("/admin/fetch/{project_id}", dependencies=[Security(verify_api_key)])
async def admin_force_fetch(project_id: str, platform: Optional[str] = Query(default=None)):
    try:
        return await operations.force_fetch(project_id, [platform] if platform else None)
    except operations.ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/admin/reset-cursor/{project_id}", dependencies=[Security(verify_api_key)])
async def admin_reset_cursor(
    project_id: str,
    platform: Optional[str] = Query(default=None),
    purge: bool = Query(default=False),
):
    try:
        return await operations.reset_cursor(project_id, platform, purge)
    except operations.ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/admin/projects/{project_id}/posts", dependencies=[Security(verify_api_key)])
async def admin_recent_posts(
    project_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    platform: Optional[str] = Query(default=None),
):
    return await operations.get_recent_project_posts(project_id, limit, platform)


@app.get("/admin/stats", dependencies=[Security(verify_api_key)])
async def admin_stats():
    return await operations.get_statistics()


def run_server():
    """Run the FastAPI server."""
    import uvicorn
    uvicorn.run(
        "social_ingest.main:app",
        host="0.0.0.0",
        port=8000,
    )


if __name__ == "__main__":
    run_server()

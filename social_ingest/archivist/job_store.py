"""
Storage functions for scheduled ingestion jobs.

All functions take an AsyncSession and leave commit/rollback to the caller
(normally get_session()). State transitions are conditional updates so two
instances racing on the same row cannot both win.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ScheduledJob, JobStatus, utc_now_naive

logger = logging.getLogger(__name__)

MAX_RETRIES_ERROR = "Maximum retry attempts exceeded"


async def create_job(
    session: AsyncSession,
    entity_id: str,
    kind: str,
    scheduled_for: Optional[datetime] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ScheduledJob:
    """Insert a new pending job."""
    now = utc_now_naive()
    job = ScheduledJob(
        entity_id=entity_id,
        kind=kind,
        status=JobStatus.PENDING.value,
        scheduled_for=scheduled_for or now,
        attempts=0,
        details=dict(details or {}),
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()
    return job


async def get_job(session: AsyncSession, job_id: int) -> Optional[ScheduledJob]:
    result = await session.execute(select(ScheduledJob).where(ScheduledJob.id == job_id))
    return result.scalar_one_or_none()


async def has_pending_job(session: AsyncSession, entity_id: str, kind: str) -> bool:
    stmt = select(func.count(ScheduledJob.id)).where(
        ScheduledJob.entity_id == entity_id,
        ScheduledJob.kind == kind,
        ScheduledJob.status == JobStatus.PENDING.value,
    )
    result = await session.execute(stmt)
    return (result.scalar() or 0) > 0


async def filter_without_pending(
    session: AsyncSession,
    entity_ids: Iterable[str],
    kind: str,
) -> List[str]:
    """Return the entity ids that have no pending job of this kind.

    If the lookup fails, every id is returned so scheduling still happens;
    duplicate pending jobs are cheaper than silently skipping a cycle.
    """
    ids = list(dict.fromkeys(entity_ids))
    if not ids:
        return []

    try:
        stmt = select(ScheduledJob.entity_id).where(
            ScheduledJob.entity_id.in_(ids),
            ScheduledJob.kind == kind,
            ScheduledJob.status == JobStatus.PENDING.value,
        )
        result = await session.execute(stmt)
        pending: Set[str] = set(result.scalars().all())
    except Exception as e:
        logger.error(f"Failed to check pending {kind} jobs, scheduling all {len(ids)}: {e}")
        return ids

    return [entity_id for entity_id in ids if entity_id not in pending]


async def get_due_jobs(
    session: AsyncSession,
    limit: int,
    kinds: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> List[ScheduledJob]:
    """Pending jobs whose scheduled_for has passed, oldest first."""
    now = now or utc_now_naive()
    stmt = (
        select(ScheduledJob)
        .where(
            ScheduledJob.status == JobStatus.PENDING.value,
            ScheduledJob.scheduled_for <= now,
        )
        .order_by(ScheduledJob.scheduled_for.asc(), ScheduledJob.id.asc())
        .limit(limit)
    )
    if kinds is not None:
        stmt = stmt.where(ScheduledJob.kind.in_(list(kinds)))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def claim_job(session: AsyncSession, job_id: int) -> Optional[ScheduledJob]:
    """Move a pending job to processing.

    Returns the refreshed job, or None if it was no longer pending
    (claimed by another instance or cancelled).
    """
    job = await get_job(session, job_id)
    if job is None or job.status != JobStatus.PENDING.value:
        return None

    now = utc_now_naive()
    result = await session.execute(
        update(ScheduledJob)
        .where(ScheduledJob.id == job_id, ScheduledJob.status == JobStatus.PENDING.value)
        .values(
            status=JobStatus.PROCESSING.value,
            updated_at=now,
            details={**(job.details or {}), "processing_started_at": now.isoformat()},
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None

    await session.refresh(job)
    return job


async def complete_job(
    session: AsyncSession,
    job_id: int,
    result: Optional[Dict[str, Any]] = None,
) -> None:
    job = await get_job(session, job_id)
    if job is None:
        logger.warning(f"complete_job: job {job_id} not found")
        return

    now = utc_now_naive()
    details = {**(job.details or {}), "completed_at": now.isoformat()}
    if result is not None:
        details["processing_result"] = result

    job.status = JobStatus.COMPLETED.value
    job.processed_at = now
    job.updated_at = now
    job.error = None
    job.details = details
    session.add(job)


async def record_failure(
    session: AsyncSession,
    job_id: int,
    error: str,
    max_retries: int,
    base_minutes: float,
) -> Optional[str]:
    """Apply the retry policy after a failed attempt.

    attempts < max_retries: back to pending, attempts + 1, scheduled_for
    pushed out by base * 2^(attempt - 1) minutes. Otherwise failed for good.

    Returns the resulting status, or None if the job does not exist.
    """
    job = await get_job(session, job_id)
    if job is None:
        logger.warning(f"record_failure: job {job_id} not found")
        return None

    now = utc_now_naive()
    previous_attempts = job.attempts or 0
    attempt = previous_attempts + 1
    details = {**(job.details or {}), "last_failed_at": now.isoformat()}

    job.attempts = attempt
    job.updated_at = now

    if previous_attempts < max_retries:
        delay = timedelta(minutes=base_minutes * (2 ** (attempt - 1)))
        next_run = now + delay
        details["next_retry_at"] = next_run.isoformat()
        job.status = JobStatus.PENDING.value
        job.scheduled_for = next_run
        job.error = error
        job.details = details
        session.add(job)
        logger.warning(
            f"JOB_RETRY: job {job_id} ({job.kind}, entity={job.entity_id}) attempt "
            f"{attempt}/{max_retries} failed, retrying in {delay.total_seconds() / 60:.1f}m: {error}"
        )
        return JobStatus.PENDING.value

    details["max_retries_exceeded"] = True
    job.status = JobStatus.FAILED.value
    job.processed_at = now
    job.error = f"{MAX_RETRIES_ERROR}: {error}"
    job.details = details
    session.add(job)
    logger.error(
        f"JOB_FAILED: job {job_id} ({job.kind}, entity={job.entity_id}) "
        f"failed after {attempt} attempts: {error}"
    )
    return JobStatus.FAILED.value


async def fail_job(session: AsyncSession, job_id: int, error: str) -> None:
    """Mark a job failed without retrying (non-retryable errors)."""
    job = await get_job(session, job_id)
    if job is None:
        logger.warning(f"fail_job: job {job_id} not found")
        return

    now = utc_now_naive()
    job.status = JobStatus.FAILED.value
    job.attempts = (job.attempts or 0) + 1
    job.error = error
    job.processed_at = now
    job.updated_at = now
    job.details = {**(job.details or {}), "last_failed_at": now.isoformat(), "retryable": False}
    session.add(job)
    logger.error(f"JOB_FAILED: job {job_id} ({job.kind}, entity={job.entity_id}) not retryable: {error}")


async def cancel_job(session: AsyncSession, job_id: int) -> bool:
    """Cancel a job that has not started yet."""
    result = await session.execute(
        update(ScheduledJob)
        .where(ScheduledJob.id == job_id, ScheduledJob.status == JobStatus.PENDING.value)
        .values(status=JobStatus.CANCELLED.value, updated_at=utc_now_naive())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def recover_orphaned_jobs(session: AsyncSession, stuck_minutes: int) -> int:
    """Reset jobs stuck in processing back to pending.

    A job is orphaned when its worker died (deploy, OOM, crash) after the
    claim. Attempts are left unchanged; the job simply becomes due again.
    """
    now = utc_now_naive()
    threshold = now - timedelta(minutes=stuck_minutes)

    result = await session.execute(
        select(ScheduledJob).where(
            ScheduledJob.status == JobStatus.PROCESSING.value,
            ScheduledJob.updated_at < threshold,
        )
    )
    stuck_jobs = list(result.scalars().all())

    for job in stuck_jobs:
        stale_minutes = (now - job.updated_at).total_seconds() / 60
        job.status = JobStatus.PENDING.value
        job.error = f"Recovered from stuck processing state after {stale_minutes:.0f} minutes"
        job.updated_at = now
        job.details = {**(job.details or {}), "recovered_at": now.isoformat()}
        session.add(job)
        logger.warning(
            f"ORPHAN_RECOVERED: job {job.id} ({job.kind}, entity={job.entity_id}) "
            f"reset to pending after {stale_minutes:.0f}m in processing"
        )

    return len(stuck_jobs)


async def get_job_statistics(session: AsyncSession) -> Dict[str, Any]:
    """Counts per status plus pending counts per job kind."""
    by_status = {status.value: 0 for status in JobStatus}
    result = await session.execute(
        select(ScheduledJob.status, func.count(ScheduledJob.id)).group_by(ScheduledJob.status)
    )
    for status, count in result.all():
        by_status[status] = count

    result = await session.execute(
        select(ScheduledJob.kind, func.count(ScheduledJob.id))
        .where(ScheduledJob.status == JobStatus.PENDING.value)
        .group_by(ScheduledJob.kind)
    )
    pending_by_kind = {kind: count for kind, count in result.all()}

    return {
        **by_status,
        "total": sum(by_status.values()),
        "pending_by_kind": pending_by_kind,
    }

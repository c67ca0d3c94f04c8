"""
JobProcessor - Executes due jobs in bounded, serialized batches.

Each cycle:
1. Recover orphaned jobs (stuck in processing past the stuck timeout)
2. Select up to batch_size due pending jobs, oldest scheduled_for first
3. For each: claim -> dispatch to the handler for its kind -> complete,
   retry with exponential backoff, or dead-letter as failed
4. Pace jobs of the same kind with a randomized per-source delay

Only one cycle runs per process at a time; an overlapping tick is skipped.
A job that exceeds the wall-clock budget counts as a failed attempt and is left
running in the background rather than cancelled mid-write.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..archivist import database
from ..archivist.job_store import (
    claim_job,
    complete_job,
    fail_job,
    get_due_jobs,
    record_failure,
    recover_orphaned_jobs,
)
from ..archivist.models import JobStatus, ScheduledJob
from ..common.rate_limit import delay_window, jittered_delay
from ..config.settings import settings

logger = logging.getLogger(__name__)

JobHandler = Callable[[ScheduledJob], Awaitable[Optional[Dict[str, Any]]]]


class JobError(Exception):
    """Base class for job execution errors."""


class NonRetryableJobError(JobError):
    """Retrying will not help (bad input, missing handle)."""


class TransientFetchError(JobError):
    """The source was unreachable or throttled; retry with backoff."""


class JobTimeoutError(JobError):
    """The job exceeded its wall-clock budget."""


class JobProcessor:
    """Claims and runs due jobs using registered per-kind handlers."""

    def __init__(
        self,
        handlers: Optional[Dict[str, JobHandler]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_minutes: Optional[float] = None,
        job_timeout_seconds: Optional[float] = None,
        stuck_job_timeout_minutes: Optional[int] = None,
    ):
        self._handlers: Dict[str, JobHandler] = dict(handlers or {})
        self._sleep = sleep
        self.batch_size = batch_size or settings.job_batch_size
        self.max_retries = settings.job_max_retries if max_retries is None else max_retries
        self.retry_base_minutes = retry_base_minutes or settings.job_retry_base_minutes
        self.job_timeout_seconds = job_timeout_seconds or settings.job_timeout_seconds
        self.stuck_job_timeout_minutes = stuck_job_timeout_minutes or settings.stuck_job_timeout_minutes
        self._guard = asyncio.Lock()
        self._abandoned: Set[asyncio.Task] = set()
        self._last_finished: Dict[str, float] = {}

    def register(self, kind: str, handler: JobHandler) -> None:
        """Register the handler for a job kind (evaluation kinds are registered externally)."""
        self._handlers[kind] = handler

    @property
    def kinds(self):
        return list(self._handlers)

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    @property
    def abandoned_count(self) -> int:
        return len(self._abandoned)

    async def run_cycle(self, trigger: str = "scheduled") -> Optional[Dict[str, Any]]:
        """Run one processing cycle. Returns None if a cycle is already running."""
        if self._guard.locked():
            logger.info(f"Job processor busy, skipping {trigger} tick")
            return None
        async with self._guard:
            return await self._run_cycle(trigger)

    async def trigger_manual(self) -> Optional[Dict[str, Any]]:
        return await self.run_cycle("manual")

    async def _run_cycle(self, trigger: str) -> Dict[str, Any]:
        started = time.monotonic()
        summary: Dict[str, Any] = {
            "trigger": trigger,
            "recovered": 0,
            "selected": 0,
            "processed": 0,
            "succeeded": 0,
            "retried": 0,
            "failed": 0,
            "skipped": 0,
            "errored": 0,
        }

        try:
            async with database.get_session() as session:
                summary["recovered"] = await recover_orphaned_jobs(session, self.stuck_job_timeout_minutes)
        except Exception as e:
            logger.error(f"Orphan recovery failed: {e}", exc_info=True)

        async with database.get_session() as session:
            jobs = await get_due_jobs(session, self.batch_size, kinds=self.kinds)
        due = [(job.id, job.kind) for job in jobs]
        summary["selected"] = len(due)

        if due:
            logger.info(f"Processing {len(due)} due jobs ({trigger})")

        for job_id, kind in due:
            await self._pace(kind)
            outcome = await self._process_job(job_id)
            self._last_finished[kind] = time.monotonic()
            summary[outcome] += 1
            if outcome != "skipped":
                summary["processed"] += 1

        summary["elapsed_seconds"] = round(time.monotonic() - started, 2)
        if due or summary["recovered"]:
            logger.info(
                f"Job cycle done ({trigger}): {summary['succeeded']} ok, {summary['retried']} retrying, "
                f"{summary['failed']} failed, {summary['skipped']} skipped in {summary['elapsed_seconds']}s"
            )
        return summary

    async def _pace(self, kind: str) -> None:
        """Wait out the rest of the per-kind delay since the last job of this kind."""
        last = self._last_finished.get(kind)
        if last is None:
            return
        wanted = jittered_delay(*delay_window(kind))
        remaining = wanted - (time.monotonic() - last)
        if remaining > 0:
            await self._sleep(remaining)

    async def _process_job(self, job_id: int) -> str:
        """Run one job; never raises. Returns the outcome bucket for the summary."""
        try:
            async with database.get_session() as session:
                job = await claim_job(session, job_id)
            if job is None:
                logger.debug(f"Job {job_id} already claimed elsewhere, skipping")
                return "skipped"

            handler = self._handlers.get(job.kind)
            if handler is None:
                async with database.get_session() as session:
                    await fail_job(session, job_id, f"No handler registered for job kind {job.kind}")
                return "failed"

            try:
                result = await self._run_with_timeout(handler, job)
            except NonRetryableJobError as e:
                async with database.get_session() as session:
                    await fail_job(session, job_id, str(e))
                return "failed"
            except Exception as e:
                error = str(e) or type(e).__name__
                async with database.get_session() as session:
                    status = await record_failure(
                        session, job_id, error, self.max_retries, self.retry_base_minutes
                    )
                return "retried" if status == JobStatus.PENDING.value else "failed"

            async with database.get_session() as session:
                await complete_job(session, job_id, result)
            logger.debug(f"Job {job_id} ({job.kind}, entity={job.entity_id}) completed")
            return "succeeded"

        except Exception as e:
            # Bookkeeping itself failed; the job stays in processing and the
            # orphan sweep will hand it back later
            logger.error(f"Unexpected error processing job {job_id}: {e}", exc_info=True)
            return "errored"

    async def _run_with_timeout(self, handler: JobHandler, job: ScheduledJob) -> Optional[Dict[str, Any]]:
        task = asyncio.ensure_future(handler(job))
        done, _ = await asyncio.wait({task}, timeout=self.job_timeout_seconds)
        if task in done:
            return task.result()

        self._abandoned.add(task)
        task.add_done_callback(self._on_abandoned_done)
        logger.error(
            f"Job {job.id} ({job.kind}, entity={job.entity_id}) exceeded "
            f"{self.job_timeout_seconds}s, marking failed and leaving it to finish"
        )
        raise JobTimeoutError(f"Job exceeded {self.job_timeout_seconds}s wall-clock budget")

    def _on_abandoned_done(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Abandoned job task finished with error: {exc}")

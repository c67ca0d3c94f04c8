"""
CatalogSynchronizer - Keep project accounts in step with the upstream catalog.

One run:
1. Take the "project_sync" lock (another instance running = quiet exit)
2. Page through every cause, deduplicating projects by id
3. Split projects into fixed-size batches
4. Run batches through a semaphore (bounded concurrency); every project is
   upserted in its own session so one bad row cannot roll back its siblings
5. A batch circuit breaker stops the run from hammering a broken database
6. The lock is released on every exit path
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from ..archivist import database
from ..archivist.account_storage import upsert_catalog_account
from ..archivist.locks import DistributedLock
from ..archivist.models import ScheduledJob
from ..config.settings import settings
from .client import CatalogClient, project_to_account_data

logger = logging.getLogger(__name__)

SYNC_LOCK_KEY = "project_sync"
MAX_REPORTED_ERRORS = 20


def is_transient_error(exc: BaseException) -> bool:
    """Connection-level problems worth a second attempt.

    Data errors (out-of-range numbers, constraint violations) will fail the
    same way again and are not retried.
    """
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (asyncio.TimeoutError, ConnectionError))


class BatchCircuitBreaker:
    """Stop processing batches after too many fully-failed batches in a row.

    A batch with no successes increments the counter, a batch with any
    success decrements it (never below zero). Once the threshold is hit the
    breaker stays open for the rest of the run.
    """

    def __init__(self, threshold: Optional[int] = None):
        self._threshold = threshold or settings.sync_circuit_breaker_threshold
        self.consecutive_failures = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def record_batch(self, successes: int, failures: int) -> None:
        if successes == 0 and failures > 0:
            self.consecutive_failures += 1
            if self.consecutive_failures >= self._threshold and not self._open:
                self._open = True
                logger.error(
                    f"CIRCUIT_OPEN: catalog sync halted after {self.consecutive_failures} "
                    f"consecutive failed batches"
                )
        elif successes > 0:
            self.consecutive_failures = max(0, self.consecutive_failures - 1)

    def reset(self) -> None:
        self.consecutive_failures = 0
        self._open = False

    def get_stats(self) -> Dict[str, Any]:
        return {
            "consecutive_failures": self.consecutive_failures,
            "threshold": self._threshold,
            "open": self._open,
        }


class CatalogSynchronizer:
    """Lock-guarded, bounded-concurrency catalog sync."""

    def __init__(
        self,
        client: Optional[CatalogClient] = None,
        lock: Optional[DistributedLock] = None,
        batch_size: Optional[int] = None,
        max_concurrent_batches: Optional[int] = None,
        circuit_breaker_threshold: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.client = client or CatalogClient()
        self.lock = lock or DistributedLock()
        self.batch_size = batch_size or settings.sync_batch_size
        self.max_concurrent_batches = max_concurrent_batches or settings.sync_max_concurrent_batches
        self.circuit_breaker_threshold = circuit_breaker_threshold or settings.sync_circuit_breaker_threshold
        self.max_attempts = max_attempts or settings.sync_entity_max_attempts
        self.lock_ttl = timedelta(minutes=settings.sync_lock_ttl_minutes)

    async def sync_entity(self, project: Dict[str, Any]) -> None:
        """Upsert one project in its own transaction, retrying transient errors."""
        data = project_to_account_data(project)
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with database.get_session() as session:
                    await upsert_catalog_account(session, data)
                return
            except Exception as e:
                if attempt < self.max_attempts and is_transient_error(e):
                    logger.warning(
                        f"Transient error syncing project {data['project_id']} "
                        f"(attempt {attempt}/{self.max_attempts}): {e}"
                    )
                    continue
                raise

    async def _run_batch(
        self,
        index: int,
        batch: List[Dict[str, Any]],
        breaker: BatchCircuitBreaker,
        semaphore: asyncio.Semaphore,
        summary: Dict[str, Any],
    ) -> None:
        async with semaphore:
            if breaker.is_open:
                summary["batches_skipped"] += 1
                logger.warning(f"Skipping batch {index} ({len(batch)} projects): circuit open")
                return

            successes = 0
            failures = 0
            for project in batch:
                try:
                    await self.sync_entity(project)
                    successes += 1
                except Exception as e:
                    failures += 1
                    message = f"project {project.get('id')}: {type(e).__name__}: {e}"
                    logger.error(f"Failed to sync {message}")
                    if len(summary["errors"]) < MAX_REPORTED_ERRORS:
                        summary["errors"].append(message)

            summary["entities_synced"] += successes
            summary["entities_failed"] += failures
            breaker.record_batch(successes, failures)
            logger.debug(f"Batch {index}: {successes} synced, {failures} failed")

    async def run(self) -> Dict[str, Any]:
        """Run one full sync. Returns the run summary."""
        started = time.monotonic()
        summary: Dict[str, Any] = {
            "lock_acquired": False,
            "groups_seen": 0,
            "entities_seen": 0,
            "duplicates_skipped": 0,
            "entities_synced": 0,
            "entities_failed": 0,
            "batches_total": 0,
            "batches_skipped": 0,
            "circuit_open": False,
            "errors": [],
        }

        async with self.lock.hold(SYNC_LOCK_KEY, self.lock_ttl) as acquired:
            if not acquired:
                logger.info("LOCK_BUSY: catalog sync already running elsewhere, skipping")
                summary["elapsed_seconds"] = round(time.monotonic() - started, 2)
                return summary
            summary["lock_acquired"] = True

            unique: Dict[str, Dict[str, Any]] = {}
            async for group in self.client.iter_groups():
                summary["groups_seen"] += 1
                for project in group.projects:
                    project_id = str(project["id"])
                    if project_id in unique:
                        summary["duplicates_skipped"] += 1
                        continue
                    unique[project_id] = project

            projects = list(unique.values())
            summary["entities_seen"] = len(projects)
            batches = [projects[i:i + self.batch_size] for i in range(0, len(projects), self.batch_size)]
            summary["batches_total"] = len(batches)
            logger.info(
                f"Catalog sync: {len(projects)} unique projects from {summary['groups_seen']} causes "
                f"in {len(batches)} batches"
            )

            breaker = BatchCircuitBreaker(self.circuit_breaker_threshold)
            semaphore = asyncio.Semaphore(self.max_concurrent_batches)
            await asyncio.gather(*(
                self._run_batch(index, batch, breaker, semaphore, summary)
                for index, batch in enumerate(batches)
            ))
            summary["circuit_open"] = breaker.is_open

        summary["elapsed_seconds"] = round(time.monotonic() - started, 2)
        logger.info(
            f"SYNC_COMPLETE: {summary['entities_synced']} synced, {summary['entities_failed']} failed, "
            f"{summary['batches_skipped']} batches skipped in {summary['elapsed_seconds']}s"
        )
        return summary


def make_sync_handler(synchronizer: CatalogSynchronizer):
    """Adapt a synchronizer to the job processor's handler signature."""

    async def handle_sync_job(job: ScheduledJob) -> Dict[str, Any]:
        return await synchronizer.run()

    return handle_sync_job

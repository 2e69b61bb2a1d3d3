"""
Keyset-paginated reconciliation runner.

Per run: IDLE -> SCANNING(cursor) -> DIFFING -> REPAIRING -> back to SCANNING
with the cursor moved to the last id of the page, until a page comes back
empty. Each batch (scan + diff + repair) is one transaction, so progress made
before a failing batch stays committed and locks are held for one page only.

A failing batch aborts the run (later pages are not skipped over) and is
reported in the result; nothing propagates to the scheduler. The next run
starts again from id 0 unless resume_from_checkpoint is set.
"""

import logging
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import sessionmaker

from clubstats.database import transaction
from clubstats.errors import BatchFailure
from clubstats.jobs.tracking import record_job_run
from clubstats.reconciliation.base import ReconcileResult, ReconciliationJob, RunState
from clubstats.reconciliation.checkpoints import load_checkpoint, reset_checkpoint, save_checkpoint
from clubstats.reconciliation.guard import RunGuard
from clubstats.telemetry.metrics import record_reconcile_batch, record_reconcile_failure

logger = logging.getLogger(__name__)

# Failures kept in the result / job_runs.metrics
MAX_FAILURE_SAMPLES = 5


class ReconciliationRunner:
    """Runs ReconciliationJobs against the shared session factory."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        guard: Optional[RunGuard] = None,
        resume_from_checkpoint: bool = False,
        track_runs: bool = True,
    ):
        self.session_factory = session_factory
        self.guard = guard or RunGuard()
        self.resume_from_checkpoint = resume_from_checkpoint
        self.track_runs = track_runs
        self.states: dict[str, RunState] = {}

    def state_of(self, job_name: str) -> RunState:
        return self.states.get(job_name, RunState.IDLE)

    @property
    def state(self) -> RunState:
        """IDLE when no job is running, otherwise the state of the first active run."""
        for state in self.states.values():
            if state != RunState.IDLE:
                return state
        return RunState.IDLE

    async def run(self, job: ReconciliationJob) -> ReconcileResult:
        """
        Run one full reconciliation pass for `job`.

        Returns:
            ReconcileResult with status "ok", "error" (a batch failed) or
            "skipped" (the same job is already running)
        """
        started_at = datetime.utcnow()

        async with self.guard.hold(job.name) as acquired:
            if acquired:
                try:
                    result = await self._run_pass(job)
                except Exception as e:
                    # Checkpoint read/reset failed outside any batch
                    logger.error(f"[RECONCILE] {job.name} run failed: {e}", exc_info=True)
                    result = ReconcileResult(
                        job=job.name,
                        status="error",
                        failures=[{"error": str(e), "error_type": type(e).__name__}],
                    )
            else:
                result = ReconcileResult(job=job.name, status="skipped")

        await self._track(result, started_at)
        return result

    async def _start_cursor(self, job: ReconciliationJob) -> int:
        if not self.resume_from_checkpoint:
            return 0
        async with self.session_factory() as session:
            return await load_checkpoint(session, job.name)

    async def _run_pass(self, job: ReconciliationJob) -> ReconcileResult:
        start = time.time()
        cursor = await self._start_cursor(job)
        result = ReconcileResult(job=job.name, start_cursor=cursor, end_cursor=cursor)

        logger.info(f"[RECONCILE] {job.name} started (cursor={cursor}, batch_size={job.batch_size})")

        try:
            while True:
                try:
                    page_size, repaired, last_id = await self._run_batch(job, cursor)
                except BatchFailure as failure:
                    result.status = "error"
                    if len(result.failures) < MAX_FAILURE_SAMPLES:
                        result.failures.append(failure.as_dict())
                    record_reconcile_failure(job.name)
                    logger.error(
                        f"[RECONCILE] {job.name} batch failed after id {failure.cursor} "
                        f"(ids {failure.first_id} ~ {failure.last_id}), aborting run: {failure.cause}",
                        exc_info=failure.cause,
                    )
                    break

                if page_size == 0:
                    break

                result.batches += 1
                result.scanned += page_size
                result.repaired += repaired

                if last_id is None:
                    logger.warning(
                        f"[RECONCILE] {job.name} page after id {cursor} has no row id, stopping"
                    )
                    break

                cursor = last_id
                result.end_cursor = cursor

            if result.status == "ok" and self.resume_from_checkpoint:
                async with self.session_factory() as session:
                    async with transaction(session):
                        await reset_checkpoint(session, job.name)
        finally:
            self.states[job.name] = RunState.IDLE
            result.duration_ms = (time.time() - start) * 1000

        logger.info(
            f"[RECONCILE] {job.name} {result.status}: {result.batches} batches, "
            f"{result.scanned} scanned, {result.repaired} repaired, "
            f"cursor {result.start_cursor} -> {result.end_cursor}, "
            f"duration={result.duration_ms:.0f}ms"
        )
        return result

    async def _run_batch(self, job: ReconciliationJob, cursor: int) -> tuple[int, int, Optional[int]]:
        """
        Scan, diff and repair one page in a single transaction.

        Returns:
            (rows in page, rows repaired, id of last row or None)

        Raises:
            BatchFailure: Anything went wrong; the batch transaction is rolled back
        """
        first_id: Optional[int] = None
        last_id: Optional[int] = None
        try:
            async with self.session_factory() as session:
                async with transaction(session):
                    self.states[job.name] = RunState.SCANNING
                    rows = await job.fetch_page(session, cursor)
                    if not rows:
                        return 0, 0, None

                    first_id, last_id = job.row_id(rows[0]), job.row_id(rows[-1])
                    logger.info(f"[RECONCILE] {job.name} id range: {first_id} ~ {last_id}")

                    self.states[job.name] = RunState.DIFFING
                    repairs = await job.diff(session, rows)

                    self.states[job.name] = RunState.REPAIRING
                    repaired = await job.repair(session, repairs) if repairs else 0

                    if self.resume_from_checkpoint and last_id is not None:
                        await save_checkpoint(session, job.name, last_id)
        except Exception as e:
            raise BatchFailure(job.name, cursor, first_id, last_id, cause=e) from e

        record_reconcile_batch(job.name, len(rows), repaired)
        return len(rows), repaired, last_id

    async def _track(self, result: ReconcileResult, started_at: datetime) -> None:
        if not self.track_runs:
            return
        error = None
        if result.failures:
            error = result.failures[0].get("error")
        try:
            async with self.session_factory() as session:
                await record_job_run(
                    session,
                    result.job,
                    result.status,
                    started_at,
                    error=error,
                    metrics=result.as_dict(),
                )
        except Exception as e:
            logger.warning(f"[JOB_TRACKING] Failed to record {result.job} run: {e}")

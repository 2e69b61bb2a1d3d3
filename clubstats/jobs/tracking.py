"""Job run tracking for reconciliation jobs.

Records each execution in the job_runs table so the last successful run is
known after a cold start, and mirrors it to Prometheus.

Usage:
    from clubstats.jobs.tracking import record_job_run

    start = datetime.utcnow()
    try:
        # ... job logic ...
        await record_job_run(session, "club_keyword_summary", "ok", start, metrics={"repaired": 5})
    except Exception as e:
        await record_job_run(session, "club_keyword_summary", "error", start, error=str(e))
        raise
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.models import JobRun
from clubstats.telemetry import metrics as telemetry

logger = logging.getLogger(__name__)


async def record_job_run(
    session: AsyncSession,
    job_name: str,
    status: str,
    started_at: datetime,
    error: Optional[str] = None,
    metrics: Optional[dict] = None,
) -> None:
    """
    Record a job execution in the database.

    Args:
        session: Database session.
        job_name: Job identifier (club_keyword_summary, performance_review_like_count).
        status: Execution status (ok, error, skipped).
        started_at: When the job started (naive UTC).
        error: Error message if failed.
        metrics: Optional job-specific metrics dict.
    """
    finished_at = datetime.utcnow()
    duration_ms = int((finished_at - started_at).total_seconds() * 1000)

    telemetry.record_job_run(job_name, status, duration_ms)

    job_run = JobRun(
        job_name=job_name,
        status=status,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=duration_ms,
        error_message=error,
        metrics=metrics,
    )

    session.add(job_run)
    await session.commit()

    logger.debug(f"[JOB_TRACKING] Recorded {job_name} run: {status} in {duration_ms}ms")


async def get_last_success_at(
    session: AsyncSession,
    job_name: str,
) -> Optional[datetime]:
    """
    Get the last successful run timestamp for a job from DB.

    Returns:
        Datetime of last successful run, or None if no successful runs.
    """
    result = await session.execute(
        select(JobRun.finished_at)
        .where(JobRun.job_name == job_name)
        .where(JobRun.status == "ok")
        .order_by(JobRun.finished_at.desc())
        .limit(1)
    )
    row = result.first()
    return row[0] if row else None

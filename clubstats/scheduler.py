"""
Scheduled reconciliation jobs.

Owns an APScheduler AsyncIOScheduler that fires every registered
ReconciliationJob on one cron schedule (default: 02:00 Asia/Seoul daily).
The instance is created by the FastAPI lifespan and kept on
app.state.reconciler; there is no module-level scheduler.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from clubstats.config import Settings
from clubstats.reconciliation import (
    KeywordSummaryJob,
    LikeCountJob,
    ReconcileResult,
    ReconciliationJob,
    ReconciliationRunner,
    RunGuard,
)

logger = logging.getLogger(__name__)


def cron_trigger(expression: str, timezone: str) -> CronTrigger:
    """
    Build a CronTrigger from a cron expression.

    Accepts the 6-field form with seconds ("0 0 2 * * *") and the plain
    5-field crontab form ("0 2 * * *").
    """
    fields = expression.split()
    if len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=timezone,
        )
    if len(fields) == 5:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    raise ValueError(f"Invalid cron expression {expression!r}: expected 5 or 6 fields, got {len(fields)}")


class ReconciliationScheduler:
    def __init__(self, runner: ReconciliationRunner, *, cron: str, timezone: str):
        self.runner = runner
        self.cron = cron
        self.timezone = timezone
        self.scheduler = AsyncIOScheduler(timezone=timezone)
        self._jobs: dict[str, ReconciliationJob] = {}

    @property
    def running(self) -> bool:
        return self.scheduler.running

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def register(self, job: ReconciliationJob) -> None:
        """Add (or replace) a job on the shared cron schedule."""
        self._jobs[job.name] = job
        self.scheduler.add_job(
            self.runner.run,
            trigger=cron_trigger(self.cron, self.timezone),
            args=[job],
            id=job.name,
            name=f"Reconcile {job.name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        if self.scheduler.running:
            logger.warning("[SCHEDULER] Already started, skipping duplicate initialization")
            return
        self.scheduler.start()
        logger.info(
            f"[SCHEDULER] Started: {', '.join(self.job_names) or 'no jobs'} "
            f"at '{self.cron}' ({self.timezone})"
        )

    def stop(self) -> None:
        """
        Request shutdown; no new fires after this. A batch already in flight
        finishes on its own, and on APScheduler 3.11+ the scheduler reports
        running until the event loop processes the shutdown.
        """
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        logger.info("[SCHEDULER] Shutdown requested")

    async def run_now(self, name: str) -> ReconcileResult:
        """Run one registered job immediately, outside the schedule."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown reconciliation job: {name}")
        logger.info(f"[SCHEDULER] Manual trigger: {name}")
        return await self.runner.run(job)


def build_scheduler(
    settings: Settings,
    session_factory: sessionmaker,
    engine: Optional[AsyncEngine] = None,
) -> ReconciliationScheduler:
    """Wire the keyword summary and like count jobs from settings."""
    runner = ReconciliationRunner(
        session_factory,
        guard=RunGuard(engine, lock_base=settings.RECONCILE_ADVISORY_LOCK_BASE),
        resume_from_checkpoint=settings.RECONCILE_RESUME_FROM_CHECKPOINT,
    )
    reconciler = ReconciliationScheduler(
        runner,
        cron=settings.RECONCILE_CRON,
        timezone=settings.RECONCILE_TIMEZONE,
    )
    reconciler.register(KeywordSummaryJob(batch_size=settings.CLUB_REVIEW_KEYWORD_SCHEDULE_BATCH))
    reconciler.register(LikeCountJob(batch_size=settings.PERFORMANCE_REVIEW_SCHEDULE_BATCH))
    return reconciler

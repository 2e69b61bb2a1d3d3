#!/usr/bin/env python3
"""
Run reconciliation jobs once, outside the nightly schedule.

Uses the same runner, guard and job_runs tracking as the scheduled path, so a
manual run while the app's scheduler is mid-run (same database) is skipped.

Usage:
    # Reconcile everything
    python scripts/run_reconciliation.py

    # Only the keyword summary, smaller batches
    python scripts/run_reconciliation.py --job club_keyword_summary --batch-size 200

    # Continue from the last committed cursor of an aborted run
    python scripts/run_reconciliation.py --resume
"""

import asyncio
import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from clubstats.config import get_settings  # noqa: E402
from clubstats.database import close_db, create_engine_for, create_session_factory, init_db  # noqa: E402
from clubstats.reconciliation import (  # noqa: E402
    KeywordSummaryJob,
    LikeCountJob,
    ReconciliationRunner,
    RunGuard,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

JOB_NAMES = [KeywordSummaryJob.name, LikeCountJob.name]


def build_jobs(names: list[str], batch_size: int = None) -> list:
    settings = get_settings()
    jobs = []
    if KeywordSummaryJob.name in names:
        jobs.append(KeywordSummaryJob(batch_size=batch_size or settings.CLUB_REVIEW_KEYWORD_SCHEDULE_BATCH))
    if LikeCountJob.name in names:
        jobs.append(LikeCountJob(batch_size=batch_size or settings.PERFORMANCE_REVIEW_SCHEDULE_BATCH))
    return jobs


async def run_reconciliation(names: list[str], batch_size: int = None, resume: bool = False) -> bool:
    settings = get_settings()
    engine = create_engine_for(settings.DATABASE_URL)
    runner = ReconciliationRunner(
        create_session_factory(engine),
        guard=RunGuard(engine, lock_base=settings.RECONCILE_ADVISORY_LOCK_BASE),
        resume_from_checkpoint=resume or settings.RECONCILE_RESUME_FROM_CHECKPOINT,
    )

    ok = True
    try:
        await init_db(engine)
        for job in build_jobs(names, batch_size):
            result = await runner.run(job)
            logger.info(f"{job.name}: {result.as_dict()}")
            if result.status == "error":
                ok = False
    finally:
        await close_db(engine)
    return ok


def main():
    parser = argparse.ArgumentParser(description="Reconcile denormalized summaries")
    parser.add_argument(
        "--job",
        choices=JOB_NAMES + ["all"],
        default="all",
        help="Job to run (default: all)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per batch (default: from settings)"
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Start from the last committed checkpoint instead of id 0"
    )
    args = parser.parse_args()

    names = JOB_NAMES if args.job == "all" else [args.job]
    ok = asyncio.run(run_reconciliation(names, batch_size=args.batch_size, resume=args.resume))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()

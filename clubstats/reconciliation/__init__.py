"""
Background reconciliation of denormalized summaries.

Usage:
    from clubstats.reconciliation import KeywordSummaryJob, ReconciliationRunner

    runner = ReconciliationRunner(AsyncSessionLocal, guard=RunGuard(async_engine))
    result = await runner.run(KeywordSummaryJob(batch_size=1000))
"""

from clubstats.reconciliation.base import ReconcileResult, ReconciliationJob, RunState
from clubstats.reconciliation.guard import RunGuard
from clubstats.reconciliation.keyword_summary import KeywordSummaryJob
from clubstats.reconciliation.like_counts import LikeCountJob, LikeCountRepair
from clubstats.reconciliation.runner import ReconciliationRunner

__all__ = [
    "KeywordSummaryJob",
    "LikeCountJob",
    "LikeCountRepair",
    "ReconcileResult",
    "ReconciliationJob",
    "ReconciliationRunner",
    "RunGuard",
    "RunState",
]

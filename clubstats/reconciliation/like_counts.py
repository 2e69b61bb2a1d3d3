"""
Nightly repair of performance_reviews.like_count.

like_count is maintained at write time by the like toggle; this job catches
drift from anything that bypassed it (manual SQL, partial failures, old
increment/decrement code paths).
"""

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.models import PerformanceReview, PerformanceReviewLike
from clubstats.reconciliation.base import ReconciliationJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LikeCountRepair:
    review_id: int
    stored: int
    actual: int


class LikeCountJob(ReconciliationJob):
    name = "performance_review_like_count"

    async def fetch_page(self, session: AsyncSession, cursor: int) -> Sequence[Any]:
        result = await session.execute(
            select(PerformanceReview.id, PerformanceReview.like_count)
            .where(PerformanceReview.id > cursor)
            .order_by(PerformanceReview.id.asc())
            .limit(self.batch_size)
        )
        return result.all()

    async def diff(self, session: AsyncSession, rows: Sequence[Any]) -> list[LikeCountRepair]:
        ids = [row.id for row in rows]
        result = await session.execute(
            select(PerformanceReviewLike.review_id, func.count(PerformanceReviewLike.id))
            .where(PerformanceReviewLike.review_id.in_(ids))
            .group_by(PerformanceReviewLike.review_id)
        )
        count_map = {review_id: int(n) for review_id, n in result.all()}

        repairs = []
        for row in rows:
            actual = count_map.get(row.id, 0)
            if row.like_count != actual:
                repairs.append(LikeCountRepair(review_id=row.id, stored=row.like_count, actual=actual))
        return repairs

    async def repair(self, session: AsyncSession, repairs: list[LikeCountRepair]) -> int:
        if not repairs:
            return 0

        for r in repairs[:5]:
            logger.info(
                f"[RECONCILE] {self.name}: review {r.review_id} like_count {r.stored} -> {r.actual}"
            )

        # Recount in SQL at write time so a like committed after diff() is not overwritten
        live_count = (
            select(func.count(PerformanceReviewLike.id))
            .where(PerformanceReviewLike.review_id == PerformanceReview.id)
            .scalar_subquery()
        )
        result = await session.execute(
            update(PerformanceReview)
            .where(PerformanceReview.id.in_([r.review_id for r in repairs]))
            .values(like_count=live_count)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

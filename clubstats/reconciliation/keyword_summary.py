"""
Nightly backfill of club_keyword_summary from club_review_keywords.

Insert-only: for each page of link rows, insert the (review_id, keyword_id)
pairs the summary does not have yet. Inserts are conflict-tolerant, so a pair
written concurrently by a review mutation is a silent no-op.
"""

import logging
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.database import insert_ignore_many
from clubstats.models import ClubKeywordSummary, ClubReview, ClubReviewKeyword
from clubstats.reconciliation.base import ReconciliationJob

logger = logging.getLogger(__name__)


class KeywordSummaryJob(ReconciliationJob):
    name = "club_keyword_summary"

    async def fetch_page(self, session: AsyncSession, cursor: int) -> Sequence[Any]:
        result = await session.execute(
            select(
                ClubReviewKeyword.id,
                ClubReviewKeyword.review_id,
                ClubReviewKeyword.keyword_id,
                ClubReview.club_id,
            )
            .join(ClubReview, ClubReview.id == ClubReviewKeyword.review_id)
            .where(ClubReviewKeyword.id > cursor)
            .order_by(ClubReviewKeyword.id.asc())
            .limit(self.batch_size)
        )
        return result.all()

    async def diff(self, session: AsyncSession, rows: Sequence[Any]) -> list[dict]:
        review_ids = list({row.review_id for row in rows})
        result = await session.execute(
            select(ClubKeywordSummary.review_id, ClubKeywordSummary.keyword_id)
            .where(ClubKeywordSummary.review_id.in_(review_ids))
        )
        existing = {(review_id, keyword_id) for review_id, keyword_id in result.all()}

        inserts = []
        for row in rows:
            key = (row.review_id, row.keyword_id)
            if key in existing:
                continue
            existing.add(key)
            inserts.append({
                "club_id": row.club_id,
                "keyword_id": row.keyword_id,
                "review_id": row.review_id,
            })
        return inserts

    async def repair(self, session: AsyncSession, repairs: list[dict]) -> int:
        inserted = await insert_ignore_many(
            session,
            ClubKeywordSummary,
            repairs,
            conflict_fields=["review_id", "keyword_id"],
        )
        if inserted:
            logger.info(f"[RECONCILE] {self.name}: inserted {inserted} missing summary rows")
        return inserted

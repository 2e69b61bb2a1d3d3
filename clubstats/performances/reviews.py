"""One-line performance reviews and their like counter."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.aggregates import recompute_like_count
from clubstats.database import transaction
from clubstats.errors import ConflictError, ForbiddenError, NotFoundError
from clubstats.models import Performance, PerformanceReview, PerformanceReviewLike
from clubstats.toggles import toggle_membership

logger = logging.getLogger(__name__)


@dataclass
class LikeToggle:
    review_id: int
    liked: bool
    total_like_count: int


class PerformanceReviewService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_owned_review(self, review_id: int, user_id: int) -> PerformanceReview:
        review = await self.session.get(PerformanceReview, review_id)
        if review is None:
            raise NotFoundError(f"Performance review {review_id} not found")
        if review.user_id != user_id:
            raise ForbiddenError(f"User {user_id} does not own performance review {review_id}")
        return review

    async def create(self, perform_id: int, user_id: int, content: str) -> PerformanceReview:
        """
        Raises:
            NotFoundError: Performance does not exist
            ConflictError: User already reviewed this performance
        """
        async with transaction(self.session):
            if await self.session.get(Performance, perform_id) is None:
                raise NotFoundError(f"Performance {perform_id} not found")

            existing = await self.session.execute(
                select(PerformanceReview.id).where(
                    PerformanceReview.perform_id == perform_id,
                    PerformanceReview.user_id == user_id,
                )
            )
            if existing.first() is not None:
                raise ConflictError(f"User {user_id} already reviewed performance {perform_id}")

            review = PerformanceReview(perform_id=perform_id, user_id=user_id, content=content)
            self.session.add(review)
            await self.session.flush()

        return review

    async def patch(self, review_id: int, user_id: int, content: str) -> PerformanceReview:
        async with transaction(self.session):
            review = await self._get_owned_review(review_id, user_id)
            review.content = content
            review.updated_at = datetime.utcnow()
            await self.session.flush()
        return review

    async def delete(self, review_id: int, user_id: int) -> None:
        async with transaction(self.session):
            review = await self._get_owned_review(review_id, user_id)
            await self.session.execute(
                delete(PerformanceReviewLike).where(PerformanceReviewLike.review_id == review_id)
            )
            await self.session.delete(review)
            await self.session.flush()

    async def toggle_like(self, user_id: int, review_id: int) -> LikeToggle:
        """
        Flip the user's like on a review and refresh like_count in the same transaction.

        like_count is recomputed from the like rows rather than incremented,
        so the stored counter cannot drift through this path.
        """
        async with transaction(self.session):
            if await self.session.get(PerformanceReview, review_id) is None:
                raise NotFoundError(f"Performance review {review_id} not found")

            liked = await toggle_membership(
                self.session, PerformanceReviewLike, "review_id", "user_id", review_id, user_id
            )
            total = await recompute_like_count(self.session, review_id)

        return LikeToggle(review_id=review_id, liked=liked, total_like_count=total)

    async def list_for_performance(
        self,
        perform_id: int,
        offset: int = 0,
        limit: int = 10,
    ) -> list[PerformanceReview]:
        result = await self.session.execute(
            select(PerformanceReview)
            .where(PerformanceReview.perform_id == perform_id)
            .order_by(PerformanceReview.created_at.desc(), PerformanceReview.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

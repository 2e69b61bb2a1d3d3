"""
Club review mutations.

Every mutation runs in one transaction together with the club aggregate
recompute; a failure anywhere rolls back the review write as well.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.aggregates import ChildMutation, apply_child_mutation
from clubstats.database import insert_ignore_many, transaction
from clubstats.errors import ForbiddenError, NotFoundError
from clubstats.models import Club, ClubKeywordSummary, ClubReview, ClubReviewKeyword

logger = logging.getLogger(__name__)

# Sentinel for "field not supplied" (None is a legal rating/content value)
UNSET = object()


async def _replace_keywords(
    session: AsyncSession,
    review_id: int,
    club_id: int,
    keyword_ids: list[int],
) -> None:
    """Replace a review's keyword links and mirror them into club_keyword_summary."""
    await session.execute(
        delete(ClubReviewKeyword).where(ClubReviewKeyword.review_id == review_id)
    )
    await session.execute(
        delete(ClubKeywordSummary).where(ClubKeywordSummary.review_id == review_id)
    )

    unique_ids = list(dict.fromkeys(keyword_ids))
    if not unique_ids:
        return

    session.add_all(
        ClubReviewKeyword(review_id=review_id, keyword_id=keyword_id)
        for keyword_id in unique_ids
    )
    await session.flush()

    # Write-time copy of the summary; the nightly job fills in anything missed
    await insert_ignore_many(
        session,
        ClubKeywordSummary,
        [
            {"club_id": club_id, "keyword_id": keyword_id, "review_id": review_id}
            for keyword_id in unique_ids
        ],
        conflict_fields=["review_id", "keyword_id"],
    )


class ClubReviewService:
    """Create/update/delete club reviews while keeping Club aggregates exact."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_owned_review(self, review_id: int, user_id: int) -> ClubReview:
        review = await self.session.get(ClubReview, review_id)
        if review is None:
            raise NotFoundError(f"Review {review_id} not found")
        if review.user_id != user_id:
            raise ForbiddenError(f"User {user_id} does not own review {review_id}")
        return review

    async def create(
        self,
        club_id: int,
        user_id: int,
        rating: Optional[int] = None,
        content: Optional[str] = None,
        keyword_ids: Optional[list[int]] = None,
    ) -> ClubReview:
        """
        Create a review, link its keywords and refresh the club's avg_rating/review_count.

        Raises:
            NotFoundError: Club does not exist (or was deleted concurrently)
        """
        async with transaction(self.session):
            club = await self.session.get(Club, club_id)
            if club is None:
                raise NotFoundError(f"Club {club_id} not found")

            review = ClubReview(
                club_id=club_id,
                user_id=user_id,
                rating=rating,
                content=content,
            )
            self.session.add(review)
            await self.session.flush()

            if keyword_ids:
                await _replace_keywords(self.session, review.id, club_id, keyword_ids)

            await apply_child_mutation(self.session, club_id, ChildMutation.created())

        logger.info(f"[REVIEWS] Created review {review.id} for club {club_id} (rating={rating})")
        return review

    async def update(
        self,
        review_id: int,
        user_id: int,
        rating=UNSET,
        content=UNSET,
        keyword_ids: Optional[list[int]] = None,
    ) -> ClubReview:
        """
        Update a review owned by user_id.

        Only fields that are passed are changed. keyword_ids=None leaves keywords
        untouched; an empty list removes them. avg_rating is recomputed only when
        the rating value actually changes.

        Raises:
            NotFoundError: Review (or its club) does not exist
            ForbiddenError: Review belongs to another user
        """
        async with transaction(self.session):
            review = await self._get_owned_review(review_id, user_id)

            rating_changed = rating is not UNSET and rating != review.rating
            if rating is not UNSET:
                review.rating = rating
            if content is not UNSET:
                review.content = content
            review.updated_at = datetime.utcnow()
            await self.session.flush()

            if keyword_ids is not None:
                await _replace_keywords(self.session, review.id, review.club_id, keyword_ids)

            await apply_child_mutation(
                self.session,
                review.club_id,
                ChildMutation.updated(rating_changed=rating_changed),
            )

        return review

    async def delete(self, review_id: int, user_id: int) -> None:
        """
        Delete a review owned by user_id with its keyword links and summary rows.

        Raises:
            NotFoundError: Review (or its club) does not exist
            ForbiddenError: Review belongs to another user
        """
        async with transaction(self.session):
            review = await self._get_owned_review(review_id, user_id)
            club_id = review.club_id

            await _replace_keywords(self.session, review_id, club_id, [])
            await self.session.delete(review)
            await self.session.flush()

            await apply_child_mutation(self.session, club_id, ChildMutation.deleted())

        logger.info(f"[REVIEWS] Deleted review {review_id} of club {club_id}")

    async def list_for_club(self, club_id: int, offset: int = 0, limit: int = 10) -> list[ClubReview]:
        result = await self.session.execute(
            select(ClubReview)
            .where(ClubReview.club_id == club_id)
            .order_by(ClubReview.created_at.desc(), ClubReview.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

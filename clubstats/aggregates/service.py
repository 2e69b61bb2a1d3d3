"""
Aggregate maintenance for denormalized counters.

Recomputes a parent's cached aggregates from its current children inside the
caller's transaction, so the child write and the parent update commit or roll
back together. There is no eventual-consistency window on this path.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.errors import NotFoundError
from clubstats.models import Club, ClubReview, PerformanceReview, PerformanceReviewLike

logger = logging.getLogger(__name__)


class MutationKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChildMutation:
    """What just happened to a child review, as far as aggregates care."""

    kind: MutationKind
    rating_changed: bool = True

    @classmethod
    def created(cls) -> "ChildMutation":
        return cls(MutationKind.CREATED)

    @classmethod
    def updated(cls, rating_changed: bool) -> "ChildMutation":
        return cls(MutationKind.UPDATED, rating_changed=rating_changed)

    @classmethod
    def deleted(cls) -> "ChildMutation":
        return cls(MutationKind.DELETED)


@dataclass(frozen=True)
class AggregateSnapshot:
    """Values written to the parent row. review_count is None when only the average was touched."""

    avg_rating: float
    review_count: Optional[int] = None


async def _club_review_stats(session: AsyncSession, club_id: int) -> tuple[float, int]:
    result = await session.execute(
        select(
            func.coalesce(func.avg(ClubReview.rating), 0),
            func.count(ClubReview.id),
        ).where(ClubReview.club_id == club_id)
    )
    avg_rating, review_count = result.one()
    # PostgreSQL returns Decimal for avg(integer)
    return float(avg_rating or 0), int(review_count or 0)


async def apply_child_mutation(
    session: AsyncSession,
    club_id: int,
    mutation: ChildMutation,
) -> Optional[AggregateSnapshot]:
    """
    Recompute a club's avg_rating / review_count after a review mutation.

    Must be called inside the transaction that performed the mutation, after
    the child write has been flushed. Issues exactly one UPDATE on the club
    row; content-only updates (rating unchanged) issue none and return None.

    Args:
        session: Session with the open transaction
        club_id: Parent club ID
        mutation: Kind of mutation just applied to the child review

    Returns:
        AggregateSnapshot with the values written, or None if skipped

    Raises:
        NotFoundError: The club row no longer exists. The caller's transaction
            must roll back (child mutation included).
    """
    if mutation.kind == MutationKind.UPDATED and not mutation.rating_changed:
        logger.debug(f"[AGGREGATES] Club {club_id}: content-only update, skipping recompute")
        return None

    avg_rating, review_count = await _club_review_stats(session, club_id)

    if mutation.kind == MutationKind.UPDATED:
        values = {"avg_rating": avg_rating}
        snapshot = AggregateSnapshot(avg_rating=avg_rating)
    else:
        values = {"avg_rating": avg_rating, "review_count": review_count}
        snapshot = AggregateSnapshot(avg_rating=avg_rating, review_count=review_count)

    result = await session.execute(
        update(Club).where(Club.id == club_id).values(**values)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Club {club_id} not found")

    logger.debug(
        f"[AGGREGATES] Club {club_id} after {mutation.kind.value}: "
        f"avg_rating={avg_rating:.2f} review_count={review_count}"
    )
    return snapshot


async def recompute_like_count(session: AsyncSession, review_id: int) -> int:
    """
    Recompute a performance review's like_count from performance_review_likes.

    Same contract as apply_child_mutation: one UPDATE inside the caller's
    transaction, NotFoundError if the review vanished.

    Returns:
        The like count written
    """
    result = await session.execute(
        select(func.count(PerformanceReviewLike.id))
        .where(PerformanceReviewLike.review_id == review_id)
    )
    like_count = int(result.scalar() or 0)

    result = await session.execute(
        update(PerformanceReview)
        .where(PerformanceReview.id == review_id)
        .values(like_count=like_count)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Performance review {review_id} not found")

    return like_count

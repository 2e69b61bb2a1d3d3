"""
Tests for write-time club aggregates (avg_rating / review_count).

Verifies:
1. Aggregates match the current reviews after every committed mutation
2. Deleting the last review resets to 0 / 0
3. A failed recompute rolls back the review write too
4. Content-only updates do not touch the club row
"""

import pytest
from sqlalchemy import func, select

from clubstats.aggregates import AggregateSnapshot, ChildMutation, apply_child_mutation
from clubstats.clubs import ClubReviewService
from clubstats.errors import NotFoundError
from clubstats.models import Club, ClubReview


async def club_aggregates(session, club_id):
    result = await session.execute(
        select(Club.avg_rating, Club.review_count).where(Club.id == club_id)
    )
    return tuple(result.one())


async def actual_aggregates(session, club_id):
    result = await session.execute(
        select(func.coalesce(func.avg(ClubReview.rating), 0), func.count(ClubReview.id))
        .where(ClubReview.club_id == club_id)
    )
    avg_rating, review_count = result.one()
    return float(avg_rating), review_count


class TestReviewLifecycle:
    """Aggregates through create/delete sequences."""

    @pytest.mark.asyncio
    async def test_literal_scenario(self, session, club):
        """[4, 5] -> add 3 -> delete 5 -> delete the rest."""
        reviews = ClubReviewService(session)

        r4 = await reviews.create(club.id, user_id=10, rating=4)
        r5 = await reviews.create(club.id, user_id=11, rating=5)
        assert await club_aggregates(session, club.id) == (4.5, 2)

        r3 = await reviews.create(club.id, user_id=12, rating=3)
        assert await club_aggregates(session, club.id) == (4.0, 3)

        await reviews.delete(r5.id, user_id=11)
        assert await club_aggregates(session, club.id) == (3.5, 2)

        await reviews.delete(r4.id, user_id=10)
        await reviews.delete(r3.id, user_id=12)
        assert await club_aggregates(session, club.id) == (0.0, 0)

    @pytest.mark.asyncio
    async def test_aggregates_match_children_after_each_commit(self, session, club):
        reviews = ClubReviewService(session)
        created = []

        for user_id, rating in enumerate([5, 1, 3, 2, 4], start=100):
            created.append(await reviews.create(club.id, user_id=user_id, rating=rating))
            assert await club_aggregates(session, club.id) == await actual_aggregates(session, club.id)

        await reviews.update(created[0].id, user_id=100, rating=2)
        assert await club_aggregates(session, club.id) == await actual_aggregates(session, club.id)

        for review in created[1:]:
            await reviews.delete(review.id, user_id=review.user_id)
            assert await club_aggregates(session, club.id) == await actual_aggregates(session, club.id)

    @pytest.mark.asyncio
    async def test_unrated_review_counts_but_does_not_average(self, session, club):
        """NULL ratings are ignored by avg but counted."""
        reviews = ClubReviewService(session)
        await reviews.create(club.id, user_id=1, rating=4)
        await reviews.create(club.id, user_id=2, rating=None, content="no stars")

        assert await club_aggregates(session, club.id) == (4.0, 2)

    @pytest.mark.asyncio
    async def test_delete_last_review_resets_to_zero(self, session, club):
        reviews = ClubReviewService(session)
        review = await reviews.create(club.id, user_id=1, rating=5)

        await reviews.delete(review.id, user_id=1)

        avg_rating, review_count = await club_aggregates(session, club.id)
        assert avg_rating == 0
        assert review_count == 0


class TestUpdates:
    """Rating vs content-only updates."""

    @pytest.mark.asyncio
    async def test_rating_change_recomputes_average(self, session, club):
        reviews = ClubReviewService(session)
        review = await reviews.create(club.id, user_id=1, rating=2)
        await reviews.create(club.id, user_id=2, rating=4)

        await reviews.update(review.id, user_id=1, rating=5)

        assert await club_aggregates(session, club.id) == (4.5, 2)

    @pytest.mark.asyncio
    async def test_content_only_update_skips_recompute(self, session, club):
        reviews = ClubReviewService(session)
        review = await reviews.create(club.id, user_id=1, rating=3)

        # Corrupt the stored value; a skipped recompute leaves it alone
        club.avg_rating = 1.0
        await session.commit()

        updated = await reviews.update(review.id, user_id=1, content="better sound now")

        assert updated.content == "better sound now"
        assert await club_aggregates(session, club.id) == (1.0, 1)

    @pytest.mark.asyncio
    async def test_same_rating_counts_as_unchanged(self, session, club):
        reviews = ClubReviewService(session)
        review = await reviews.create(club.id, user_id=1, rating=3)
        club.avg_rating = 1.0
        await session.commit()

        await reviews.update(review.id, user_id=1, rating=3)

        assert await club_aggregates(session, club.id) == (1.0, 1)


class TestApplyChildMutation:
    """Direct calls to the aggregate maintainer."""

    @pytest.mark.asyncio
    async def test_missing_club_raises_not_found(self, session):
        with pytest.raises(NotFoundError):
            await apply_child_mutation(session, 9999, ChildMutation.created())

    @pytest.mark.asyncio
    async def test_content_only_returns_none(self, session, club):
        result = await apply_child_mutation(session, club.id, ChildMutation.updated(rating_changed=False))
        assert result is None

    @pytest.mark.asyncio
    async def test_update_snapshot_leaves_count_out(self, session, club):
        session.add(ClubReview(club_id=club.id, user_id=1, rating=4))
        await session.flush()

        snapshot = await apply_child_mutation(session, club.id, ChildMutation.updated(rating_changed=True))

        assert snapshot == AggregateSnapshot(avg_rating=4.0, review_count=None)

    @pytest.mark.asyncio
    async def test_failed_recompute_rolls_back_review(self, session, club, monkeypatch):
        """The review insert and the aggregate update commit or roll back together."""
        reviews = ClubReviewService(session)
        club_id = club.id

        async def vanished_club(session, club_id, mutation):
            raise NotFoundError(f"Club {club_id} not found")

        monkeypatch.setattr("clubstats.clubs.reviews.apply_child_mutation", vanished_club)

        with pytest.raises(NotFoundError):
            await reviews.create(club_id, user_id=1, rating=5)

        result = await session.execute(select(func.count(ClubReview.id)))
        assert result.scalar() == 0
        assert await club_aggregates(session, club_id) == (0.0, 0)

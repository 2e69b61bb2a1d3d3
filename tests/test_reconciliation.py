"""
Tests for the reconciliation runner and its jobs.

Verifies:
1. Drifted like counters are repaired, matching ones are left alone
2. A second pass with no writes in between repairs nothing
3. Keyword summary backfill yields one row per source link
4. A failing batch aborts the run without raising, earlier batches stay committed
5. Checkpoint resume and overlap skipping
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from clubstats.models import (
    Club,
    ClubKeywordSummary,
    ClubReview,
    ClubReviewKeyword,
    JobRun,
    Performance,
    PerformanceReview,
    PerformanceReviewLike,
    ReconcileCheckpoint,
)
from clubstats.reconciliation import (
    KeywordSummaryJob,
    LikeCountJob,
    ReconciliationJob,
    ReconciliationRunner,
    RunGuard,
    RunState,
)


async def seed_reviews(session, like_counts: list[tuple[int, int]]) -> list[int]:
    """Create one review per (stored like_count, actual like rows) pair."""
    performance = Performance(title="Open Mic")
    session.add(performance)
    await session.flush()

    review_ids = []
    for user_id, (stored, actual) in enumerate(like_counts, start=1):
        review = PerformanceReview(
            perform_id=performance.id,
            user_id=user_id,
            content=f"review {user_id}",
            like_count=stored,
        )
        session.add(review)
        await session.flush()
        session.add_all(
            PerformanceReviewLike(review_id=review.id, user_id=1000 + n) for n in range(actual)
        )
        review_ids.append(review.id)
    await session.commit()
    return review_ids


async def stored_like_counts(session, review_ids):
    result = await session.execute(
        select(PerformanceReview.id, PerformanceReview.like_count)
        .where(PerformanceReview.id.in_(review_ids))
        .order_by(PerformanceReview.id)
    )
    return [like_count for _, like_count in result.all()]


async def seed_keyword_links(session, links_per_review: list[int]) -> int:
    """Create reviews with keyword links only (no summary rows). Returns total links."""
    club = Club(user_id=1, name="Basement")
    session.add(club)
    await session.flush()

    total = 0
    for user_id, n_links in enumerate(links_per_review, start=1):
        review = ClubReview(club_id=club.id, user_id=user_id, rating=4)
        session.add(review)
        await session.flush()
        session.add_all(
            ClubReviewKeyword(review_id=review.id, keyword_id=keyword_id)
            for keyword_id in range(1, n_links + 1)
        )
        total += n_links
    await session.commit()
    return total


class FlakyLikeCountJob(LikeCountJob):
    """Raises while diffing the page that contains fail_on_id."""

    def __init__(self, fail_on_id: int, **kwargs):
        super().__init__(**kwargs)
        self.fail_on_id = fail_on_id

    async def diff(self, session, rows):
        if any(row.id == self.fail_on_id for row in rows):
            raise RuntimeError("boom")
        return await super().diff(session, rows)


class TestLikeCountJob:
    """Like counter repair."""

    @pytest.mark.asyncio
    async def test_drifted_counter_is_repaired(self, session, session_factory):
        """R1 stored as 7 with 5 likes becomes 5; matching review is untouched."""
        r1, r2 = await seed_reviews(session, [(7, 5), (2, 2)])

        result = await ReconciliationRunner(session_factory).run(LikeCountJob())

        assert result.status == "ok"
        assert result.scanned == 2
        assert result.repaired == 1
        assert await stored_like_counts(session, [r1, r2]) == [5, 2]

    @pytest.mark.asyncio
    async def test_second_pass_is_a_no_op(self, session, session_factory):
        await seed_reviews(session, [(7, 5), (0, 3), (1, 0)])
        runner = ReconciliationRunner(session_factory)

        first = await runner.run(LikeCountJob(batch_size=2))
        second = await runner.run(LikeCountJob(batch_size=2))

        assert first.repaired == 3
        assert second.repaired == 0
        assert second.scanned == 3

    @pytest.mark.asyncio
    async def test_pages_by_id(self, session, session_factory):
        review_ids = await seed_reviews(session, [(1, 0)] * 5)

        result = await ReconciliationRunner(session_factory).run(LikeCountJob(batch_size=2))

        assert result.batches == 3
        assert result.scanned == 5
        assert result.start_cursor == 0
        assert result.end_cursor == review_ids[-1]
        assert await stored_like_counts(session, review_ids) == [0] * 5

    @pytest.mark.asyncio
    async def test_empty_table(self, session_factory):
        result = await ReconciliationRunner(session_factory).run(LikeCountJob())

        assert result.status == "ok"
        assert result.batches == 0
        assert result.scanned == 0


class TestKeywordSummaryJob:
    """Keyword summary backfill."""

    @pytest.mark.asyncio
    async def test_backfill_matches_links(self, session, session_factory):
        total_links = await seed_keyword_links(session, [3, 1, 2, 0, 2])
        runner = ReconciliationRunner(session_factory)

        first = await runner.run(KeywordSummaryJob(batch_size=3))

        links = await session.execute(
            select(ClubReviewKeyword.review_id, ClubReviewKeyword.keyword_id)
        )
        summary = await session.execute(
            select(ClubKeywordSummary.review_id, ClubKeywordSummary.keyword_id)
        )
        assert first.repaired == total_links
        assert sorted(tuple(row) for row in summary.all()) == sorted(tuple(row) for row in links.all())

        second = await runner.run(KeywordSummaryJob(batch_size=3))
        count = await session.execute(select(func.count(ClubKeywordSummary.id)))
        assert second.repaired == 0
        assert count.scalar() == total_links

    @pytest.mark.asyncio
    async def test_summary_rows_carry_club(self, session, session_factory):
        await seed_keyword_links(session, [2])

        await ReconciliationRunner(session_factory).run(KeywordSummaryJob())

        result = await session.execute(
            select(ClubKeywordSummary.club_id, ClubReview.club_id)
            .join(ClubReview, ClubReview.id == ClubKeywordSummary.review_id)
        )
        rows = result.all()
        assert len(rows) == 2
        assert all(summary_club == review_club for summary_club, review_club in rows)


class TestBatchFailure:
    """A failing batch aborts the run cleanly."""

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, session, session_factory):
        r1, r2, r3 = await seed_reviews(session, [(9, 1), (9, 1), (9, 1)])
        runner = ReconciliationRunner(session_factory)

        result = await runner.run(FlakyLikeCountJob(fail_on_id=r2, batch_size=1))

        assert result.status == "error"
        assert result.batches == 1
        assert result.end_cursor == r1
        assert result.failures[0]["cursor"] == r1
        assert result.failures[0]["first_id"] == r2
        assert result.failures[0]["last_id"] == r2
        assert result.failures[0]["error_type"] == "RuntimeError"
        # First batch committed, the rest untouched
        assert await stored_like_counts(session, [r1, r2, r3]) == [1, 9, 9]
        assert runner.state == RunState.IDLE

    @pytest.mark.asyncio
    async def test_failed_run_is_tracked(self, session, session_factory):
        _, r2 = await seed_reviews(session, [(3, 1), (3, 1)])

        await ReconciliationRunner(session_factory).run(FlakyLikeCountJob(fail_on_id=r2, batch_size=1))

        result = await session.execute(
            select(JobRun.status, JobRun.error_message).where(JobRun.job_name == LikeCountJob.name)
        )
        status, error = result.one()
        assert status == "error"
        assert error == "boom"

    @pytest.mark.asyncio
    async def test_next_run_starts_over(self, session, session_factory):
        r1, r2 = await seed_reviews(session, [(3, 1), (3, 1)])
        runner = ReconciliationRunner(session_factory)
        await runner.run(FlakyLikeCountJob(fail_on_id=r2, batch_size=1))

        result = await runner.run(LikeCountJob(batch_size=1))

        assert result.start_cursor == 0
        assert result.scanned == 2
        assert result.repaired == 1
        assert await stored_like_counts(session, [r1, r2]) == [1, 1]


class TestCheckpointResume:
    """Opt-in resume from the last committed cursor."""

    @pytest.mark.asyncio
    async def test_resumes_after_failure(self, session, session_factory):
        r1, r2, r3 = await seed_reviews(session, [(5, 0), (5, 0), (5, 0)])
        runner = ReconciliationRunner(session_factory, resume_from_checkpoint=True)

        failed = await runner.run(FlakyLikeCountJob(fail_on_id=r2, batch_size=1))
        assert failed.status == "error"

        checkpoint = await session.get(ReconcileCheckpoint, LikeCountJob.name)
        assert checkpoint.last_id == r1

        resumed = await runner.run(LikeCountJob(batch_size=1))
        assert resumed.start_cursor == r1
        assert resumed.scanned == 2
        assert await stored_like_counts(session, [r1, r2, r3]) == [0, 0, 0]

        result = await session.execute(
            select(ReconcileCheckpoint.last_id).where(ReconcileCheckpoint.job_name == LikeCountJob.name)
        )
        assert result.scalar() == 0


class TestOverlap:
    """RunGuard skips a second run of the same job."""

    @pytest.mark.asyncio
    async def test_running_job_is_skipped(self, session, session_factory):
        await seed_reviews(session, [(4, 1)])
        runner = ReconciliationRunner(session_factory)
        job = LikeCountJob()

        async with runner.guard.hold(job.name) as acquired:
            assert acquired is True
            assert runner.guard.is_running(job.name)
            result = await runner.run(job)

        assert result.status == "skipped"
        assert result.scanned == 0
        assert (await runner.run(job)).status == "ok"
        assert not runner.guard.is_running(job.name)

    @pytest.mark.asyncio
    async def test_other_jobs_are_not_blocked(self, session_factory):
        runner = ReconciliationRunner(session_factory)

        async with runner.guard.hold(LikeCountJob.name):
            result = await runner.run(KeywordSummaryJob())

        assert result.status == "ok"

    def _pg_engine(self, lock_free: bool):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=MagicMock(scalar=MagicMock(return_value=lock_free)))
        conn.commit = AsyncMock()
        engine = MagicMock()
        engine.dialect.name = "postgresql"
        engine.connect.return_value.__aenter__ = AsyncMock(return_value=conn)
        engine.connect.return_value.__aexit__ = AsyncMock(return_value=False)
        return engine, conn

    @pytest.mark.asyncio
    async def test_advisory_lock_held_elsewhere(self):
        engine, conn = self._pg_engine(lock_free=False)
        guard = RunGuard(engine, lock_base=771000)

        async with guard.hold("club_keyword_summary") as acquired:
            assert acquired is False

        sql, params = conn.execute.call_args.args
        assert "pg_try_advisory_lock" in str(sql)
        assert params == {"lock_id": guard.lock_key("club_keyword_summary")}

    @pytest.mark.asyncio
    async def test_advisory_lock_released(self):
        engine, conn = self._pg_engine(lock_free=True)
        guard = RunGuard(engine)

        async with guard.hold("club_keyword_summary") as acquired:
            assert acquired is True
            # Lock connection is not left idle in a transaction during the run
            assert conn.commit.await_count == 1

        statements = [str(call.args[0]) for call in conn.execute.call_args_list]
        assert "pg_try_advisory_lock" in statements[0]
        assert "pg_advisory_unlock" in statements[1]
        assert conn.commit.await_count == 2

    def test_lock_key_is_stable(self):
        guard = RunGuard(lock_base=500)
        key = guard.lock_key("club_keyword_summary")
        assert key == RunGuard(lock_base=500).lock_key("club_keyword_summary")
        assert 500 <= key < 500 + 100000
        assert key != guard.lock_key("performance_review_like_count")


class GatedJob(ReconciliationJob):
    """One in-memory row; diff() blocks until released."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(batch_size=10)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_page(self, session, cursor):
        return [SimpleNamespace(id=1)] if cursor == 0 else []

    async def diff(self, session, rows):
        self.entered.set()
        await self.release.wait()
        return []

    async def repair(self, session, repairs):
        return 0


class TestRunState:
    """State is tracked per job so concurrent runs do not overwrite each other."""

    @pytest.mark.asyncio
    async def test_concurrent_runs_keep_their_own_state(self, session_factory):
        runner = ReconciliationRunner(session_factory, track_runs=False)
        slow, fast = GatedJob("slow_job"), GatedJob("fast_job")

        slow_task = asyncio.create_task(runner.run(slow))
        fast_task = asyncio.create_task(runner.run(fast))
        await slow.entered.wait()
        await fast.entered.wait()
        assert runner.state_of("slow_job") == RunState.DIFFING
        assert runner.state_of("fast_job") == RunState.DIFFING

        fast.release.set()
        assert (await fast_task).status == "ok"

        assert runner.state_of("fast_job") == RunState.IDLE
        assert runner.state_of("slow_job") == RunState.DIFFING
        assert runner.state == RunState.DIFFING

        slow.release.set()
        assert (await slow_task).status == "ok"
        assert runner.state == RunState.IDLE

    def test_unknown_job_is_idle(self):
        assert ReconciliationRunner(MagicMock()).state_of("never_ran") == RunState.IDLE


class TestJobConfig:

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            LikeCountJob(batch_size=0)

    @pytest.mark.asyncio
    async def test_successful_run_is_tracked(self, session, session_factory):
        await seed_reviews(session, [(1, 1)])

        await ReconciliationRunner(session_factory).run(LikeCountJob())

        result = await session.execute(select(JobRun).where(JobRun.job_name == LikeCountJob.name))
        run = result.scalars().one()
        assert run.status == "ok"
        assert run.metrics["scanned"] == 1
        assert run.metrics["repaired"] == 0

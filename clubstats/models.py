"""Database models using SQLModel."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


# =============================================================================
# CLUBS
# =============================================================================


class Club(SQLModel, table=True):
    """Club with denormalized review aggregates (kept in sync at write time)."""

    __tablename__ = "clubs"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, description="Owner user ID")
    name: str = Field(max_length=255)

    avg_rating: float = Field(default=0.0, description="avg(rating) over current reviews, 0 if none")
    review_count: int = Field(default=0, description="count(*) over current reviews")

    created_at: datetime = Field(default_factory=datetime.utcnow)


class Keyword(SQLModel, table=True):
    """Review keyword master (e.g. 'friendly staff', 'good sound')."""

    __tablename__ = "keywords"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, unique=True)
    icon_path: Optional[str] = Field(default=None, max_length=500)


class ClubReview(SQLModel, table=True):
    """Review of a club. Child record of Club; id doubles as the keyset cursor."""

    __tablename__ = "club_reviews"

    id: Optional[int] = Field(default=None, primary_key=True)
    club_id: int = Field(foreign_key="clubs.id", index=True)
    user_id: int = Field(index=True)
    rating: Optional[int] = Field(default=None, description="1-5, NULL if user gave no rating")
    content: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ClubReviewKeyword(SQLModel, table=True):
    """Source-of-truth link between a club review and a keyword."""

    __tablename__ = "club_review_keywords"
    __table_args__ = (
        UniqueConstraint("review_id", "keyword_id", name="uq_review_keyword"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    review_id: int = Field(foreign_key="club_reviews.id", index=True)
    keyword_id: int = Field(foreign_key="keywords.id", index=True)


class ClubKeywordSummary(SQLModel, table=True):
    """
    Denormalized projection of review keywords per club.

    May lag club_review_keywords between reconciliation passes; the nightly
    keyword summary job inserts whatever is missing.
    """

    __tablename__ = "club_keyword_summary"
    __table_args__ = (
        UniqueConstraint("review_id", "keyword_id", name="uq_summary_review_keyword"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    club_id: int = Field(index=True)
    keyword_id: int = Field(index=True)
    review_id: int = Field(index=True)


class Favorite(SQLModel, table=True):
    """Toggle relation: user marked a club as favorite. Row exists = on."""

    __tablename__ = "favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "club_id", name="uq_favorite_user_club"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    club_id: int = Field(foreign_key="clubs.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# PERFORMANCES
# =============================================================================


class Performance(SQLModel, table=True):
    """Performance (gig) listed on the platform."""

    __tablename__ = "performances"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Attendance(SQLModel, table=True):
    """Toggle relation: user attends a performance. Row exists = attending."""

    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("perform_id", "user_id", name="uq_attend_perform_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    perform_id: int = Field(foreign_key="performances.id", index=True)
    user_id: int = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PerformanceReview(SQLModel, table=True):
    """One-line review of a performance (one per user per performance)."""

    __tablename__ = "performance_reviews"
    __table_args__ = (
        UniqueConstraint("perform_id", "user_id", name="uq_perform_review_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    perform_id: int = Field(foreign_key="performances.id", index=True)
    user_id: int = Field(index=True)
    content: str = Field(max_length=100)
    like_count: int = Field(default=0, description="Denormalized count of performance_review_likes")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PerformanceReviewLike(SQLModel, table=True):
    """Toggle relation: user liked a one-line review. Source of like_count."""

    __tablename__ = "performance_review_likes"
    __table_args__ = (
        UniqueConstraint("review_id", "user_id", name="uq_review_like_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    review_id: int = Field(foreign_key="performance_reviews.id", index=True)
    user_id: int = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# JOBS
# =============================================================================


class JobRun(SQLModel, table=True):
    """
    Reconciliation job executions.
    Survives deploys so the last-success timestamp is known after a cold start.
    """

    __tablename__ = "job_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_name: str = Field(max_length=100, index=True)
    status: str = Field(max_length=20, description="ok, error, skipped")
    started_at: datetime = Field(index=True)
    finished_at: datetime
    duration_ms: int = Field(default=0)
    error_message: Optional[str] = Field(default=None)
    metrics: Optional[dict] = Field(default=None, sa_column=Column(JSON))


class ReconcileCheckpoint(SQLModel, table=True):
    """Last committed keyset cursor per reconciliation job (resume mode only)."""

    __tablename__ = "reconcile_checkpoints"

    job_name: str = Field(primary_key=True, max_length=100)
    last_id: int = Field(default=0)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

"""Clubs: reviews (with write-time aggregates), favorites and read summaries."""

from clubstats.clubs.reviews import UNSET, ClubReviewService
from clubstats.clubs.service import ClubService, ClubSummary, FavoriteToggle

__all__ = [
    "UNSET",
    "ClubReviewService",
    "ClubService",
    "ClubSummary",
    "FavoriteToggle",
]

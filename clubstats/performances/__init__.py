"""Performances: attendance toggle and one-line reviews with like counts."""

from clubstats.performances.reviews import LikeToggle, PerformanceReviewService
from clubstats.performances.service import PerformanceService

__all__ = [
    "LikeToggle",
    "PerformanceReviewService",
    "PerformanceService",
]

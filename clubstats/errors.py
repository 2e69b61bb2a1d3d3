"""Domain errors raised by services and the reconciliation runner."""

from typing import Optional


class ClubStatsError(Exception):
    """Base class for clubstats domain errors."""


class NotFoundError(ClubStatsError):
    """Parent or child row does not exist (or vanished mid-transaction)."""


class ForbiddenError(ClubStatsError):
    """Caller does not own the row it tried to update or delete."""


class ConflictError(ClubStatsError):
    """Row already exists for a key that allows only one (e.g. one review per user)."""


class ConsistencyError(ClubStatsError):
    """
    A statement that must affect exactly one row affected none.

    Raised by the atomic toggle when neither the insert nor the delete
    branch fired. Never swallowed.
    """


class BatchFailure(ClubStatsError):
    """One reconciliation batch failed. Carries the key range being processed."""

    def __init__(
        self,
        job: str,
        cursor: int,
        first_id: Optional[int] = None,
        last_id: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.job = job
        self.cursor = cursor
        self.first_id = first_id
        self.last_id = last_id
        self.cause = cause
        super().__init__(
            f"{job}: batch after id {cursor} failed "
            f"(ids {first_id}..{last_id}): {cause!r}"
        )

    def as_dict(self) -> dict:
        return {
            "cursor": self.cursor,
            "first_id": self.first_id,
            "last_id": self.last_id,
            "error": str(self.cause) if self.cause is not None else None,
            "error_type": type(self.cause).__name__ if self.cause is not None else None,
        }

"""Club read paths and favorite toggle."""

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.database import transaction
from clubstats.errors import NotFoundError
from clubstats.models import Club, ClubKeywordSummary, Favorite, Keyword
from clubstats.toggles import toggle_membership

logger = logging.getLogger(__name__)


@dataclass
class FavoriteToggle:
    is_favorite: bool
    message: str


@dataclass
class ClubSummary:
    """Read-path view served entirely from denormalized fields."""

    club_id: int
    name: str
    avg_rating: float
    review_count: int
    favorite_count: int
    keywords: list[dict] = field(default_factory=list)


class ClubService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _require_club(self, club_id: int) -> Club:
        club = await self.session.get(Club, club_id)
        if club is None:
            raise NotFoundError(f"Club {club_id} not found")
        return club

    async def toggle_favorite(self, club_id: int, user_id: int) -> FavoriteToggle:
        """
        Flip the user's favorite on a club.

        Uses the same atomic upsert-or-delete as attendance, guarded by the
        (user_id, club_id) unique constraint, so double clicks cannot leave
        two favorite rows.
        """
        async with transaction(self.session):
            await self._require_club(club_id)
            is_favorite = await toggle_membership(
                self.session, Favorite, "user_id", "club_id", user_id, club_id
            )

        return FavoriteToggle(
            is_favorite=is_favorite,
            message="Favorite added" if is_favorite else "Favorite removed",
        )

    async def is_favorite(self, club_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            select(Favorite.id).where(
                Favorite.club_id == club_id,
                Favorite.user_id == user_id,
            )
        )
        return result.first() is not None

    async def count_favorites(self, club_id: int) -> int:
        """favorite_count is derived on read, never stored."""
        result = await self.session.execute(
            select(func.count(Favorite.id)).where(Favorite.club_id == club_id)
        )
        return int(result.scalar() or 0)

    async def keyword_summary(self, club_id: int) -> list[dict]:
        """Keyword tallies for a club from club_keyword_summary, most used first."""
        result = await self.session.execute(
            select(
                Keyword.id,
                Keyword.name,
                Keyword.icon_path,
                func.count(ClubKeywordSummary.id).label("uses"),
            )
            .select_from(ClubKeywordSummary)
            .join(Keyword, Keyword.id == ClubKeywordSummary.keyword_id)
            .where(ClubKeywordSummary.club_id == club_id)
            .group_by(Keyword.id, Keyword.name, Keyword.icon_path)
            .order_by(func.count(ClubKeywordSummary.id).desc(), Keyword.id)
        )
        return [
            {"id": row.id, "name": row.name, "icon_path": row.icon_path, "count": row.uses}
            for row in result.all()
        ]

    async def get_summary(self, club_id: int) -> ClubSummary:
        club = await self.session.get(Club, club_id, populate_existing=True)
        if club is None:
            raise NotFoundError(f"Club {club_id} not found")
        return ClubSummary(
            club_id=club.id,
            name=club.name,
            avg_rating=club.avg_rating,
            review_count=club.review_count,
            favorite_count=await self.count_favorites(club_id),
            keywords=await self.keyword_summary(club_id),
        )

"""Performance attendance toggle."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubstats.database import transaction
from clubstats.errors import NotFoundError
from clubstats.models import Attendance, Performance
from clubstats.toggles import toggle_membership

logger = logging.getLogger(__name__)


class PerformanceService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def attend(self, user_id: int, perform_id: int) -> bool:
        """
        Toggle attendance. Returns True if the user is now attending.

        Attendance is capacity-relevant, so the flip is a single conditional
        statement serialized on the (perform_id, user_id) unique constraint.

        Raises:
            NotFoundError: Performance does not exist
            ConsistencyError: Neither insert nor delete affected a row
        """
        async with transaction(self.session):
            if await self.session.get(Performance, perform_id) is None:
                raise NotFoundError(f"Performance {perform_id} not found")
            attending = await toggle_membership(
                self.session, Attendance, "perform_id", "user_id", perform_id, user_id
            )

        logger.info(
            f"[ATTEND] user={user_id} performance={perform_id} "
            f"{'attending' if attending else 'no longer attending'}"
        )
        return attending

    async def is_attending(self, user_id: int, perform_id: int) -> bool:
        result = await self.session.execute(
            select(Attendance.id).where(
                Attendance.perform_id == perform_id,
                Attendance.user_id == user_id,
            )
        )
        return result.first() is not None

    async def count_attendees(self, perform_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Attendance.id)).where(Attendance.perform_id == perform_id)
        )
        return int(result.scalar() or 0)

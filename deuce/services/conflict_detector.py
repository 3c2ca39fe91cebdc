"""
Scheduling conflict detection.

A user conflicts with a proposed time when they already hold an accepted
seat on another SCHEDULED or ONGOING match that starts within the window,
either by its direct scheduled time or by a confirmed time slot.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    InvitationStatus,
    Match,
    MatchParticipant,
    MatchTimeSlot,
    TimeSlotStatus,
)
from deuce.services.errors import SchedulingConflictError
from deuce.services.match_state import ACTIVE_STATUSES
from deuce.utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass
class ScheduleConflict:
    match_id: int
    starts_at: datetime


class ConflictDetector:
    """Finds accepted matches that overlap a proposed start time."""

    async def find_conflict(
        self,
        session: AsyncSession,
        user_id: int,
        proposed_time: datetime,
        window_hours: float,
        exclude_match_id: Optional[int] = None,
    ) -> Optional[ScheduleConflict]:
        """
        Return the first overlapping match, or None.

        A failing lookup is logged and reported as no conflict so that a
        broken check never blocks scheduling.
        """
        try:
            async with session.begin_nested():
                return await self._query_conflict(
                    session, user_id, ensure_utc(proposed_time), window_hours, exclude_match_id
                )
        except Exception as e:
            logger.warning(f"Conflict check failed for user {user_id}, allowing: {e}")
            return None

    async def ensure_available(
        self,
        session: AsyncSession,
        user_id: int,
        proposed_time: Optional[datetime],
        window_hours: float,
        exclude_match_id: Optional[int] = None,
    ) -> None:
        """
        Raises:
            SchedulingConflictError: If the user has an overlapping match
        """
        if proposed_time is None:
            return
        conflict = await self.find_conflict(
            session, user_id, proposed_time, window_hours, exclude_match_id
        )
        if conflict:
            raise SchedulingConflictError(
                user_id,
                conflict.match_id,
                f"User {user_id} already has match {conflict.match_id} within "
                f"{window_hours:g} hours of the proposed time",
            )

    async def _query_conflict(
        self,
        session: AsyncSession,
        user_id: int,
        proposed_time: datetime,
        window_hours: float,
        exclude_match_id: Optional[int],
    ) -> Optional[ScheduleConflict]:
        window_start = proposed_time - timedelta(hours=window_hours)
        window_end = proposed_time + timedelta(hours=window_hours)

        accepted_matches = select(MatchParticipant.match_id).where(
            MatchParticipant.user_id == user_id,
            MatchParticipant.invitation_status == InvitationStatus.ACCEPTED,
        )

        direct = select(Match.id, Match.scheduled_time).where(
            Match.id.in_(accepted_matches),
            Match.status.in_(ACTIVE_STATUSES),
            Match.scheduled_time.is_not(None),
            Match.scheduled_time >= window_start,
            Match.scheduled_time <= window_end,
        )
        if exclude_match_id is not None:
            direct = direct.where(Match.id != exclude_match_id)
        row = (await session.execute(direct.order_by(Match.scheduled_time).limit(1))).first()
        if row:
            return ScheduleConflict(match_id=row[0], starts_at=ensure_utc(row[1]))

        via_slot = (
            select(MatchTimeSlot.match_id, MatchTimeSlot.proposed_time)
            .join(Match, Match.id == MatchTimeSlot.match_id)
            .where(
                MatchTimeSlot.match_id.in_(accepted_matches),
                MatchTimeSlot.status == TimeSlotStatus.CONFIRMED,
                MatchTimeSlot.proposed_time >= window_start,
                MatchTimeSlot.proposed_time <= window_end,
                Match.status.in_(ACTIVE_STATUSES),
            )
        )
        if exclude_match_id is not None:
            via_slot = via_slot.where(MatchTimeSlot.match_id != exclude_match_id)
        row = (await session.execute(via_slot.order_by(MatchTimeSlot.proposed_time).limit(1))).first()
        if row:
            return ScheduleConflict(match_id=row[0], starts_at=ensure_utc(row[1]))
        return None

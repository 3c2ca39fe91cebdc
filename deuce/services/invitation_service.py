"""
Invitation responses and expiry.

Expiry is enforced two ways with the same rule: lazily when an invitee
responds to an invitation that is past its deadline, and eagerly by the
maintenance sweep.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    InvitationStatus,
    Match,
    MatchInvitation,
    MatchParticipant,
    MatchStatus,
)
from deuce.services.conflict_detector import ConflictDetector
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    InvitationExpiredError,
    NotFoundError,
)
from deuce.services.events import DomainEvent, EventKind, record_event
from deuce.services.match_state import TransitionKind, get_match, reload_locked, transition
from deuce.services.scheduling_service import match_start_time
from deuce.services.serializers import format_invitation
from deuce.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_TERMINAL_UNACCEPTED = (
    InvitationStatus.DECLINED,
    InvitationStatus.EXPIRED,
    InvitationStatus.CANCELLED,
)


def is_expired(invitation: MatchInvitation, now: Optional[datetime] = None) -> bool:
    """A pending invitation is expired once its deadline has passed."""
    now = now or utcnow()
    return (
        invitation.status == InvitationStatus.PENDING
        and ensure_utc(invitation.expires_at) <= now
    )


async def _get_participant(
    session: AsyncSession, match_id: int, user_id: int
) -> Optional[MatchParticipant]:
    result = await session.execute(
        select(MatchParticipant).where(
            MatchParticipant.match_id == match_id, MatchParticipant.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


class InvitationService:
    """Handles invitee responses and invitation expiry."""

    def __init__(self, config: EngineConfig, conflicts: ConflictDetector):
        self.config = config
        self.conflicts = conflicts

    async def respond_to_invitation(
        self,
        session: AsyncSession,
        invitation_id: int,
        user_id: int,
        accept: bool,
        decline_reason: Optional[str] = None,
    ) -> Dict:
        """
        Accept or decline an invitation.

        Raises:
            AuthorizationError: If the user is not the invitee
            ConflictError: If the invitation was already answered
            InvitationExpiredError: If the deadline passed (the invitation is marked expired)
            SchedulingConflictError: If accepting would double-book the invitee
        """
        invitation = await session.get(MatchInvitation, invitation_id)
        if not invitation:
            raise NotFoundError(f"Invitation {invitation_id} not found")
        if invitation.invitee_id != user_id:
            raise AuthorizationError("Only the invited user can respond to this invitation")

        match = await get_match(session, invitation.match_id)
        invitation = await reload_locked(session, MatchInvitation, invitation_id)
        if not invitation:
            raise NotFoundError(f"Invitation {invitation_id} not found")
        if invitation.status != InvitationStatus.PENDING:
            raise ConflictError("This invitation has already been responded to")
        if is_expired(invitation):
            await self._expire(session, invitation, match)
            raise InvitationExpiredError("This invitation has expired")
        if match.status != MatchStatus.SCHEDULED:
            raise ConflictError("This match is no longer accepting responses")

        participant = await _get_participant(session, match.id, user_id)
        now = utcnow()
        if accept:
            start = await match_start_time(session, match)
            await self.conflicts.ensure_available(
                session,
                user_id,
                start,
                self.config.acceptance_conflict_window_hours,
                exclude_match_id=match.id,
            )
            invitation.status = InvitationStatus.ACCEPTED
            if participant:
                participant.invitation_status = InvitationStatus.ACCEPTED
            kind = EventKind.INVITATION_ACCEPTED
        else:
            invitation.status = InvitationStatus.DECLINED
            invitation.decline_reason = decline_reason
            if participant:
                participant.invitation_status = InvitationStatus.DECLINED
            kind = EventKind.INVITATION_DECLINED

        invitation.responded_at = now
        if participant:
            participant.responded_at = now
        await session.flush()

        record_event(
            session,
            DomainEvent(
                kind,
                match.id,
                recipients=[invitation.inviter_id],
                payload={"invitee_id": user_id, "decline_reason": decline_reason},
            ),
        )
        if not accept:
            await self.revert_if_abandoned(session, match)

        logger.info(
            f"User {user_id} {'accepted' if accept else 'declined'} invitation {invitation.id} "
            f"for match {match.id}"
        )
        return format_invitation(invitation)

    async def get_user_invitations(
        self, session: AsyncSession, user_id: int, pending_only: bool = True
    ) -> List[Dict]:
        query = select(MatchInvitation).where(MatchInvitation.invitee_id == user_id)
        if pending_only:
            query = query.where(MatchInvitation.status == InvitationStatus.PENDING)
        result = await session.execute(query.order_by(MatchInvitation.created_at.desc()))
        return [format_invitation(i) for i in result.scalars().all()]

    async def sweep_expired_invitations(
        self, session: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        """
        Mark every pending invitation past its deadline as expired.

        Returns:
            Number of invitations expired
        """
        now = now or utcnow()
        result = await session.execute(
            select(MatchInvitation)
            .where(
                MatchInvitation.status == InvitationStatus.PENDING,
                MatchInvitation.expires_at <= now,
            )
            .order_by(MatchInvitation.match_id, MatchInvitation.id)
        )
        expired = 0
        for invitation in result.scalars().all():
            match = await get_match(session, invitation.match_id)
            # Another transaction may have answered it since the scan
            invitation = await reload_locked(session, MatchInvitation, invitation.id)
            if invitation is None or not is_expired(invitation, now):
                continue
            await self._expire(session, invitation, match)
            expired += 1

        if expired:
            logger.info(f"Expired {expired} match invitations")
        return expired

    async def _expire(
        self, session: AsyncSession, invitation: MatchInvitation, match: Match
    ) -> None:
        invitation.status = InvitationStatus.EXPIRED
        participant = await _get_participant(session, match.id, invitation.invitee_id)
        if participant and participant.invitation_status == InvitationStatus.PENDING:
            participant.invitation_status = InvitationStatus.EXPIRED
        await session.flush()
        record_event(
            session,
            DomainEvent(
                EventKind.INVITATION_EXPIRED,
                match.id,
                recipients=[invitation.inviter_id, invitation.invitee_id],
                payload={"invitation_id": invitation.id},
            ),
        )
        await self.revert_if_abandoned(session, match)

    async def revert_if_abandoned(self, session: AsyncSession, match: Match) -> bool:
        """
        Send a scheduled match back to DRAFT once every invitation ended unaccepted.

        Returns:
            True if the match was reverted
        """
        if match.status != MatchStatus.SCHEDULED:
            return False
        result = await session.execute(
            select(MatchInvitation.status).where(MatchInvitation.match_id == match.id)
        )
        statuses = [row[0] for row in result.all()]
        if not statuses or any(s not in _TERMINAL_UNACCEPTED for s in statuses):
            return False
        transition(match, MatchStatus.DRAFT, TransitionKind.SYSTEM)
        await session.flush()
        return True

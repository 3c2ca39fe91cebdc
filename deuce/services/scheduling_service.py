"""
Match creation, roster filling, time slot voting, rescheduling and
participant cancellation.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    Division,
    InvitationStatus,
    Match,
    MatchInvitation,
    MatchParticipant,
    MatchStatus,
    MatchTimeSlot,
    MatchType,
    ParticipantRole,
    TimeSlotStatus,
    CancellationReason,
)
from deuce.services.conflict_detector import ConflictDetector
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from deuce.services.events import DomainEvent, EventKind, record_event
from deuce.services.penalty_service import is_suspended
from deuce.services.match_state import (
    TransitionKind,
    accepted,
    find_participant,
    get_match,
    get_participants,
    reload_locked,
    require_participant,
    required_player_count,
    transition,
)
from deuce.services.serializers import format_time_slot, load_match_dict
from deuce.utils.datetime_utils import ensure_utc, hours_until, utcnow

logger = logging.getLogger(__name__)

_OPEN_SLOT_STATUSES = (TimeSlotStatus.PROPOSED, TimeSlotStatus.VOTED)


async def get_time_slots(
    session: AsyncSession, match_id: int, statuses=None
) -> List[MatchTimeSlot]:
    query = select(MatchTimeSlot).where(MatchTimeSlot.match_id == match_id)
    if statuses:
        query = query.where(MatchTimeSlot.status.in_(statuses))
    result = await session.execute(query.order_by(MatchTimeSlot.proposed_time, MatchTimeSlot.id))
    return list(result.scalars().all())


async def match_start_time(session: AsyncSession, match: Match) -> Optional[datetime]:
    """Scheduled time, else the confirmed slot, else the earliest open proposal."""
    if match.scheduled_time:
        return ensure_utc(match.scheduled_time)
    slots = await get_time_slots(
        session, match.id, (TimeSlotStatus.CONFIRMED,) + _OPEN_SLOT_STATUSES
    )
    confirmed = [s for s in slots if s.status == TimeSlotStatus.CONFIRMED]
    chosen = confirmed[0] if confirmed else (slots[0] if slots else None)
    return ensure_utc(chosen.proposed_time) if chosen else None


class SchedulingService:
    """Creates matches and manages who plays and when."""

    def __init__(self, config: EngineConfig, membership, conflicts: ConflictDetector):
        self.config = config
        self.membership = membership
        self.conflicts = conflicts

    # ── Creation ────────────────────────────────────────────────────────

    async def create_match(
        self,
        session: AsyncSession,
        creator_id: int,
        division_id: int,
        match_type: MatchType,
        opponent_id: Optional[int] = None,
        partner_id: Optional[int] = None,
        opponent_partner_id: Optional[int] = None,
        proposed_times: Optional[List[datetime]] = None,
        location: Optional[str] = None,
        venue: Optional[str] = None,
        notes: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict:
        """
        Create a match, seat the creator and invite everyone else.

        Raises:
            ValidationError: If the roster is malformed
            NotFoundError: If the division does not exist
            AuthorizationError: If a player is not in the division
            SchedulingConflictError: If the creator or partner is busy at the first proposed time
        """
        proposed_times = [ensure_utc(t) for t in (proposed_times or [])]
        self._validate_roster(creator_id, match_type, opponent_id, partner_id, opponent_partner_id)

        division = await session.get(Division, division_id)
        if not division:
            raise NotFoundError(f"Division {division_id} not found")

        invitees = self._invitees(opponent_id, partner_id, opponent_partner_id)
        for user_id in [creator_id] + [u for u, _, _ in invitees]:
            if not await self.membership.is_member(session, user_id, division_id):
                raise AuthorizationError(f"User {user_id} is not a member of this division")

        if await is_suspended(session, creator_id):
            raise AuthorizationError("Suspended players cannot create matches")

        first_time = proposed_times[0] if proposed_times else None
        for user_id in (creator_id, partner_id):
            if user_id is not None:
                await self.conflicts.ensure_available(
                    session, user_id, first_time, self.config.creation_conflict_window_hours
                )

        match = Match(
            division_id=division.id,
            season_id=division.season_id,
            sport=division.sport,
            match_type=match_type,
            set3_format=division.set3_format,
            status=MatchStatus.SCHEDULED,
            created_by=creator_id,
            location=location,
            venue=venue,
            notes=notes,
        )
        session.add(match)
        await session.flush()

        await self._seat_roster(session, match, creator_id, invitees, proposed_times, location, message)

        logger.info(
            f"Match {match.id} created by user {creator_id} in division {division_id} "
            f"({match_type.value}, {len(invitees)} invitations)"
        )
        return await load_match_dict(session, match)

    async def edit_draft_match(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        opponent_id: Optional[int] = None,
        partner_id: Optional[int] = None,
        opponent_partner_id: Optional[int] = None,
        proposed_times: Optional[List[datetime]] = None,
        location: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict:
        """
        Re-invite players for a DRAFT match and put it back on the schedule.

        Raises:
            AuthorizationError: If the user did not create the match
            ConflictError: If the match is not a draft
        """
        match = await get_match(session, match_id)
        if match.created_by != user_id:
            raise AuthorizationError("Only the match creator can edit this match")
        if match.status != MatchStatus.DRAFT:
            raise ConflictError("Only draft matches can be edited")

        proposed_times = [ensure_utc(t) for t in (proposed_times or [])]
        self._validate_roster(user_id, match.match_type, opponent_id, partner_id, opponent_partner_id)
        invitees = self._invitees(opponent_id, partner_id, opponent_partner_id)
        if not invitees:
            raise ValidationError("A draft match must invite at least one player")
        for invitee_id, _, _ in invitees:
            if not await self.membership.is_member(session, invitee_id, match.division_id):
                raise AuthorizationError(f"User {invitee_id} is not a member of this division")

        first_time = proposed_times[0] if proposed_times else None
        for player_id in (user_id, partner_id):
            if player_id is not None:
                await self.conflicts.ensure_available(
                    session,
                    player_id,
                    first_time,
                    self.config.creation_conflict_window_hours,
                    exclude_match_id=match.id,
                )

        for participant in await get_participants(session, match.id):
            if participant.user_id != user_id:
                await session.delete(participant)
        for slot in await get_time_slots(session, match.id):
            await session.delete(slot)
        await session.execute(delete(MatchInvitation).where(MatchInvitation.match_id == match.id))
        await session.flush()

        transition(match, MatchStatus.SCHEDULED, TransitionKind.USER)
        match.scheduled_time = None
        if location:
            match.location = location
        await self._seat_roster(
            session, match, user_id, invitees, proposed_times, location, message, seat_creator=False
        )
        logger.info(f"Draft match {match.id} re-issued with {len(invitees)} invitations")
        return await load_match_dict(session, match)

    def _validate_roster(self, creator_id, match_type, opponent_id, partner_id, opponent_partner_id):
        if match_type == MatchType.DOUBLES and partner_id is None:
            raise ValidationError("Doubles matches require a partner")
        if match_type == MatchType.SINGLES and (partner_id or opponent_partner_id):
            raise ValidationError("Singles matches cannot have partners")
        if opponent_partner_id is not None and opponent_id is None:
            raise ValidationError("An opponent's partner requires an opponent")
        players = [u for u in (creator_id, opponent_id, partner_id, opponent_partner_id) if u is not None]
        if len(players) != len(set(players)):
            raise ValidationError("Each player can only appear once in a match")

    @staticmethod
    def _invitees(opponent_id, partner_id, opponent_partner_id):
        invitees = []
        if partner_id is not None:
            invitees.append((partner_id, ParticipantRole.PARTNER, "team1"))
        if opponent_id is not None:
            invitees.append((opponent_id, ParticipantRole.OPPONENT, "team2"))
        if opponent_partner_id is not None:
            invitees.append((opponent_partner_id, ParticipantRole.PARTNER, "team2"))
        return invitees

    async def _seat_roster(
        self,
        session: AsyncSession,
        match: Match,
        creator_id: int,
        invitees,
        proposed_times: List[datetime],
        location: Optional[str],
        message: Optional[str],
        seat_creator: bool = True,
    ) -> None:
        now = utcnow()
        expires_at = now + timedelta(hours=self.config.invitation_expiry_hours)
        if seat_creator:
            session.add(
                MatchParticipant(
                    match_id=match.id,
                    user_id=creator_id,
                    role=ParticipantRole.CREATOR,
                    team="team1",
                    invitation_status=InvitationStatus.ACCEPTED,
                    responded_at=now,
                )
            )
        for user_id, role, team in invitees:
            session.add(
                MatchParticipant(
                    match_id=match.id,
                    user_id=user_id,
                    role=role,
                    team=team,
                    invitation_status=InvitationStatus.PENDING,
                )
            )
            session.add(
                MatchInvitation(
                    match_id=match.id,
                    inviter_id=creator_id,
                    invitee_id=user_id,
                    status=InvitationStatus.PENDING,
                    message=message,
                    expires_at=expires_at,
                )
            )
        for proposed_time in proposed_times:
            session.add(
                MatchTimeSlot(
                    match_id=match.id,
                    proposed_by=creator_id,
                    proposed_time=proposed_time,
                    location=location,
                    status=TimeSlotStatus.PROPOSED,
                    votes=[creator_id],
                    vote_count=1,
                )
            )
        await session.flush()

        if invitees:
            record_event(
                session,
                DomainEvent(
                    EventKind.MATCH_CREATED,
                    match.id,
                    recipients=[u for u, _, _ in invitees],
                    payload={"invited_by": creator_id, "expires_at": expires_at.isoformat()},
                ),
            )

    # ── Open signup ─────────────────────────────────────────────────────

    async def join_match(
        self, session: AsyncSession, match_id: int, user_id: int, team: Optional[str] = None
    ) -> Dict:
        """
        Take an open seat on a scheduled match.

        Raises:
            ConflictError: If the match is not open, already full, or the user is already on it
            AuthorizationError: If the user is not in the division
        """
        match = await get_match(session, match_id)
        if match.status != MatchStatus.SCHEDULED:
            raise ConflictError("Only scheduled matches can be joined")
        if not await self.membership.is_member(session, user_id, match.division_id):
            raise AuthorizationError("You are not a member of this division")
        if await is_suspended(session, user_id):
            raise AuthorizationError("Suspended players cannot join matches")

        participants = await get_participants(session, match.id)
        if find_participant(participants, user_id):
            raise ConflictError("You are already a participant in this match")

        holding = [
            p for p in participants
            if p.invitation_status in (InvitationStatus.ACCEPTED, InvitationStatus.PENDING)
        ]
        per_team = required_player_count(match.match_type) // 2
        seats = {t: per_team - sum(1 for p in holding if p.team == t) for t in ("team1", "team2")}
        if team is not None:
            if team not in seats:
                raise ValidationError("team must be 'team1' or 'team2'")
            if seats[team] <= 0:
                raise ConflictError(f"{team} is already full")
        else:
            open_teams = [t for t in ("team2", "team1") if seats[t] > 0]
            if not open_teams:
                raise ConflictError("This match is already full")
            team = open_teams[0]

        start = await match_start_time(session, match)
        await self.conflicts.ensure_available(
            session, user_id, start, self.config.acceptance_conflict_window_hours, match.id
        )

        creator_team = next((p.team for p in participants if p.user_id == match.created_by), "team1")
        session.add(
            MatchParticipant(
                match_id=match.id,
                user_id=user_id,
                role=ParticipantRole.PARTNER if team == creator_team else ParticipantRole.OPPONENT,
                team=team,
                invitation_status=InvitationStatus.ACCEPTED,
                responded_at=utcnow(),
            )
        )
        await session.flush()
        record_event(
            session,
            DomainEvent(
                EventKind.PLAYER_JOINED,
                match.id,
                recipients=[p.user_id for p in accepted(participants)],
                payload={"user_id": user_id, "team": team},
            ),
        )
        logger.info(f"User {user_id} joined match {match.id} on {team}")
        return await load_match_dict(session, match)

    # ── Time slots ──────────────────────────────────────────────────────

    async def propose_time_slot(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        proposed_time: datetime,
        location: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict:
        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        require_participant(participants, user_id)
        if match.status != MatchStatus.SCHEDULED:
            raise ConflictError("Time slots can only be proposed for scheduled matches")

        slot = MatchTimeSlot(
            match_id=match.id,
            proposed_by=user_id,
            proposed_time=ensure_utc(proposed_time),
            location=location,
            notes=notes,
            status=TimeSlotStatus.PROPOSED,
            votes=[user_id],
            vote_count=1,
        )
        session.add(slot)
        await session.flush()
        record_event(
            session,
            DomainEvent(
                EventKind.TIME_SLOT_PROPOSED,
                match.id,
                recipients=[p.user_id for p in accepted(participants) if p.user_id != user_id],
                payload={"time_slot_id": slot.id, "proposed_time": slot.proposed_time.isoformat()},
            ),
        )
        return format_time_slot(slot)

    async def vote_for_time_slot(self, session: AsyncSession, slot_id: int, user_id: int) -> Dict:
        """
        Vote for a proposed time. The slot is confirmed once every accepted
        participant has voted for it.

        Raises:
            ConflictError: On a repeated vote or a slot that is no longer open
        """
        slot = await session.get(MatchTimeSlot, slot_id)
        if not slot:
            raise NotFoundError(f"Time slot {slot_id} not found")
        match = await get_match(session, slot.match_id)
        slot = await reload_locked(session, MatchTimeSlot, slot_id)
        if not slot:
            raise NotFoundError(f"Time slot {slot_id} not found")
        participants = await get_participants(session, match.id)
        require_participant(participants, user_id)

        votes = list(slot.votes or [])
        if user_id in votes:
            raise ConflictError("You have already voted for this time slot")
        if slot.status not in _OPEN_SLOT_STATUSES:
            raise ConflictError("This time slot is no longer open for voting")

        votes.append(user_id)
        slot.votes = votes
        slot.vote_count = len(votes)
        slot.status = TimeSlotStatus.VOTED
        await session.flush()

        if slot.vote_count >= len(accepted(participants)):
            return await self.confirm_time_slot(session, slot.id)
        return format_time_slot(slot)

    async def confirm_time_slot(
        self, session: AsyncSession, slot_id: int, user_id: Optional[int] = None
    ) -> Dict:
        """
        Confirm a slot, reject its siblings and set the match time.

        Confirming an already confirmed slot changes nothing.
        """
        slot = await session.get(MatchTimeSlot, slot_id)
        if not slot:
            raise NotFoundError(f"Time slot {slot_id} not found")
        match = await get_match(session, slot.match_id)
        slot = await reload_locked(session, MatchTimeSlot, slot_id)
        if not slot:
            raise NotFoundError(f"Time slot {slot_id} not found")
        if user_id is not None and match.created_by != user_id:
            raise AuthorizationError("Only the match creator can confirm a time slot")
        if slot.status == TimeSlotStatus.CONFIRMED:
            return format_time_slot(slot)
        if slot.status == TimeSlotStatus.REJECTED:
            raise ConflictError("A rejected time slot cannot be confirmed")

        for sibling in await get_time_slots(session, match.id):
            if sibling.id == slot.id:
                sibling.status = TimeSlotStatus.CONFIRMED
            elif sibling.status in _OPEN_SLOT_STATUSES:
                sibling.status = TimeSlotStatus.REJECTED
        match.scheduled_time = slot.proposed_time
        if slot.location:
            match.location = slot.location
        await session.flush()

        record_event(
            session,
            DomainEvent(
                EventKind.TIME_SLOT_CONFIRMED,
                match.id,
                recipients=[p.user_id for p in accepted(await get_participants(session, match.id))],
                payload={"scheduled_time": ensure_utc(slot.proposed_time).isoformat()},
            ),
        )
        logger.info(f"Match {match.id} time confirmed via slot {slot.id}")
        return format_time_slot(slot)

    async def request_reschedule(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        proposed_times: List[datetime],
        reason: Optional[str] = None,
    ) -> Dict:
        """
        Drop the agreed time and open a new round of proposals.

        Raises:
            ConflictError: If the reschedule limit is reached
        """
        if not proposed_times:
            raise ValidationError("At least one new time must be proposed")
        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        require_participant(participants, user_id)
        if match.status != MatchStatus.SCHEDULED:
            raise ConflictError("Only scheduled matches can be rescheduled")
        if match.reschedule_count >= self.config.max_reschedules:
            raise ConflictError(
                f"This match has already been rescheduled {match.reschedule_count} times"
            )

        for slot in await get_time_slots(session, match.id):
            if slot.status != TimeSlotStatus.REJECTED:
                slot.status = TimeSlotStatus.REJECTED
        for proposed_time in proposed_times:
            session.add(
                MatchTimeSlot(
                    match_id=match.id,
                    proposed_by=user_id,
                    proposed_time=ensure_utc(proposed_time),
                    status=TimeSlotStatus.PROPOSED,
                    votes=[user_id],
                    vote_count=1,
                    notes=reason,
                )
            )
        match.scheduled_time = None
        match.reschedule_count += 1
        await session.flush()

        record_event(
            session,
            DomainEvent(
                EventKind.RESCHEDULE_REQUESTED,
                match.id,
                recipients=[p.user_id for p in accepted(participants) if p.user_id != user_id],
                payload={"requested_by": user_id, "reason": reason},
            ),
        )
        logger.info(f"Match {match.id} reschedule #{match.reschedule_count} by user {user_id}")
        return await load_match_dict(session, match)

    # ── Cancellation ────────────────────────────────────────────────────

    async def cancel_match(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        reason: CancellationReason,
        comment: Optional[str] = None,
    ) -> Dict:
        """
        Cancel a match. Cancelling close to the start flags it for admin review.

        Raises:
            ConflictError: If the match is completed or already cancelled
        """
        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        require_participant(participants, user_id)
        if match.status == MatchStatus.COMPLETED:
            raise ConflictError("Cannot cancel a completed match")
        if match.status == MatchStatus.CANCELLED:
            raise ConflictError("Match is already cancelled")

        start = await match_start_time(session, match)
        is_late = start is not None and hours_until(start) < self.config.late_cancellation_hours

        transition(match, MatchStatus.CANCELLED, TransitionKind.USER)
        now = utcnow()
        match.cancelled_by = user_id
        match.cancelled_at = now
        match.cancellation_reason = reason
        match.cancellation_comment = comment
        match.is_late_cancellation = is_late
        if is_late:
            match.requires_admin_review = True

        for participant in participants:
            if participant.invitation_status == InvitationStatus.PENDING:
                participant.invitation_status = InvitationStatus.CANCELLED
        invitations = await session.execute(
            select(MatchInvitation).where(
                MatchInvitation.match_id == match.id,
                MatchInvitation.status == InvitationStatus.PENDING,
            )
        )
        for invitation in invitations.scalars().all():
            invitation.status = InvitationStatus.CANCELLED
        await session.flush()

        record_event(
            session,
            DomainEvent(
                EventKind.MATCH_CANCELLED,
                match.id,
                recipients=[p.user_id for p in participants if p.user_id != user_id],
                payload={"cancelled_by": user_id, "reason": reason.value, "is_late": is_late},
            ),
        )
        logger.info(f"Match {match.id} cancelled by user {user_id} (late={is_late})")
        return await load_match_dict(session, match)

    # ── Queries ─────────────────────────────────────────────────────────

    async def get_match_details(self, session: AsyncSession, match_id: int) -> Dict:
        match = await get_match(session, match_id, for_update=False)
        return await load_match_dict(session, match)

    async def list_user_matches(
        self, session: AsyncSession, user_id: int, status: Optional[MatchStatus] = None
    ) -> List[Dict]:
        query = (
            select(Match)
            .join(MatchParticipant, MatchParticipant.match_id == Match.id)
            .where(MatchParticipant.user_id == user_id)
        )
        if status is not None:
            query = query.where(Match.status == status)
        result = await session.execute(query.order_by(Match.created_at.desc(), Match.id.desc()))
        return [await load_match_dict(session, m) for m in result.scalars().all()]

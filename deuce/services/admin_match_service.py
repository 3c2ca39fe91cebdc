"""
Admin interventions on matches.

Every intervention writes a ``MatchAdminAction`` audit row with the old and
new values. Changes to a completed match re-run the recalculation cascade.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    InvitationStatus,
    Match,
    MatchAdminAction,
    MatchAdminActionType,
    MatchInvitation,
    MatchParticipant,
    MatchScore,
    MatchStatus,
    MatchType,
    MatchWalkover,
    ParticipantRole,
    PenaltySeverity,
    PenaltyType,
    User,
)
from deuce.services import scoring
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import ConflictError, NotFoundError, ValidationError
from deuce.services.events import DomainEvent, EventKind, record_event
from deuce.services.match_state import (
    TransitionKind,
    accepted,
    get_match,
    get_participants,
    require_admin,
    required_player_count,
    transition,
)
from deuce.services.recalculation_service import get_set_scores, replace_set_scores
from deuce.services.serializers import load_match_dict
from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_PARTICIPANT_EDIT_BLOCKED = (
    MatchStatus.ONGOING,
    MatchStatus.UNFINISHED,
    MatchStatus.CANCELLED,
    MatchStatus.VOID,
)


def _roster_entry(item) -> Dict:
    data = item if isinstance(item, dict) else item.model_dump()
    return {"user_id": data["user_id"], "team": data.get("team")}


class AdminMatchService:
    """Void, edit, reopen and review matches on behalf of league admins."""

    def __init__(self, config: EngineConfig, recalculation, penalties):
        self.config = config
        self.recalculation = recalculation
        self.penalties = penalties

    async def _log_action(
        self,
        session: AsyncSession,
        match: Match,
        admin_id: int,
        action_type: MatchAdminActionType,
        reason: Optional[str],
        old_value=None,
        new_value=None,
        triggered_recalculation: bool = False,
    ) -> MatchAdminAction:
        action = MatchAdminAction(
            match_id=match.id,
            admin_id=admin_id,
            action_type=action_type,
            reason=reason,
            old_value=old_value,
            new_value=new_value,
            triggered_recalculation=triggered_recalculation,
        )
        session.add(action)
        await session.flush()
        return action

    async def void_match(
        self, session: AsyncSession, match_id: int, admin_id: int, reason: str
    ) -> Dict:
        """
        Void a match. A completed match has its derived data reversed.

        Raises:
            IllegalTransitionError: If the match cannot be voided from its status
        """
        await require_admin(session, admin_id)
        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        previous_ids = [p.user_id for p in accepted(participants)]
        was_completed = match.status == MatchStatus.COMPLETED

        old_status = transition(match, MatchStatus.VOID, TransitionKind.ADMIN)
        match.admin_notes = reason
        await session.flush()

        recalculation = None
        if was_completed:
            recalculation = await self.recalculation.recalculate_match(session, match, previous_ids)

        await self._log_action(
            session,
            match,
            admin_id,
            MatchAdminActionType.VOID_MATCH,
            reason,
            old_value={"status": old_status.value},
            new_value={"status": MatchStatus.VOID.value},
            triggered_recalculation=was_completed,
        )
        record_event(
            session,
            DomainEvent(EventKind.MATCH_VOIDED, match.id, recipients=previous_ids, payload={"reason": reason}),
        )
        logger.info(f"Match {match.id} voided by admin {admin_id}")
        details = await load_match_dict(session, match)
        details["recalculation"] = recalculation.to_dict() if recalculation else None
        return details

    async def edit_match_result(
        self, session: AsyncSession, match_id: int, admin_id: int, set_scores, reason: str
    ) -> Dict:
        """
        Replace the score of a completed match and recalculate everything it fed.

        Raises:
            ConflictError: If the match is not completed
            ValidationError: If the new score has no winner
        """
        await require_admin(session, admin_id)
        match = await get_match(session, match_id)
        if match.status != MatchStatus.COMPLETED:
            raise ConflictError("Only completed match results can be edited")

        scores = scoring.coerce_set_scores(set_scores)
        scoring.validate_admin_score(scores)

        participants = await get_participants(session, match.id)
        previous_ids = [p.user_id for p in accepted(participants)]
        old_value = {
            "score": [s.to_dict() for s in await get_set_scores(session, match.id)],
            "outcome": match.outcome,
        }

        await replace_set_scores(session, match, scores)
        transition(match, MatchStatus.COMPLETED, TransitionKind.ADMIN)
        recalculation = await self.recalculation.recalculate_match(session, match, previous_ids)

        await self._log_action(
            session,
            match,
            admin_id,
            MatchAdminActionType.EDIT_RESULT,
            reason,
            old_value=old_value,
            new_value={"score": [s.to_dict() for s in scores], "outcome": match.outcome},
            triggered_recalculation=True,
        )
        record_event(
            session,
            DomainEvent(EventKind.MATCH_RESULT_EDITED, match.id, recipients=previous_ids),
        )
        logger.info(f"Result of match {match.id} edited by admin {admin_id}")
        details = await load_match_dict(session, match)
        details["recalculation"] = recalculation.to_dict()
        return details

    async def edit_participants(
        self, session: AsyncSession, match_id: int, admin_id: int, roster, reason: str
    ) -> Dict:
        """
        Replace a match's roster.

        Draft and scheduled matches just get the new roster. A completed match
        has its ratings reversed, its roster replaced, and its results,
        ratings, best-N and standings derived again for everyone affected.

        Raises:
            ConflictError: If the match is mid-result, cancelled or void
            ValidationError: If the roster does not fit the match type
        """
        await require_admin(session, admin_id)
        match = await get_match(session, match_id)
        if match.status in _PARTICIPANT_EDIT_BLOCKED:
            raise ConflictError(
                f"Participants cannot be edited while the match is {match.status.value.lower()}"
            )

        entries = [_roster_entry(item) for item in roster or []]
        await self._validate_roster(session, match, entries)

        current = await get_participants(session, match.id)
        previous_ids = [p.user_id for p in accepted(current)]
        old_teams = {p.user_id: p.team for p in current}
        new_teams = {e["user_id"]: e["team"] for e in entries}
        changes = {
            "added": sorted(u for u in new_teams if u not in old_teams),
            "removed": sorted(u for u in old_teams if u not in new_teams),
            "modified": sorted(
                u for u in new_teams if u in old_teams and old_teams[u] != new_teams[u]
            ),
        }

        await session.execute(delete(MatchParticipant).where(MatchParticipant.match_id == match.id))
        creator_team = new_teams.get(match.created_by)
        now = utcnow()
        for entry in entries:
            if entry["user_id"] == match.created_by:
                role = ParticipantRole.CREATOR
            elif creator_team is not None and entry["team"] == creator_team:
                role = ParticipantRole.PARTNER
            else:
                role = ParticipantRole.OPPONENT
            session.add(
                MatchParticipant(
                    match_id=match.id,
                    user_id=entry["user_id"],
                    role=role,
                    team=entry["team"],
                    invitation_status=InvitationStatus.ACCEPTED,
                    responded_at=now,
                )
            )
        # Open invitations follow the new roster: seated players accept, removed ones are cancelled
        invitations = await session.execute(
            select(MatchInvitation).where(
                MatchInvitation.match_id == match.id,
                MatchInvitation.status == InvitationStatus.PENDING,
            )
        )
        for invitation in invitations.scalars().all():
            if invitation.invitee_id in new_teams:
                invitation.status = InvitationStatus.ACCEPTED
            else:
                invitation.status = InvitationStatus.CANCELLED
            invitation.responded_at = now
        await session.flush()

        recalculation = None
        if match.status == MatchStatus.COMPLETED:
            recalculation = await self.recalculation.recalculate_match(session, match, previous_ids)

        await self._log_action(
            session,
            match,
            admin_id,
            MatchAdminActionType.EDIT_PARTICIPANTS,
            reason,
            old_value={"participants": [{"user_id": u, "team": t} for u, t in old_teams.items()]},
            new_value={"participants": entries, "changes": changes},
            triggered_recalculation=recalculation is not None,
        )
        record_event(
            session,
            DomainEvent(
                EventKind.PARTICIPANTS_UPDATED,
                match.id,
                recipients=sorted(set(old_teams) | set(new_teams)),
                payload=changes,
            ),
        )
        logger.info(f"Participants of match {match.id} edited by admin {admin_id}: {changes}")
        return {
            "match": await load_match_dict(session, match),
            "changes": changes,
            "recalculation": recalculation.to_dict() if recalculation else None,
        }

    async def _validate_roster(self, session: AsyncSession, match: Match, entries: List[Dict]) -> None:
        needed = required_player_count(match.match_type)
        label = "Singles" if match.match_type == MatchType.SINGLES else "Doubles"
        if len(entries) != needed:
            raise ValidationError(f"{label} matches require exactly {needed} participants")
        user_ids = [e["user_id"] for e in entries]
        if len(set(user_ids)) != len(user_ids):
            raise ValidationError("Each player can only appear once in a match")
        for team in ("team1", "team2"):
            if sum(1 for e in entries if e["team"] == team) != needed // 2:
                raise ValidationError(f"{label} matches require {needed // 2} player(s) on {team}")
        for user_id in user_ids:
            if await session.get(User, user_id) is None:
                raise NotFoundError(f"User {user_id} not found")

    async def review_cancellation(
        self,
        session: AsyncSession,
        match_id: int,
        admin_id: int,
        approved: bool,
        reason: Optional[str] = None,
        apply_penalty: bool = False,
        penalty_severity: Optional[PenaltySeverity] = None,
    ) -> Dict:
        """
        Approve or deny a late cancellation, optionally penalising the canceller.

        Raises:
            ConflictError: If the match is not a late cancellation awaiting review
        """
        await require_admin(session, admin_id)
        match = await get_match(session, match_id)
        if match.status != MatchStatus.CANCELLED or not match.is_late_cancellation:
            raise ConflictError("Match is not a late cancellation")
        if not match.requires_admin_review:
            raise ConflictError("This cancellation has already been reviewed")

        match.requires_admin_review = False
        action_type = (
            MatchAdminActionType.APPROVE_LATE_CANCELLATION
            if approved
            else MatchAdminActionType.DENY_LATE_CANCELLATION
        )
        await self._log_action(
            session,
            match,
            admin_id,
            action_type,
            reason,
            old_value={"requires_admin_review": True},
            new_value={"approved": approved, "apply_penalty": apply_penalty},
        )

        penalty = None
        if not approved and apply_penalty and match.cancelled_by is not None:
            severity = penalty_severity or PenaltySeverity.WARNING
            if severity == PenaltySeverity.POINTS_DEDUCTION:
                penalty = await self.penalties.apply_penalty(
                    session,
                    admin_id,
                    match.cancelled_by,
                    PenaltyType.POINTS_DEDUCTION,
                    severity,
                    reason or "Late cancellation",
                    related_match_id=match.id,
                    points_deducted=self.config.late_cancellation_points_deduction,
                )
            elif severity in (PenaltySeverity.SUSPENSION, PenaltySeverity.PERMANENT_BAN):
                penalty = await self.penalties.apply_penalty(
                    session,
                    admin_id,
                    match.cancelled_by,
                    PenaltyType.SUSPENSION,
                    severity,
                    reason or "Late cancellation",
                    related_match_id=match.id,
                    suspension_days=(
                        self.config.late_cancellation_suspension_days
                        if severity == PenaltySeverity.SUSPENSION
                        else None
                    ),
                )
            else:
                penalty = await self.penalties.apply_penalty(
                    session,
                    admin_id,
                    match.cancelled_by,
                    PenaltyType.WARNING,
                    PenaltySeverity.WARNING,
                    reason or "Late cancellation",
                    related_match_id=match.id,
                )

        logger.info(
            f"Late cancellation of match {match.id} {'approved' if approved else 'denied'} "
            f"by admin {admin_id}"
        )
        details = await load_match_dict(session, match)
        details["penalty"] = penalty
        return details

    async def reopen_match(
        self, session: AsyncSession, match_id: int, admin_id: int, reason: str
    ) -> Dict:
        """
        Put a cancelled or void match back on the schedule with no result.

        Raises:
            IllegalTransitionError: If the match is not cancelled or void
        """
        await require_admin(session, admin_id)
        match = await get_match(session, match_id)
        old_status = transition(match, MatchStatus.SCHEDULED, TransitionKind.ADMIN)

        await session.execute(delete(MatchScore).where(MatchScore.match_id == match.id))
        match.team1_score = None
        match.team2_score = None
        match.outcome = None
        match.result_submitted_by = None
        match.result_submitted_at = None
        match.result_confirmed_by = None
        match.result_confirmed_at = None
        match.completed_at = None
        match.is_walkover = False
        match.walkover_reason = None
        match.is_disputed = False
        match.cancelled_by = None
        match.cancelled_at = None
        match.cancellation_reason = None
        match.cancellation_comment = None
        match.is_late_cancellation = False
        match.requires_admin_review = False
        await session.execute(delete(MatchWalkover).where(MatchWalkover.match_id == match.id))
        await session.flush()

        await self._log_action(
            session,
            match,
            admin_id,
            MatchAdminActionType.REOPEN_MATCH,
            reason,
            old_value={"status": old_status.value},
            new_value={"status": MatchStatus.SCHEDULED.value},
        )
        participants = await get_participants(session, match.id)
        record_event(
            session,
            DomainEvent(
                EventKind.MATCH_REOPENED,
                match.id,
                recipients=[p.user_id for p in accepted(participants)],
            ),
        )
        logger.info(f"Match {match.id} reopened by admin {admin_id}")
        return await load_match_dict(session, match)

    async def verify_walkover(self, session: AsyncSession, match_id: int, admin_id: int) -> Dict:
        await require_admin(session, admin_id)
        match = await get_match(session, match_id)
        result = await session.execute(
            select(MatchWalkover).where(MatchWalkover.match_id == match.id)
        )
        walkover = result.scalar_one_or_none()
        if walkover is None:
            raise NotFoundError(f"Match {match.id} has no walkover record")
        if not walkover.admin_verified:
            walkover.admin_verified = True
            walkover.verified_by = admin_id
            walkover.verified_at = utcnow()
            await self._log_action(
                session,
                match,
                admin_id,
                MatchAdminActionType.VERIFY_WALKOVER,
                None,
                new_value={"defaulting_user_id": walkover.defaulting_user_id},
            )
        return {
            "match_id": match.id,
            "reason": walkover.reason.value,
            "defaulting_user_id": walkover.defaulting_user_id,
            "winning_team": walkover.winning_team,
            "admin_verified": walkover.admin_verified,
            "verified_by": walkover.verified_by,
        }

    async def list_pending_cancellations(self, session: AsyncSession) -> List[Dict]:
        result = await session.execute(
            select(Match)
            .where(
                Match.status == MatchStatus.CANCELLED,
                Match.is_late_cancellation.is_(True),
                Match.requires_admin_review.is_(True),
            )
            .order_by(Match.cancelled_at)
        )
        return [await load_match_dict(session, m) for m in result.scalars().all()]

    async def list_matches_for_review(self, session: AsyncSession) -> List[Dict]:
        result = await session.execute(
            select(Match).where(Match.requires_admin_review.is_(True)).order_by(Match.id)
        )
        return [await load_match_dict(session, m) for m in result.scalars().all()]

    async def get_admin_actions(self, session: AsyncSession, match_id: int) -> List[Dict]:
        result = await session.execute(
            select(MatchAdminAction)
            .where(MatchAdminAction.match_id == match_id)
            .order_by(MatchAdminAction.id)
        )
        return [
            {
                "id": a.id,
                "admin_id": a.admin_id,
                "action_type": a.action_type.value,
                "reason": a.reason,
                "old_value": a.old_value,
                "new_value": a.new_value,
                "triggered_recalculation": a.triggered_recalculation,
                "created_at": a.created_at.isoformat() if a.created_at else None,
            }
            for a in result.scalars().all()
        ]

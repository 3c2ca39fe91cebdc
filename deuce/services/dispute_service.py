"""
Dispute lifecycle: raising, admin review, resolution and escalation.

A match has at most one dispute that is OPEN or UNDER_REVIEW at a time.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, case
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    DisputeAdminNote,
    DisputeCategory,
    DisputePriority,
    DisputeResolutionAction,
    DisputeStatus,
    MatchAdminAction,
    MatchAdminActionType,
    MatchDispute,
    MatchStatus,
    User,
    UserRole,
    WalkoverReason,
)
from deuce.services import scoring
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from deuce.services.events import DomainEvent, EventKind, record_event
from deuce.services.match_state import (
    TransitionKind,
    accepted,
    get_match,
    get_participants,
    reload_locked,
    require_admin,
    require_participant,
    transition,
)
from deuce.services.recalculation_service import get_set_scores, replace_set_scores
from deuce.services.serializers import format_dispute, load_match_dict
from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

UNRESOLVED_STATUSES = (DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW)

_SCORE_ACTIONS = (
    DisputeResolutionAction.UPHOLD_DISPUTER,
    DisputeResolutionAction.CUSTOM_SCORE,
    DisputeResolutionAction.AWARD_WALKOVER,
)

_PRIORITY_ORDER = case(
    (MatchDispute.priority == DisputePriority.URGENT, 0),
    (MatchDispute.priority == DisputePriority.HIGH, 1),
    (MatchDispute.priority == DisputePriority.NORMAL, 2),
    else_=3,
)


async def get_unresolved_dispute(session: AsyncSession, match_id: int) -> Optional[MatchDispute]:
    result = await session.execute(
        select(MatchDispute).where(
            MatchDispute.match_id == match_id, MatchDispute.status.in_(UNRESOLVED_STATUSES)
        )
    )
    return result.scalars().first()


async def _admin_ids(session: AsyncSession) -> List[int]:
    result = await session.execute(select(User.id).where(User.role == UserRole.ADMIN))
    return [row[0] for row in result.all()]


class DisputeService:
    """Opens, reviews and resolves disputes."""

    def __init__(self, config: EngineConfig, recalculation):
        self.config = config
        self.recalculation = recalculation

    async def raise_dispute(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        category: DisputeCategory,
        reason: str,
        disputer_score=None,
        evidence_url: Optional[str] = None,
    ) -> Dict:
        """
        Challenge a pending or completed result.

        Against a pending (ONGOING) result only the opposing side may dispute,
        and the match goes back to SCHEDULED with the pending submission
        cleared. A completed match stays completed and is flagged for review.

        Raises:
            ValidationError: If the reason or category is missing, or the counter score is malformed
            AuthorizationError: If the user may not dispute this result
            ConflictError: If the match already has an unresolved dispute or has no result
        """
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required")
        if category is None:
            raise ValidationError("A dispute category is required")

        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        disputer = require_participant(participants, user_id)

        if match.status not in (MatchStatus.ONGOING, MatchStatus.COMPLETED):
            raise ConflictError("Only submitted or completed results can be disputed")
        if await get_unresolved_dispute(session, match.id):
            raise ConflictError("This match already has an open dispute")

        counter_score = None
        if disputer_score:
            counter = scoring.coerce_set_scores(disputer_score)
            scoring.validate_admin_score(counter)
            counter_score = [s.to_dict() for s in counter]

        if match.status == MatchStatus.ONGOING:
            if match.result_submitted_by == user_id:
                raise AuthorizationError("You cannot dispute your own result submission")
            submitter = next((p for p in participants if p.user_id == match.result_submitted_by), None)
            if submitter is not None and submitter.team == disputer.team:
                raise AuthorizationError("Only the opposing team can dispute this result")
            transition(match, MatchStatus.SCHEDULED, TransitionKind.USER)
            match.result_submitted_by = None
            match.result_submitted_at = None

        match.is_disputed = True
        match.requires_admin_review = True

        dispute = MatchDispute(
            match_id=match.id,
            raised_by=user_id,
            category=category,
            reason=reason,
            disputer_score=counter_score,
            evidence_url=evidence_url,
            status=DisputeStatus.OPEN,
            priority=DisputePriority.HIGH,
        )
        session.add(dispute)
        await session.flush()

        recipients = [p.user_id for p in accepted(participants) if p.user_id != user_id]
        record_event(
            session,
            DomainEvent(
                EventKind.DISPUTE_OPENED,
                match.id,
                recipients=recipients + await _admin_ids(session),
                payload={"dispute_id": dispute.id, "category": category.value},
            ),
        )
        logger.info(f"Dispute {dispute.id} opened on match {match.id} by user {user_id}")
        return format_dispute(dispute)

    async def start_review(self, session: AsyncSession, dispute_id: int, admin_id: int) -> Dict:
        """Claim an OPEN dispute for review. Other statuses are returned unchanged."""
        await require_admin(session, admin_id)
        dispute = await self._get(session, dispute_id)
        if dispute.status == DisputeStatus.OPEN:
            dispute.status = DisputeStatus.UNDER_REVIEW
            dispute.reviewed_by = admin_id
            dispute.review_started_at = utcnow()
            await session.flush()
            logger.info(f"Dispute {dispute.id} under review by admin {admin_id}")
        return format_dispute(dispute)

    async def add_admin_note(
        self,
        session: AsyncSession,
        dispute_id: int,
        admin_id: int,
        note: str,
        is_internal_only: bool = True,
    ) -> Dict:
        await require_admin(session, admin_id)
        dispute = await self._get(session, dispute_id)
        if not note or not note.strip():
            raise ValidationError("Note cannot be empty")
        entry = DisputeAdminNote(
            dispute_id=dispute.id, admin_id=admin_id, note=note, is_internal_only=is_internal_only
        )
        session.add(entry)
        await session.flush()
        return {
            "id": entry.id,
            "dispute_id": dispute.id,
            "admin_id": admin_id,
            "note": note,
            "is_internal_only": is_internal_only,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }

    async def resolve_dispute(
        self,
        session: AsyncSession,
        dispute_id: int,
        admin_id: int,
        action: DisputeResolutionAction,
        reason: Optional[str] = None,
        final_score=None,
    ) -> Dict:
        """
        Apply an admin decision to a dispute and its match.

        Score-changing decisions on a completed match re-run the full
        recalculation; on a match whose result was still pending they
        complete it.

        Raises:
            ConflictError: If the dispute is already resolved or rejected
            ValidationError: If a score-changing action has no usable score
        """
        await require_admin(session, admin_id)
        dispute = await self._get(session, dispute_id)
        match = await get_match(session, dispute.match_id)
        dispute = await reload_locked(session, MatchDispute, dispute.id)
        if dispute.status not in UNRESOLVED_STATUSES:
            raise ConflictError("Dispute has already been resolved or rejected")

        participants = await get_participants(session, match.id)
        previous_ids = [p.user_id for p in accepted(participants)]
        was_completed = match.status == MatchStatus.COMPLETED
        old_value = {
            "dispute_status": dispute.status.value,
            "match_status": match.status.value,
            "score": [s.to_dict() for s in await get_set_scores(session, match.id)],
        }

        recalculation = None
        if action == DisputeResolutionAction.REQUEST_MORE_INFO:
            dispute.status = DisputeStatus.UNDER_REVIEW
            dispute.reviewed_by = dispute.reviewed_by or admin_id
            dispute.review_started_at = dispute.review_started_at or utcnow()
        elif action == DisputeResolutionAction.REJECT:
            dispute.status = DisputeStatus.REJECTED
            match.is_disputed = False
            match.requires_admin_review = False
        elif action == DisputeResolutionAction.UPHOLD_ORIGINAL:
            match.is_disputed = False
            match.requires_admin_review = False
            if not was_completed and match.status == MatchStatus.SCHEDULED and match.outcome:
                recalculation = await self.recalculation.finalize_match(
                    session, match, TransitionKind.ADMIN
                )
        elif action == DisputeResolutionAction.VOID_MATCH:
            transition(match, MatchStatus.VOID, TransitionKind.ADMIN)
            match.is_disputed = False
            match.requires_admin_review = False
            if was_completed:
                recalculation = await self.recalculation.recalculate_match(
                    session, match, previous_ids
                )
        else:
            set_scores = self._resolution_scores(action, dispute, match, participants, final_score)
            scoring.validate_admin_score(set_scores)
            if action == DisputeResolutionAction.AWARD_WALKOVER:
                match.is_walkover = True
                match.walkover_reason = (
                    WalkoverReason.NO_SHOW
                    if dispute.category == DisputeCategory.NO_SHOW
                    else WalkoverReason.OTHER
                )
            await replace_set_scores(session, match, set_scores)
            match.is_disputed = False
            match.requires_admin_review = False
            if was_completed:
                transition(match, MatchStatus.COMPLETED, TransitionKind.ADMIN)
                recalculation = await self.recalculation.recalculate_match(
                    session, match, previous_ids
                )
            else:
                recalculation = await self.recalculation.finalize_match(
                    session, match, TransitionKind.ADMIN
                )
            dispute.final_score = [s.to_dict() for s in set_scores]

        if action not in (
            DisputeResolutionAction.REQUEST_MORE_INFO,
            DisputeResolutionAction.REJECT,
        ):
            dispute.status = DisputeStatus.RESOLVED
        if action != DisputeResolutionAction.REQUEST_MORE_INFO:
            dispute.resolved_by = admin_id
            dispute.resolved_at = utcnow()
            dispute.resolution_action = action
            dispute.admin_resolution = reason

        session.add(
            MatchAdminAction(
                match_id=match.id,
                admin_id=admin_id,
                action_type=MatchAdminActionType.OVERRIDE_DISPUTE,
                reason=reason,
                old_value=old_value,
                new_value={
                    "dispute_id": dispute.id,
                    "resolution": action.value,
                    "final_score": dispute.final_score,
                    "match_status": match.status.value,
                },
                triggered_recalculation=action in _SCORE_ACTIONS or recalculation is not None,
            )
        )
        await session.flush()

        if action != DisputeResolutionAction.REQUEST_MORE_INFO:
            record_event(
                session,
                DomainEvent(
                    EventKind.DISPUTE_RESOLVED,
                    match.id,
                    recipients=previous_ids,
                    payload={"dispute_id": dispute.id, "resolution": action.value},
                ),
            )
        logger.info(f"Dispute {dispute.id} on match {match.id}: {action.value} by admin {admin_id}")
        return {
            "dispute": format_dispute(dispute),
            "match": await load_match_dict(session, match),
            "recalculation": recalculation.to_dict() if recalculation else None,
        }

    def _resolution_scores(self, action, dispute, match, participants, final_score):
        if action == DisputeResolutionAction.UPHOLD_DISPUTER:
            if not dispute.disputer_score:
                raise ValidationError("The disputer did not provide a score")
            return scoring.coerce_set_scores(dispute.disputer_score)
        if action == DisputeResolutionAction.CUSTOM_SCORE:
            if not final_score:
                raise ValidationError("A custom score is required")
            return scoring.coerce_set_scores(final_score)
        # Award walkover
        if final_score:
            winner = scoring.summarize(scoring.coerce_set_scores(final_score)).winner
        else:
            disputer = next((p for p in participants if p.user_id == dispute.raised_by), None)
            winner = disputer.team if disputer and disputer.team else "team1"
        if winner is None:
            raise ValidationError("A walkover needs a winning team")
        return scoring.walkover_scores(match.sport, winner)

    async def escalate_stale_disputes(
        self, session: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        """
        Bump OPEN disputes nobody picked up in time to URGENT.

        Returns:
            Number of disputes escalated
        """
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.config.dispute_escalation_hours)
        result = await session.execute(
            select(MatchDispute).where(
                MatchDispute.status == DisputeStatus.OPEN,
                MatchDispute.priority != DisputePriority.URGENT,
                MatchDispute.created_at <= cutoff,
            )
        )
        disputes = list(result.scalars().all())
        if not disputes:
            return 0
        admins = await _admin_ids(session)
        for dispute in disputes:
            dispute.priority = DisputePriority.URGENT
            record_event(
                session,
                DomainEvent(
                    EventKind.DISPUTE_ESCALATED,
                    dispute.match_id,
                    recipients=admins,
                    payload={"dispute_id": dispute.id},
                ),
            )
        await session.flush()
        logger.info(f"Escalated {len(disputes)} stale disputes")
        return len(disputes)

    async def list_disputes(
        self,
        session: AsyncSession,
        status: Optional[DisputeStatus] = None,
        priority: Optional[DisputePriority] = None,
    ) -> List[Dict]:
        query = select(MatchDispute)
        if status is not None:
            query = query.where(MatchDispute.status == status)
        if priority is not None:
            query = query.where(MatchDispute.priority == priority)
        result = await session.execute(
            query.order_by(_PRIORITY_ORDER, MatchDispute.created_at, MatchDispute.id)
        )
        return [format_dispute(d) for d in result.scalars().all()]

    async def get_dispute_details(
        self, session: AsyncSession, dispute_id: int, include_internal: bool = False
    ) -> Dict:
        dispute = await self._get(session, dispute_id)
        query = select(DisputeAdminNote).where(DisputeAdminNote.dispute_id == dispute.id)
        if not include_internal:
            query = query.where(DisputeAdminNote.is_internal_only.is_(False))
        notes = await session.execute(query.order_by(DisputeAdminNote.id))
        details = format_dispute(dispute)
        details["notes"] = [
            {"admin_id": n.admin_id, "note": n.note, "is_internal_only": n.is_internal_only}
            for n in notes.scalars().all()
        ]
        return details

    async def _get(self, session: AsyncSession, dispute_id: int) -> MatchDispute:
        dispute = await session.get(MatchDispute, dispute_id)
        if not dispute:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

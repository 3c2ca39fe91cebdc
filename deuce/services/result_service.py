"""
Result submission and consensus.

A participant submits the score, the opposing side confirms or disputes it,
and results nobody answers are approved automatically after a while.
Walkovers settle a match without play or confirmation.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    DisputeCategory,
    Division,
    Match,
    MatchStatus,
    MatchWalkover,
    WalkoverReason,
)
from deuce.services import scoring
from deuce.services.dispute_service import get_unresolved_dispute
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    MatchEngineError,
    ValidationError,
)
from deuce.services.events import DomainEvent, EventKind, record_event
from deuce.services.match_state import (
    TransitionKind,
    accepted,
    ensure_full_roster,
    get_match,
    get_participants,
    other_team,
    require_participant,
    team_members,
    transition,
)
from deuce.services.recalculation_service import replace_set_scores
from deuce.services.serializers import load_match_dict
from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_WALKOVER_STATUSES = (MatchStatus.SCHEDULED, MatchStatus.ONGOING, MatchStatus.UNFINISHED)


class ResultService:
    """Submission, confirmation, auto-approval and walkovers."""

    def __init__(self, config: EngineConfig, recalculation, penalties, disputes):
        self.config = config
        self.recalculation = recalculation
        self.penalties = penalties
        self.disputes = disputes

    async def requires_confirmation(self, session: AsyncSession, match: Match) -> bool:
        division = await session.get(Division, match.division_id)
        if division is not None and division.requires_confirmation is not None:
            return division.requires_confirmation
        return self.config.requires_confirmation

    async def submit_result(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        set_scores,
        is_unfinished: bool = False,
        comment: Optional[str] = None,
    ) -> Dict:
        """
        Record the score of a played match.

        The match waits in ONGOING for the opposing side, or in UNFINISHED when
        play was interrupted. Divisions that do not require confirmation
        complete the match straight away.

        Raises:
            AuthorizationError: If the user is not an accepted participant
            ConflictError: If a result is already pending or final or a dispute is still open
            ValidationError: If the score breaks the sport's rules or the roster is incomplete
        """
        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        require_participant(participants, user_id)

        if match.status == MatchStatus.COMPLETED:
            raise ConflictError("Match result has already been completed")
        if match.status == MatchStatus.ONGOING:
            raise ConflictError("Match result is already pending opponent confirmation")
        if match.status in (MatchStatus.CANCELLED, MatchStatus.VOID):
            raise ConflictError(f"Cannot submit a result for a {match.status.value.lower()} match")
        if await get_unresolved_dispute(session, match.id) is not None:
            raise ConflictError("Match has an open dispute; an admin must resolve it first")
        ensure_full_roster(match, participants)

        scores = scoring.coerce_set_scores(set_scores)
        if is_unfinished:
            scoring.validate_partial_score(scores)
        else:
            scoring.validate_score(match.sport, scores, match.set3_format)

        target = MatchStatus.UNFINISHED if is_unfinished else MatchStatus.ONGOING
        transition(match, target, TransitionKind.USER)

        await replace_set_scores(session, match, scores)
        if is_unfinished:
            match.outcome = None
        match.result_submitted_by = user_id
        match.result_submitted_at = utcnow()
        match.result_confirmed_by = None
        match.result_confirmed_at = None
        if comment:
            match.notes = comment
        await session.flush()

        submitter_team = next(p.team for p in participants if p.user_id == user_id)
        record_event(
            session,
            DomainEvent(
                EventKind.RESULT_SUBMITTED,
                match.id,
                recipients=team_members(participants, other_team(submitter_team)),
                payload={"submitted_by": user_id, "unfinished": is_unfinished},
            ),
        )
        logger.info(f"Result submitted for match {match.id} by user {user_id} (unfinished={is_unfinished})")

        recalculation = None
        if not is_unfinished and not await self.requires_confirmation(session, match):
            recalculation = await self.recalculation.finalize_match(
                session, match, TransitionKind.SYSTEM
            )
            record_event(
                session,
                DomainEvent(
                    EventKind.RESULT_CONFIRMED,
                    match.id,
                    recipients=[p.user_id for p in accepted(participants)],
                ),
            )

        details = await load_match_dict(session, match)
        details["recalculation"] = recalculation.to_dict() if recalculation else None
        return details

    async def confirm_result(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        confirmed: bool,
        dispute_reason: Optional[str] = None,
        dispute_category: Optional[DisputeCategory] = None,
        disputer_score=None,
        evidence_url: Optional[str] = None,
    ) -> Dict:
        """
        Confirm a pending result, or deny it and open a dispute.

        Raises:
            AuthorizationError: If the user is the submitter or on the submitter's team
            ConflictError: If no result is pending
            ValidationError: If a denial has no reason or category
        """
        if not confirmed:
            if not dispute_reason or dispute_category is None:
                raise ValidationError("Disputing a result requires a reason and a category")
            await self.disputes.raise_dispute(
                session,
                match_id,
                user_id,
                dispute_category,
                dispute_reason,
                disputer_score=disputer_score,
                evidence_url=evidence_url,
            )
            match = await get_match(session, match_id)
            details = await load_match_dict(session, match)
            details["recalculation"] = None
            return details

        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        confirmer = require_participant(participants, user_id)
        if match.status != MatchStatus.ONGOING:
            raise ConflictError("Match has no result awaiting confirmation")
        if match.result_submitted_by == user_id:
            raise AuthorizationError("You cannot confirm your own result submission")
        submitter = next((p for p in participants if p.user_id == match.result_submitted_by), None)
        if submitter is not None and submitter.team == confirmer.team:
            raise AuthorizationError("Only the opposing team can confirm this result")

        match.result_confirmed_by = user_id
        match.result_confirmed_at = utcnow()
        recalculation = await self.recalculation.finalize_match(session, match, TransitionKind.USER)

        record_event(
            session,
            DomainEvent(
                EventKind.RESULT_CONFIRMED,
                match.id,
                recipients=[p.user_id for p in accepted(participants) if p.user_id != user_id],
                payload={"confirmed_by": user_id},
            ),
        )
        logger.info(f"Result for match {match.id} confirmed by user {user_id}")
        details = await load_match_dict(session, match)
        details["recalculation"] = recalculation.to_dict()
        return details

    async def submit_walkover(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        defaulting_user_id: int,
        reason: WalkoverReason,
        reason_detail: Optional[str] = None,
    ) -> Dict:
        """
        Award the match to the reporter's side because the other side defaulted.

        Skips confirmation. A no-show also earns the defaulting player a
        disciplinary warning.

        Raises:
            AuthorizationError: If the reporter is not an accepted participant
            ValidationError: If the defaulting player is not on the opposing side
            ConflictError: If the match can no longer be settled by walkover
        """
        match = await get_match(session, match_id)
        participants = await get_participants(session, match.id)
        reporter = require_participant(participants, user_id)
        defaulting = next((p for p in participants if p.user_id == defaulting_user_id), None)
        if defaulting is None:
            raise ValidationError("The defaulting player is not a participant in this match")
        if defaulting.team == reporter.team:
            raise ValidationError("The defaulting player must be on the opposing team")
        if match.status not in _WALKOVER_STATUSES:
            raise ConflictError(f"Cannot record a walkover for a {match.status.value.lower()} match")
        ensure_full_roster(match, participants)

        winning_team = reporter.team
        await replace_set_scores(session, match, scoring.walkover_scores(match.sport, winning_team))
        match.is_walkover = True
        match.walkover_reason = reason
        match.result_submitted_by = user_id
        match.result_submitted_at = utcnow()
        session.add(
            MatchWalkover(
                match_id=match.id,
                reason=reason,
                reason_detail=reason_detail,
                defaulting_user_id=defaulting_user_id,
                winning_team=winning_team,
                reported_by=user_id,
                admin_verified=False,
            )
        )
        await session.flush()

        recalculation = await self.recalculation.finalize_match(
            session, match, TransitionKind.WALKOVER
        )

        if reason == WalkoverReason.NO_SHOW:
            await self.penalties.issue_system_warning(
                session,
                defaulting_user_id,
                match,
                f"No-show for match {match.id}",
            )

        record_event(
            session,
            DomainEvent(
                EventKind.MATCH_WALKOVER,
                match.id,
                recipients=[p.user_id for p in accepted(participants) if p.user_id != user_id],
                payload={"defaulting_user_id": defaulting_user_id, "reason": reason.value},
            ),
        )
        logger.info(
            f"Walkover recorded for match {match.id}: {winning_team} wins, "
            f"user {defaulting_user_id} defaulted ({reason.value})"
        )
        details = await load_match_dict(session, match)
        details["recalculation"] = recalculation.to_dict()
        return details

    async def auto_approve_results(
        self, session: AsyncSession, now: Optional[datetime] = None
    ) -> List[int]:
        """
        Complete pending results nobody confirmed or disputed in time.

        Returns:
            Ids of the matches approved
        """
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.config.auto_approve_hours)
        result = await session.execute(
            select(Match.id).where(
                Match.status == MatchStatus.ONGOING,
                Match.is_disputed.is_(False),
                Match.result_submitted_at <= cutoff,
            )
        )
        approved = []
        for match_id in [row[0] for row in result.all()]:
            try:
                async with session.begin_nested():
                    match = await get_match(session, match_id)
                    if match.status != MatchStatus.ONGOING or match.is_disputed:
                        continue
                    match.is_auto_approved = True
                    match.result_confirmed_at = now
                    await self.recalculation.finalize_match(session, match, TransitionKind.SYSTEM)
                participants = await get_participants(session, match_id)
                record_event(
                    session,
                    DomainEvent(
                        EventKind.RESULT_AUTO_APPROVED,
                        match_id,
                        recipients=[p.user_id for p in accepted(participants)],
                    ),
                )
                approved.append(match_id)
            except MatchEngineError as e:
                logger.warning(f"Could not auto-approve match {match_id}: {e}")

        if approved:
            logger.info(f"Auto-approved {len(approved)} match results")
        return approved

"""
Player penalties: issuing, appeals and expiry.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    Division,
    Match,
    MatchAdminAction,
    MatchAdminActionType,
    PenaltySeverity,
    PenaltyStatus,
    PenaltyType,
    PlayerPenalty,
    User,
)
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from deuce.services.events import DomainEvent, EventKind, record_event
from deuce.services.match_state import require_admin
from deuce.services.serializers import format_penalty
from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_BLOCKING_SEVERITIES = (PenaltySeverity.SUSPENSION, PenaltySeverity.PERMANENT_BAN)


async def is_suspended(
    session: AsyncSession, user_id: int, now: Optional[datetime] = None
) -> bool:
    """True while the user has an active suspension or ban. A pending appeal does not lift it."""
    now = now or utcnow()
    result = await session.execute(
        select(PlayerPenalty.id)
        .where(
            PlayerPenalty.user_id == user_id,
            PlayerPenalty.status.in_([PenaltyStatus.ACTIVE, PenaltyStatus.APPEALED]),
            PlayerPenalty.severity.in_(_BLOCKING_SEVERITIES),
            or_(PlayerPenalty.expires_at.is_(None), PlayerPenalty.expires_at > now),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


class PenaltyService:
    """Issues penalties and handles their appeal lifecycle."""

    def __init__(self, config: EngineConfig, recalculation):
        self.config = config
        self.recalculation = recalculation

    async def apply_penalty(
        self,
        session: AsyncSession,
        admin_id: int,
        user_id: int,
        penalty_type: PenaltyType,
        severity: PenaltySeverity,
        reason: str,
        related_match_id: Optional[int] = None,
        related_dispute_id: Optional[int] = None,
        points_deducted: Optional[int] = None,
        suspension_days: Optional[int] = None,
        evidence_url: Optional[str] = None,
        division_id: Optional[int] = None,
    ) -> Dict:
        """
        Issue a penalty to a player.

        Points deductions need a division, given directly or through the related match.

        Raises:
            AuthorizationError: If the issuer is not an admin
            ValidationError: If the penalty details are inconsistent
            NotFoundError: If the user, division or related match does not exist
        """
        await require_admin(session, admin_id)
        penalty = await self._issue(
            session,
            user_id=user_id,
            penalty_type=penalty_type,
            severity=severity,
            reason=reason,
            issued_by=admin_id,
            related_match_id=related_match_id,
            related_dispute_id=related_dispute_id,
            points_deducted=points_deducted,
            suspension_days=suspension_days,
            evidence_url=evidence_url,
            division_id=division_id,
        )
        if related_match_id is not None:
            session.add(
                MatchAdminAction(
                    match_id=related_match_id,
                    admin_id=admin_id,
                    action_type=MatchAdminActionType.APPLY_PENALTY,
                    reason=reason,
                    new_value={
                        "penalty_id": penalty.id,
                        "user_id": user_id,
                        "penalty_type": penalty_type.value,
                        "severity": severity.value,
                    },
                    triggered_recalculation=penalty.points_deducted > 0,
                )
            )
            await session.flush()
        await self._refresh_if_deduction(session, penalty)
        return format_penalty(penalty)

    async def issue_system_warning(
        self, session: AsyncSession, user_id: int, match: Match, reason: str
    ) -> PlayerPenalty:
        """Record an automatic warning, e.g. for a walkover no-show."""
        penalty = await self._issue(
            session,
            user_id=user_id,
            penalty_type=PenaltyType.WARNING,
            severity=PenaltySeverity.WARNING,
            reason=reason,
            issued_by=None,
            related_match_id=match.id,
        )
        record_event(
            session,
            DomainEvent(
                EventKind.DISCIPLINARY_WARNING,
                match.id,
                recipients=[user_id],
                payload={"penalty_id": penalty.id, "reason": reason},
            ),
        )
        return penalty

    async def _issue(
        self,
        session: AsyncSession,
        user_id: int,
        penalty_type: PenaltyType,
        severity: PenaltySeverity,
        reason: str,
        issued_by: Optional[int],
        related_match_id: Optional[int] = None,
        related_dispute_id: Optional[int] = None,
        points_deducted: Optional[int] = None,
        suspension_days: Optional[int] = None,
        evidence_url: Optional[str] = None,
        division_id: Optional[int] = None,
    ) -> PlayerPenalty:
        if not reason:
            raise ValidationError("A penalty requires a reason")
        if await session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        if penalty_type == PenaltyType.POINTS_DEDUCTION and not points_deducted:
            raise ValidationError("Points deduction penalties require points_deducted")
        if severity == PenaltySeverity.SUSPENSION and not suspension_days:
            raise ValidationError("Suspensions require suspension_days")

        if related_match_id is not None:
            match = await session.get(Match, related_match_id)
            if match is None:
                raise NotFoundError(f"Match {related_match_id} not found")
            if division_id is not None and division_id != match.division_id:
                raise ValidationError("Penalty division does not match the related match")
            division_id = match.division_id
        elif division_id is not None and await session.get(Division, division_id) is None:
            raise NotFoundError(f"Division {division_id} not found")
        if penalty_type == PenaltyType.POINTS_DEDUCTION and division_id is None:
            raise ValidationError("Points deductions require a division or related match")

        expires_at = None
        if severity == PenaltySeverity.SUSPENSION:
            expires_at = utcnow() + timedelta(days=suspension_days)

        penalty = PlayerPenalty(
            user_id=user_id,
            division_id=division_id,
            related_match_id=related_match_id,
            related_dispute_id=related_dispute_id,
            penalty_type=penalty_type,
            severity=severity,
            status=PenaltyStatus.ACTIVE,
            reason=reason,
            evidence_url=evidence_url,
            points_deducted=points_deducted or 0,
            suspension_days=suspension_days,
            expires_at=expires_at,
            issued_by=issued_by,
        )
        session.add(penalty)
        await session.flush()

        record_event(
            session,
            DomainEvent(
                EventKind.PENALTY_ISSUED,
                related_match_id,
                recipients=[user_id],
                payload={
                    "penalty_id": penalty.id,
                    "penalty_type": penalty_type.value,
                    "severity": severity.value,
                },
            ),
        )
        logger.info(
            f"Penalty {penalty.id} ({penalty_type.value}/{severity.value}) issued to user {user_id}"
        )
        return penalty

    async def submit_appeal(
        self, session: AsyncSession, penalty_id: int, user_id: int, reason: str
    ) -> Dict:
        """
        Raises:
            AuthorizationError: If the penalty belongs to someone else
            ConflictError: If the penalty is not active
        """
        penalty = await self._get(session, penalty_id)
        if penalty.user_id != user_id:
            raise AuthorizationError("You can only appeal your own penalties")
        if penalty.status != PenaltyStatus.ACTIVE:
            raise ConflictError("Only active penalties can be appealed")
        if not reason:
            raise ValidationError("An appeal requires a reason")

        penalty.status = PenaltyStatus.APPEALED
        penalty.appeal_reason = reason
        penalty.appeal_submitted_at = utcnow()
        await session.flush()
        logger.info(f"Penalty {penalty.id} appealed by user {user_id}")
        return format_penalty(penalty)

    async def resolve_appeal(
        self,
        session: AsyncSession,
        penalty_id: int,
        admin_id: int,
        overturn: bool,
        notes: Optional[str] = None,
    ) -> Dict:
        """Overturn the penalty or reinstate it as active."""
        await require_admin(session, admin_id)
        penalty = await self._get(session, penalty_id)
        if penalty.status != PenaltyStatus.APPEALED:
            raise ConflictError("Penalty has no pending appeal")

        penalty.status = PenaltyStatus.OVERTURNED if overturn else PenaltyStatus.ACTIVE
        penalty.appeal_resolved_by = admin_id
        penalty.appeal_resolved_at = utcnow()
        penalty.appeal_notes = notes
        await session.flush()

        record_event(
            session,
            DomainEvent(
                EventKind.APPEAL_RESOLVED,
                penalty.related_match_id,
                recipients=[penalty.user_id],
                payload={"penalty_id": penalty.id, "overturned": overturn},
            ),
        )
        await self._refresh_if_deduction(session, penalty)
        logger.info(
            f"Appeal on penalty {penalty.id} {'overturned' if overturn else 'upheld'} by admin {admin_id}"
        )
        return format_penalty(penalty)

    async def expire_penalties(self, session: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Close active penalties whose expiry has passed.

        Returns:
            Number of penalties expired
        """
        now = now or utcnow()
        result = await session.execute(
            select(PlayerPenalty).where(
                PlayerPenalty.status == PenaltyStatus.ACTIVE,
                PlayerPenalty.expires_at.is_not(None),
                PlayerPenalty.expires_at <= now,
            )
        )
        penalties = list(result.scalars().all())
        for penalty in penalties:
            penalty.status = PenaltyStatus.EXPIRED
        if penalties:
            await session.flush()
            logger.info(f"Expired {len(penalties)} penalties")
        return len(penalties)

    async def get_player_penalties(
        self, session: AsyncSession, user_id: int, active_only: bool = False
    ) -> List[Dict]:
        query = select(PlayerPenalty).where(PlayerPenalty.user_id == user_id)
        if active_only:
            query = query.where(PlayerPenalty.status == PenaltyStatus.ACTIVE)
        result = await session.execute(query.order_by(PlayerPenalty.created_at.desc(), PlayerPenalty.id.desc()))
        return [format_penalty(p) for p in result.scalars().all()]

    async def _get(self, session: AsyncSession, penalty_id: int) -> PlayerPenalty:
        penalty = await session.get(PlayerPenalty, penalty_id)
        if not penalty:
            raise NotFoundError(f"Penalty {penalty_id} not found")
        return penalty

    async def _refresh_if_deduction(self, session: AsyncSession, penalty: PlayerPenalty) -> None:
        if penalty.points_deducted and penalty.division_id is not None:
            await self.recalculation.refresh_standings(session, penalty.division_id)

"""
Dict formatting for match engine entities.
"""

from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    Match,
    MatchDispute,
    MatchInvitation,
    MatchParticipant,
    MatchScore,
    MatchTimeSlot,
    PlayerPenalty,
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _enum(value) -> Optional[str]:
    return value.value if value is not None else None


def format_participant(participant: MatchParticipant) -> Dict:
    return {
        "user_id": participant.user_id,
        "role": _enum(participant.role),
        "team": participant.team,
        "invitation_status": _enum(participant.invitation_status),
    }


def format_time_slot(slot: MatchTimeSlot) -> Dict:
    return {
        "id": slot.id,
        "proposed_by": slot.proposed_by,
        "proposed_time": _iso(slot.proposed_time),
        "location": slot.location,
        "status": _enum(slot.status),
        "votes": list(slot.votes or []),
        "vote_count": slot.vote_count,
    }


def format_invitation(invitation: MatchInvitation) -> Dict:
    return {
        "id": invitation.id,
        "match_id": invitation.match_id,
        "inviter_id": invitation.inviter_id,
        "invitee_id": invitation.invitee_id,
        "status": _enum(invitation.status),
        "message": invitation.message,
        "decline_reason": invitation.decline_reason,
        "expires_at": _iso(invitation.expires_at),
        "responded_at": _iso(invitation.responded_at),
    }


def format_score(score: MatchScore) -> Dict:
    return {
        "set_number": score.set_number,
        "team1_games": score.team1_games,
        "team2_games": score.team2_games,
        "team1_tiebreak": score.team1_tiebreak,
        "team2_tiebreak": score.team2_tiebreak,
        "tiebreak_type": score.tiebreak_type,
    }


def format_dispute(dispute: MatchDispute) -> Dict:
    return {
        "id": dispute.id,
        "match_id": dispute.match_id,
        "raised_by": dispute.raised_by,
        "category": _enum(dispute.category),
        "reason": dispute.reason,
        "disputer_score": dispute.disputer_score,
        "evidence_url": dispute.evidence_url,
        "status": _enum(dispute.status),
        "priority": _enum(dispute.priority),
        "reviewed_by": dispute.reviewed_by,
        "resolved_by": dispute.resolved_by,
        "resolution_action": _enum(dispute.resolution_action),
        "admin_resolution": dispute.admin_resolution,
        "final_score": dispute.final_score,
        "created_at": _iso(dispute.created_at),
        "resolved_at": _iso(dispute.resolved_at),
    }


def format_penalty(penalty: PlayerPenalty) -> Dict:
    return {
        "id": penalty.id,
        "user_id": penalty.user_id,
        "division_id": penalty.division_id,
        "related_match_id": penalty.related_match_id,
        "related_dispute_id": penalty.related_dispute_id,
        "penalty_type": _enum(penalty.penalty_type),
        "severity": _enum(penalty.severity),
        "status": _enum(penalty.status),
        "reason": penalty.reason,
        "points_deducted": penalty.points_deducted,
        "suspension_days": penalty.suspension_days,
        "expires_at": _iso(penalty.expires_at),
        "issued_by": penalty.issued_by,
        "appeal_reason": penalty.appeal_reason,
        "appeal_notes": penalty.appeal_notes,
        "created_at": _iso(penalty.created_at),
    }


def format_match(
    match: Match,
    participants: List[MatchParticipant],
    scores: List[MatchScore],
    time_slots: List[MatchTimeSlot],
) -> Dict:
    return {
        "id": match.id,
        "division_id": match.division_id,
        "season_id": match.season_id,
        "sport": _enum(match.sport),
        "match_type": _enum(match.match_type),
        "set3_format": _enum(match.set3_format),
        "status": _enum(match.status),
        "created_by": match.created_by,
        "scheduled_time": _iso(match.scheduled_time),
        "location": match.location,
        "venue": match.venue,
        "notes": match.notes,
        "reschedule_count": match.reschedule_count,
        "team1_score": match.team1_score,
        "team2_score": match.team2_score,
        "outcome": match.outcome,
        "result_submitted_by": match.result_submitted_by,
        "result_submitted_at": _iso(match.result_submitted_at),
        "result_confirmed_by": match.result_confirmed_by,
        "result_confirmed_at": _iso(match.result_confirmed_at),
        "is_auto_approved": match.is_auto_approved,
        "is_disputed": match.is_disputed,
        "requires_admin_review": match.requires_admin_review,
        "is_walkover": match.is_walkover,
        "walkover_reason": _enum(match.walkover_reason),
        "is_late_cancellation": match.is_late_cancellation,
        "cancelled_by": match.cancelled_by,
        "cancellation_reason": _enum(match.cancellation_reason),
        "completed_at": _iso(match.completed_at),
        "participants": [format_participant(p) for p in participants],
        "set_scores": [format_score(s) for s in scores],
        "time_slots": [format_time_slot(t) for t in time_slots],
        "created_at": _iso(match.created_at),
    }


async def load_match_dict(session: AsyncSession, match: Match) -> Dict:
    """Format a match with its participants, scores and time slots."""
    participants = await session.execute(
        select(MatchParticipant)
        .where(MatchParticipant.match_id == match.id)
        .order_by(MatchParticipant.id)
    )
    scores = await session.execute(
        select(MatchScore).where(MatchScore.match_id == match.id).order_by(MatchScore.set_number)
    )
    slots = await session.execute(
        select(MatchTimeSlot)
        .where(MatchTimeSlot.match_id == match.id)
        .order_by(MatchTimeSlot.proposed_time, MatchTimeSlot.id)
    )
    return format_match(
        match,
        list(participants.scalars().all()),
        list(scores.scalars().all()),
        list(slots.scalars().all()),
    )

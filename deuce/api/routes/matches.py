"""Match scheduling and result route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.api.dependencies import (
    engine_http_error,
    get_current_user_id,
    get_engine,
    get_engine_session,
)
from deuce.database.models import MatchStatus
from deuce.models.schemas import (
    CancelMatchRequest,
    DraftMatchUpdate,
    InvitationResponseRequest,
    JoinMatchRequest,
    MatchCreate,
    RescheduleRequest,
    ResultConfirmation,
    ResultSubmission,
    TimeSlotCreate,
    WalkoverSubmission,
)
from deuce.services.engine import MatchEngine

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Scheduling ──────────────────────────────────────────────────────────


@router.post("/api/matches")
async def create_match(
    payload: MatchCreate,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Create a match and send its invitations."""
    try:
        return await engine.scheduling.create_match(
            session,
            user_id,
            payload.division_id,
            payload.match_type,
            opponent_id=payload.opponent_id,
            partner_id=payload.partner_id,
            opponent_partner_id=payload.opponent_partner_id,
            proposed_times=payload.proposed_times,
            location=payload.location,
            venue=payload.venue,
            notes=payload.notes,
            message=payload.message,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error creating match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating match")


@router.put("/api/matches/{match_id}/draft")
async def edit_draft_match(
    match_id: int,
    payload: DraftMatchUpdate,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Re-invite players for a draft match."""
    try:
        return await engine.scheduling.edit_draft_match(
            session,
            match_id,
            user_id,
            opponent_id=payload.opponent_id,
            partner_id=payload.partner_id,
            opponent_partner_id=payload.opponent_partner_id,
            proposed_times=payload.proposed_times,
            location=payload.location,
            message=payload.message,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error editing draft match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error editing match")


@router.get("/api/matches")
async def list_my_matches(
    status: Optional[MatchStatus] = Query(None),
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Matches the acting user takes part in."""
    try:
        return await engine.scheduling.list_user_matches(session, user_id, status)
    except Exception as e:
        logger.error(f"Error listing matches for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing matches")


@router.get("/api/matches/{match_id}")
async def get_match(
    match_id: int,
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.scheduling.get_match_details(session, match_id)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error getting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting match")


@router.post("/api/matches/{match_id}/join")
async def join_match(
    match_id: int,
    payload: JoinMatchRequest,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Take an open seat on a scheduled match."""
    try:
        return await engine.scheduling.join_match(session, match_id, user_id, team=payload.team)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error joining match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error joining match")


@router.post("/api/matches/{match_id}/cancel")
async def cancel_match(
    match_id: int,
    payload: CancelMatchRequest,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.scheduling.cancel_match(
            session, match_id, user_id, payload.reason, payload.comment
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error cancelling match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error cancelling match")


# ── Invitations ─────────────────────────────────────────────────────────


@router.get("/api/invitations")
async def get_my_invitations(
    pending_only: bool = Query(True),
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.invitations.get_user_invitations(session, user_id, pending_only)
    except Exception as e:
        logger.error(f"Error getting invitations for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting invitations")


@router.post("/api/invitations/{invitation_id}/respond")
async def respond_to_invitation(
    invitation_id: int,
    payload: InvitationResponseRequest,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Accept or decline a match invitation."""
    try:
        return await engine.invitations.respond_to_invitation(
            session, invitation_id, user_id, payload.accept, payload.decline_reason
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error responding to invitation {invitation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error responding to invitation")


# ── Time slots ──────────────────────────────────────────────────────────


@router.post("/api/matches/{match_id}/time-slots")
async def propose_time_slot(
    match_id: int,
    payload: TimeSlotCreate,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.scheduling.propose_time_slot(
            session, match_id, user_id, payload.proposed_time, payload.location, payload.notes
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error proposing time slot for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error proposing time slot")


@router.post("/api/time-slots/{slot_id}/vote")
async def vote_for_time_slot(
    slot_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.scheduling.vote_for_time_slot(session, slot_id, user_id)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error voting for time slot {slot_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error voting for time slot")


@router.post("/api/time-slots/{slot_id}/confirm")
async def confirm_time_slot(
    slot_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.scheduling.confirm_time_slot(session, slot_id, user_id)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error confirming time slot {slot_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error confirming time slot")


@router.post("/api/matches/{match_id}/reschedule")
async def request_reschedule(
    match_id: int,
    payload: RescheduleRequest,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.scheduling.request_reschedule(
            session, match_id, user_id, payload.proposed_times, payload.reason
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error rescheduling match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error rescheduling match")


# ── Results ─────────────────────────────────────────────────────────────


@router.post("/api/matches/{match_id}/result")
async def submit_result(
    match_id: int,
    payload: ResultSubmission,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Submit the score of a played match."""
    try:
        return await engine.results.submit_result(
            session,
            match_id,
            user_id,
            payload.set_scores,
            is_unfinished=payload.is_unfinished,
            comment=payload.comment,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error submitting result for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting result")


@router.post("/api/matches/{match_id}/confirm")
async def confirm_result(
    match_id: int,
    payload: ResultConfirmation,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Confirm the opponent's result, or dispute it."""
    try:
        return await engine.results.confirm_result(
            session,
            match_id,
            user_id,
            payload.confirmed,
            dispute_reason=payload.dispute_reason,
            dispute_category=payload.dispute_category,
            disputer_score=payload.disputer_score,
            evidence_url=payload.evidence_url,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error confirming result for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error confirming result")


@router.post("/api/matches/{match_id}/walkover")
async def submit_walkover(
    match_id: int,
    payload: WalkoverSubmission,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.results.submit_walkover(
            session,
            match_id,
            user_id,
            payload.defaulting_user_id,
            payload.reason,
            payload.reason_detail,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error recording walkover for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error recording walkover")

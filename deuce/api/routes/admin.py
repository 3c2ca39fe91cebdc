"""Admin match intervention route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.api.dependencies import engine_http_error, get_admin_id, get_engine, get_engine_session
from deuce.models.schemas import (
    AdminParticipantsEdit,
    AdminReason,
    AdminResultEdit,
    CancellationReview,
)
from deuce.services.engine import MatchEngine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/admin/matches/{match_id}/void")
async def void_match(
    match_id: int,
    payload: AdminReason,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.admin.void_match(session, match_id, admin_id, payload.reason)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error voiding match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error voiding match")


@router.put("/api/admin/matches/{match_id}/result")
async def edit_match_result(
    match_id: int,
    payload: AdminResultEdit,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Replace a completed match's score and recalculate."""
    try:
        return await engine.admin.edit_match_result(
            session, match_id, admin_id, payload.set_scores, payload.reason
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error editing result of match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error editing match result")


@router.put("/api/admin/matches/{match_id}/participants")
async def edit_participants(
    match_id: int,
    payload: AdminParticipantsEdit,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Replace a match's roster."""
    try:
        return await engine.admin.edit_participants(
            session, match_id, admin_id, payload.participants, payload.reason
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error editing participants of match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error editing participants")


@router.post("/api/admin/matches/{match_id}/reopen")
async def reopen_match(
    match_id: int,
    payload: AdminReason,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.admin.reopen_match(session, match_id, admin_id, payload.reason)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error reopening match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error reopening match")


@router.post("/api/admin/matches/{match_id}/walkover/verify")
async def verify_walkover(
    match_id: int,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.admin.verify_walkover(session, match_id, admin_id)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error verifying walkover of match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error verifying walkover")


@router.get("/api/admin/cancellations")
async def list_pending_cancellations(
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Late cancellations waiting for review."""
    try:
        return await engine.admin.list_pending_cancellations(session)
    except Exception as e:
        logger.error(f"Error listing pending cancellations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing cancellations")


@router.post("/api/admin/matches/{match_id}/cancellation-review")
async def review_cancellation(
    match_id: int,
    payload: CancellationReview,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.admin.review_cancellation(
            session,
            match_id,
            admin_id,
            payload.approved,
            reason=payload.reason,
            apply_penalty=payload.apply_penalty,
            penalty_severity=payload.penalty_severity,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error reviewing cancellation of match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error reviewing cancellation")


@router.get("/api/admin/matches/{match_id}/actions")
async def get_admin_actions(
    match_id: int,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Audit trail of admin interventions on a match."""
    try:
        return await engine.admin.get_admin_actions(session, match_id)
    except Exception as e:
        logger.error(f"Error getting admin actions for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting admin actions")


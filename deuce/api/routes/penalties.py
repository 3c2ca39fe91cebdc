"""Penalty and appeal route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.api.dependencies import (
    engine_http_error,
    get_admin_id,
    get_current_user_id,
    get_engine,
    get_engine_session,
)
from deuce.models.schemas import AppealCreate, AppealDecision, PenaltyCreate, PenaltyResponse
from deuce.services.engine import MatchEngine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/admin/penalties", response_model=PenaltyResponse)
async def apply_penalty(
    payload: PenaltyCreate,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Penalise a player."""
    try:
        return await engine.penalties.apply_penalty(
            session,
            admin_id,
            payload.user_id,
            payload.penalty_type,
            payload.severity,
            payload.reason,
            related_match_id=payload.related_match_id,
            related_dispute_id=payload.related_dispute_id,
            points_deducted=payload.points_deducted,
            suspension_days=payload.suspension_days,
            evidence_url=payload.evidence_url,
            division_id=payload.division_id,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error applying penalty to user {payload.user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error applying penalty")


@router.get("/api/penalties", response_model=List[PenaltyResponse])
async def get_my_penalties(
    active_only: bool = Query(False),
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.penalties.get_player_penalties(session, user_id, active_only)
    except Exception as e:
        logger.error(f"Error getting penalties for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting penalties")


@router.post("/api/penalties/{penalty_id}/appeal", response_model=PenaltyResponse)
async def submit_appeal(
    penalty_id: int,
    payload: AppealCreate,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Appeal one of your own penalties."""
    try:
        return await engine.penalties.submit_appeal(session, penalty_id, user_id, payload.reason)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error appealing penalty {penalty_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting appeal")


@router.post("/api/admin/penalties/{penalty_id}/appeal", response_model=PenaltyResponse)
async def resolve_appeal(
    penalty_id: int,
    payload: AppealDecision,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.penalties.resolve_appeal(
            session, penalty_id, admin_id, payload.overturn, payload.notes
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error resolving appeal for penalty {penalty_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resolving appeal")

"""Dispute route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.api.dependencies import (
    engine_http_error,
    get_admin_id,
    get_current_user_id,
    get_engine,
    get_engine_session,
)
from deuce.database.models import DisputePriority, DisputeStatus
from deuce.models.schemas import DisputeCreate, DisputeNoteCreate, DisputeResolution
from deuce.services.engine import MatchEngine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/matches/{match_id}/disputes")
async def raise_dispute(
    match_id: int,
    payload: DisputeCreate,
    user_id: int = Depends(get_current_user_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Dispute the recorded result of a match."""
    try:
        return await engine.disputes.raise_dispute(
            session,
            match_id,
            user_id,
            payload.category,
            payload.reason,
            disputer_score=payload.disputer_score,
            evidence_url=payload.evidence_url,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error raising dispute for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error raising dispute")


@router.get("/api/admin/disputes")
async def list_disputes(
    status: Optional[DisputeStatus] = Query(None),
    priority: Optional[DisputePriority] = Query(None),
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Dispute queue, most urgent first."""
    try:
        return await engine.disputes.list_disputes(session, status, priority)
    except Exception as e:
        logger.error(f"Error listing disputes: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing disputes")


@router.get("/api/admin/disputes/{dispute_id}")
async def get_dispute(
    dispute_id: int,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.disputes.get_dispute_details(session, dispute_id, include_internal=True)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error getting dispute {dispute_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting dispute")


@router.post("/api/admin/disputes/{dispute_id}/review")
async def start_review(
    dispute_id: int,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.disputes.start_review(session, dispute_id, admin_id)
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error starting review of dispute {dispute_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error starting review")


@router.post("/api/admin/disputes/{dispute_id}/notes")
async def add_dispute_note(
    dispute_id: int,
    payload: DisputeNoteCreate,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        return await engine.disputes.add_admin_note(
            session, dispute_id, admin_id, payload.note, payload.is_internal_only
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error adding note to dispute {dispute_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error adding note")


@router.post("/api/admin/disputes/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: int,
    payload: DisputeResolution,
    admin_id: int = Depends(get_admin_id),
    engine: MatchEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_engine_session),
):
    """Apply an admin decision to a dispute."""
    try:
        return await engine.disputes.resolve_dispute(
            session,
            dispute_id,
            admin_id,
            payload.action,
            reason=payload.reason,
            final_score=payload.final_score,
        )
    except ValueError as e:
        raise await engine_http_error(e, session, engine)
    except Exception as e:
        logger.error(f"Error resolving dispute {dispute_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resolving dispute")

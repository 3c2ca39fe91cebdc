"""Standings and notification route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.api.dependencies import get_current_user_id, get_engine_session
from deuce.services import notification_service
from deuce.services.standings_service import get_division_standings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/divisions/{division_id}/standings")
async def get_standings(
    division_id: int,
    session: AsyncSession = Depends(get_engine_session),
):
    """Division table ordered by position."""
    try:
        return await get_division_standings(session, division_id)
    except Exception as e:
        logger.error(f"Error getting standings for division {division_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting standings")


@router.get("/api/notifications")
async def get_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        notifications = await notification_service.get_user_notifications(
            session, user_id, unread_only=unread_only, limit=limit
        )
        unread = await notification_service.get_unread_count(session, user_id)
        return {"notifications": notifications, "unread_count": unread}
    except Exception as e:
        logger.error(f"Error getting notifications for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting notifications")


@router.put("/api/notifications/read-all")
async def mark_all_notifications_read(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_engine_session),
):
    try:
        count = await notification_service.mark_all_as_read(session, user_id)
        return {"status": "ok", "marked": count}
    except Exception as e:
        logger.error(f"Error marking notifications read for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating notifications")

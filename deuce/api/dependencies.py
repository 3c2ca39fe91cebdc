"""
Shared FastAPI dependencies and error mapping for the match routes.
"""

import logging
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database import db
from deuce.services.engine import MatchEngine
from deuce.services.errors import AuthorizationError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> MatchEngine:
    """The engine built at startup."""
    return request.app.state.engine


async def get_engine_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session that commits on success and then delivers the events
    the request recorded. Rolls back (dropping the events) on error.
    """
    engine = get_engine(request)
    async with db.AsyncSessionLocal() as session:
        try:
            yield session
            await engine.commit(session)
        except Exception:
            await session.rollback()
            raise


async def get_current_user_id(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """Acting user. Identity comes from the gateway in front of this service."""
    return x_user_id


async def get_admin_id(x_admin_id: int = Header(..., alias="X-Admin-Id")) -> int:
    """Acting admin. The admin role itself is checked by the engine."""
    return x_admin_id


def status_code_for(error: ValueError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, AuthorizationError):
        return 403
    if isinstance(error, ConflictError):
        return 409
    return 400


async def engine_http_error(
    error: ValueError, session: AsyncSession, engine: MatchEngine
) -> HTTPException:
    """
    Translate an engine error into an HTTP error.

    Errors flagged ``preserve_changes`` (such as an invitation found expired
    while answering it) keep the state they recorded, so the session is
    committed before the error is returned.
    """
    if getattr(error, "preserve_changes", False):
        try:
            await engine.commit(session)
        except Exception as e:
            logger.error(f"Failed to commit changes before error response: {e}", exc_info=True)
    return HTTPException(status_code=status_code_for(error), detail=str(error))

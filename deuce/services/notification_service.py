"""
Notification service for match engine events.

Handles creation and retrieval of in-app notifications, and provides the
sinks the event dispatcher delivers committed domain events to.
"""

from typing import Callable, Dict, List, Optional, Protocol
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from deuce.database.models import Notification
from deuce.services.events import DomainEvent, EventKind
import logging

logger = logging.getLogger(__name__)


_TITLES = {
    EventKind.MATCH_CREATED: "Match Invitation",
    EventKind.INVITATION_ACCEPTED: "Invitation Accepted",
    EventKind.INVITATION_DECLINED: "Invitation Declined",
    EventKind.INVITATION_EXPIRED: "Invitation Expired",
    EventKind.PLAYER_JOINED: "Player Joined",
    EventKind.TIME_SLOT_PROPOSED: "New Time Proposed",
    EventKind.TIME_SLOT_CONFIRMED: "Match Time Confirmed",
    EventKind.RESCHEDULE_REQUESTED: "Reschedule Requested",
    EventKind.RESULT_SUBMITTED: "Confirm Match Result",
    EventKind.RESULT_CONFIRMED: "Match Result Confirmed",
    EventKind.RESULT_AUTO_APPROVED: "Match Result Approved",
    EventKind.DISPUTE_OPENED: "Match Result Disputed",
    EventKind.DISPUTE_ESCALATED: "Dispute Escalated",
    EventKind.DISPUTE_RESOLVED: "Dispute Resolved",
    EventKind.MATCH_CANCELLED: "Match Cancelled",
    EventKind.MATCH_WALKOVER: "Walkover Recorded",
    EventKind.MATCH_VOIDED: "Match Voided",
    EventKind.MATCH_REOPENED: "Match Reopened",
    EventKind.MATCH_RESULT_EDITED: "Match Result Updated",
    EventKind.PARTICIPANTS_UPDATED: "Match Participants Updated",
    EventKind.PENALTY_ISSUED: "Penalty Issued",
    EventKind.APPEAL_RESOLVED: "Appeal Decision",
    EventKind.DISCIPLINARY_WARNING: "Disciplinary Warning",
}


def _describe(domain_event: DomainEvent) -> str:
    if domain_event.payload.get("message"):
        return domain_event.payload["message"]
    readable = domain_event.kind.value.replace("_", " ")
    if domain_event.match_id is not None:
        return f"Match {domain_event.match_id}: {readable}"
    return readable.capitalize()


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
) -> Dict:
    """
    Create a single notification for a user.

    Raises:
        ValueError: If required fields are missing
    """
    if not user_id:
        raise ValueError("user_id is required")
    if not type:
        raise ValueError("type is required")
    if not title:
        raise ValueError("title is required")
    if not message:
        raise ValueError("message is required")

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data,
        is_read=False,
    )
    session.add(notification)
    await session.flush()
    return _format_notification(notification)


async def get_user_notifications(
    session: AsyncSession, user_id: int, unread_only: bool = False, limit: int = 50
) -> List[Dict]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await session.execute(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    )
    return [_format_notification(n) for n in result.scalars().all()]


async def get_unread_count(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
    )
    return result.scalar() or 0


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount or 0


def _format_notification(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationSink(Protocol):
    """Receives committed domain events."""

    async def notify(self, domain_event: DomainEvent) -> None:
        ...


class DatabaseNotificationSink:
    """Writes one notification row per recipient, in its own transaction."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def notify(self, domain_event: DomainEvent) -> None:
        if not domain_event.recipients:
            return
        title = _TITLES.get(domain_event.kind, "Match Update")
        message = _describe(domain_event)
        data = {"match_id": domain_event.match_id, **domain_event.payload}
        async with self.session_factory() as session:
            for user_id in sorted(set(domain_event.recipients)):
                await create_notification(
                    session, user_id, domain_event.kind.value, title, message, data
                )
            await session.commit()


class LoggingNotificationSink:
    """Logs events instead of storing them."""

    async def notify(self, domain_event: DomainEvent) -> None:
        logger.info(
            f"{domain_event.kind.value} match={domain_event.match_id} "
            f"recipients={domain_event.recipients}"
        )

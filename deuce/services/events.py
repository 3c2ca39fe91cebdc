"""
Domain events raised by match operations.

Operations record events on the session they run in. Nothing is delivered
until the surrounding transaction commits; a rollback discards them. After
commit the ``EventDispatcher`` hands each event to the notification sink.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_EVENTS_KEY = "domain_events"


class EventKind(str, enum.Enum):
    """Kinds of domain events."""

    MATCH_CREATED = "match_created"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    INVITATION_EXPIRED = "invitation_expired"
    PLAYER_JOINED = "player_joined"
    TIME_SLOT_PROPOSED = "time_slot_proposed"
    TIME_SLOT_CONFIRMED = "time_slot_confirmed"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESULT_SUBMITTED = "result_submitted"
    RESULT_CONFIRMED = "result_confirmed"
    RESULT_AUTO_APPROVED = "result_auto_approved"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_ESCALATED = "dispute_escalated"
    DISPUTE_RESOLVED = "dispute_resolved"
    MATCH_CANCELLED = "match_cancelled"
    MATCH_WALKOVER = "match_walkover"
    MATCH_VOIDED = "match_voided"
    MATCH_REOPENED = "match_reopened"
    MATCH_RESULT_EDITED = "match_result_edited"
    PARTICIPANTS_UPDATED = "participants_updated"
    PENALTY_ISSUED = "penalty_issued"
    APPEAL_RESOLVED = "appeal_resolved"
    DISCIPLINARY_WARNING = "disciplinary_warning"


@dataclass
class DomainEvent:
    """Something that happened to a match that users may want to hear about."""

    kind: EventKind
    match_id: Optional[int]
    recipients: List[int] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


def record_event(session: AsyncSession, domain_event: DomainEvent) -> None:
    """Queue an event for delivery once the session commits."""
    session.info.setdefault(_EVENTS_KEY, []).append(domain_event)


def pending_events(session: AsyncSession) -> List[DomainEvent]:
    """Events recorded on the session that have not been dispatched yet."""
    return list(session.info.get(_EVENTS_KEY, []))


def take_events(session: AsyncSession) -> List[DomainEvent]:
    """Remove and return all queued events."""
    return session.info.pop(_EVENTS_KEY, [])


@event.listens_for(Session, "after_soft_rollback")
def _discard_events_on_rollback(sync_session, previous_transaction):
    # Savepoint rollbacks keep the events of the enclosing transaction
    if previous_transaction.parent is None:
        sync_session.info.pop(_EVENTS_KEY, None)


class EventDispatcher:
    """Delivers committed events to a notification sink."""

    def __init__(self, sink):
        self.sink = sink

    async def dispatch(self, session: AsyncSession) -> int:
        """
        Deliver every queued event. Call only after a successful commit.

        Delivery failures are logged and never raised: the state change the
        event describes has already been committed.

        Returns:
            Number of events delivered successfully
        """
        delivered = 0
        for domain_event in take_events(session):
            try:
                await self.sink.notify(domain_event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Failed to deliver {domain_event.kind.value} event for match "
                    f"{domain_event.match_id}: {e}"
                )
        return delivered

"""
Match lifecycle: the legal status transitions and the shared guards every
operation runs before touching a match.
"""

import enum
import logging
from typing import Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    Match,
    MatchParticipant,
    MatchStatus,
    MatchType,
    InvitationStatus,
    User,
    UserRole,
)
from deuce.services.errors import (
    AuthorizationError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class TransitionKind(str, enum.Enum):
    """Who or what drives a status change."""

    USER = "user"
    SYSTEM = "system"
    WALKOVER = "walkover"
    ADMIN = "admin"


_USER = frozenset({TransitionKind.USER})
_SYSTEM = frozenset({TransitionKind.SYSTEM})
_ADMIN = frozenset({TransitionKind.ADMIN})
_WALKOVER = frozenset({TransitionKind.WALKOVER, TransitionKind.ADMIN})

TRANSITIONS: Dict[Tuple[MatchStatus, MatchStatus], FrozenSet[TransitionKind]] = {
    # Draft edited and invitations re-sent
    (MatchStatus.DRAFT, MatchStatus.SCHEDULED): _USER,
    # Every invitation ended without acceptance
    (MatchStatus.SCHEDULED, MatchStatus.DRAFT): _SYSTEM,
    # Result submitted, waiting for the other side
    (MatchStatus.SCHEDULED, MatchStatus.ONGOING): _USER,
    (MatchStatus.UNFINISHED, MatchStatus.ONGOING): _USER,
    (MatchStatus.SCHEDULED, MatchStatus.UNFINISHED): _USER,
    # Confirmation, auto-approval, or direct completion
    (MatchStatus.ONGOING, MatchStatus.COMPLETED): frozenset(
        {TransitionKind.USER, TransitionKind.SYSTEM, TransitionKind.WALKOVER, TransitionKind.ADMIN}
    ),
    # Opponent disputed the pending result
    (MatchStatus.ONGOING, MatchStatus.SCHEDULED): _USER,
    (MatchStatus.SCHEDULED, MatchStatus.CANCELLED): _USER,
    (MatchStatus.ONGOING, MatchStatus.CANCELLED): _USER,
    # Walkovers skip confirmation; admins may also settle a disputed match
    (MatchStatus.SCHEDULED, MatchStatus.COMPLETED): _WALKOVER,
    (MatchStatus.UNFINISHED, MatchStatus.COMPLETED): _WALKOVER,
    # Admin overrides
    (MatchStatus.COMPLETED, MatchStatus.COMPLETED): _ADMIN,
    (MatchStatus.COMPLETED, MatchStatus.VOID): _ADMIN,
    (MatchStatus.SCHEDULED, MatchStatus.VOID): _ADMIN,
    (MatchStatus.ONGOING, MatchStatus.VOID): _ADMIN,
    (MatchStatus.UNFINISHED, MatchStatus.VOID): _ADMIN,
    (MatchStatus.CANCELLED, MatchStatus.SCHEDULED): _ADMIN,
    (MatchStatus.VOID, MatchStatus.SCHEDULED): _ADMIN,
}

# Statuses a regular participant can no longer act on
CLOSED_STATUSES = frozenset({MatchStatus.COMPLETED, MatchStatus.CANCELLED, MatchStatus.VOID})

# Statuses that hold a time slot for scheduling conflict purposes
ACTIVE_STATUSES = (MatchStatus.SCHEDULED, MatchStatus.ONGOING)


def can_transition(source: MatchStatus, target: MatchStatus, kind: TransitionKind) -> bool:
    """Return True if ``kind`` may move a match from ``source`` to ``target``."""
    return kind in TRANSITIONS.get((source, target), frozenset())


def transition(match: Match, target: MatchStatus, kind: TransitionKind) -> MatchStatus:
    """
    Move a match to ``target`` or raise ``IllegalTransitionError``.

    Returns:
        The previous status
    """
    source = match.status
    if not can_transition(source, target, kind):
        raise IllegalTransitionError(source, target, kind)
    match.status = target
    logger.info(f"Match {match.id}: {source.value} -> {target.value} ({kind.value})")
    return source


def required_player_count(match_type: MatchType) -> int:
    return 4 if match_type == MatchType.DOUBLES else 2


async def get_match(session: AsyncSession, match_id: int, for_update: bool = True) -> Match:
    """
    Load a match, locking its row for the rest of the transaction.

    Raises:
        NotFoundError: If the match does not exist
    """
    query = select(Match).where(Match.id == match_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    match = result.scalar_one_or_none()
    if not match:
        raise NotFoundError(f"Match {match_id} not found")
    return match


async def reload_locked(session: AsyncSession, model, row_id: int):
    """
    Re-read a row that belongs to an already locked match.

    Rows loaded before get_match took the lock may be stale, so the copy in
    the session is overwritten with the committed state. Call it before
    making changes to the row. Returns None if the row was deleted meanwhile.
    """
    result = await session.execute(
        select(model)
        .where(model.id == row_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_participants(session: AsyncSession, match_id: int) -> List[MatchParticipant]:
    result = await session.execute(
        select(MatchParticipant)
        .where(MatchParticipant.match_id == match_id)
        .order_by(MatchParticipant.id)
    )
    return list(result.scalars().all())


def accepted(participants: List[MatchParticipant]) -> List[MatchParticipant]:
    return [p for p in participants if p.invitation_status == InvitationStatus.ACCEPTED]


def find_participant(
    participants: List[MatchParticipant], user_id: int
) -> Optional[MatchParticipant]:
    for participant in participants:
        if participant.user_id == user_id:
            return participant
    return None


def require_participant(
    participants: List[MatchParticipant], user_id: int, accepted_only: bool = True
) -> MatchParticipant:
    """
    Return the user's participant row.

    Raises:
        AuthorizationError: If the user is not an (accepted) participant
    """
    participant = find_participant(participants, user_id)
    if participant is None:
        raise AuthorizationError("You are not a participant in this match")
    if accepted_only and participant.invitation_status != InvitationStatus.ACCEPTED:
        raise AuthorizationError("Only accepted participants can perform this action")
    return participant


def ensure_full_roster(match: Match, participants: List[MatchParticipant]) -> None:
    """
    Both sides must be complete before a match can produce a result.

    Raises:
        ValidationError: If the accepted roster is short or unbalanced
    """
    needed = required_player_count(match.match_type)
    roster = accepted(participants)
    if len(roster) != needed:
        raise ValidationError(
            f"{match.match_type.value.lower().capitalize()} match requires {needed} accepted "
            f"participants, found {len(roster)}"
        )
    per_team = needed // 2
    for team in ("team1", "team2"):
        if sum(1 for p in roster if p.team == team) != per_team:
            raise ValidationError(f"{team} must have exactly {per_team} accepted player(s)")


def team_members(participants: List[MatchParticipant], team: str) -> List[int]:
    return [p.user_id for p in accepted(participants) if p.team == team]


def other_team(team: str) -> str:
    return "team2" if team == "team1" else "team1"


async def require_admin(session: AsyncSession, admin_id: int) -> User:
    """
    Raises:
        AuthorizationError: If the user does not exist or is not an admin
    """
    admin = await session.get(User, admin_id)
    if admin is None or admin.role != UserRole.ADMIN:
        raise AuthorizationError("Admin privileges required")
    return admin

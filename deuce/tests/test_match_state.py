"""
Tests for the match lifecycle transition table and roster guards.
"""

import pytest

from deuce.database.models import (
    InvitationStatus,
    Match,
    MatchParticipant,
    MatchStatus,
    MatchType,
)
from deuce.services.errors import AuthorizationError, IllegalTransitionError, ValidationError
from deuce.services.match_state import (
    TransitionKind,
    can_transition,
    ensure_full_roster,
    require_participant,
    transition,
)


def _participant(user_id, team, status=InvitationStatus.ACCEPTED):
    return MatchParticipant(user_id=user_id, team=team, invitation_status=status)


class TestTransitions:
    @pytest.mark.parametrize(
        "source,target,kind",
        [
            (MatchStatus.DRAFT, MatchStatus.SCHEDULED, TransitionKind.USER),
            (MatchStatus.SCHEDULED, MatchStatus.DRAFT, TransitionKind.SYSTEM),
            (MatchStatus.SCHEDULED, MatchStatus.ONGOING, TransitionKind.USER),
            (MatchStatus.ONGOING, MatchStatus.COMPLETED, TransitionKind.SYSTEM),
            (MatchStatus.ONGOING, MatchStatus.SCHEDULED, TransitionKind.USER),
            (MatchStatus.SCHEDULED, MatchStatus.COMPLETED, TransitionKind.WALKOVER),
            (MatchStatus.COMPLETED, MatchStatus.VOID, TransitionKind.ADMIN),
            (MatchStatus.VOID, MatchStatus.SCHEDULED, TransitionKind.ADMIN),
        ],
    )
    def test_allowed(self, source, target, kind):
        assert can_transition(source, target, kind)

    @pytest.mark.parametrize(
        "source,target,kind",
        [
            # Users cannot skip confirmation
            (MatchStatus.SCHEDULED, MatchStatus.COMPLETED, TransitionKind.USER),
            # Only the system reverts an abandoned match to draft
            (MatchStatus.SCHEDULED, MatchStatus.DRAFT, TransitionKind.USER),
            (MatchStatus.COMPLETED, MatchStatus.VOID, TransitionKind.USER),
            (MatchStatus.COMPLETED, MatchStatus.SCHEDULED, TransitionKind.ADMIN),
            (MatchStatus.CANCELLED, MatchStatus.ONGOING, TransitionKind.USER),
            (MatchStatus.DRAFT, MatchStatus.COMPLETED, TransitionKind.ADMIN),
        ],
    )
    def test_rejected(self, source, target, kind):
        assert not can_transition(source, target, kind)

    def test_transition_updates_status_and_returns_previous(self):
        match = Match(id=1, status=MatchStatus.SCHEDULED)
        previous = transition(match, MatchStatus.ONGOING, TransitionKind.USER)
        assert previous == MatchStatus.SCHEDULED
        assert match.status == MatchStatus.ONGOING

    def test_illegal_transition_leaves_status(self):
        match = Match(id=1, status=MatchStatus.CANCELLED)
        with pytest.raises(IllegalTransitionError) as exc_info:
            transition(match, MatchStatus.COMPLETED, TransitionKind.USER)
        assert match.status == MatchStatus.CANCELLED
        assert exc_info.value.source == MatchStatus.CANCELLED
        assert "CANCELLED" in str(exc_info.value)


class TestRosterGuards:
    def test_full_singles_roster(self):
        match = Match(id=1, match_type=MatchType.SINGLES)
        ensure_full_roster(match, [_participant(1, "team1"), _participant(2, "team2")])

    def test_pending_player_does_not_count(self):
        match = Match(id=1, match_type=MatchType.SINGLES)
        roster = [_participant(1, "team1"), _participant(2, "team2", InvitationStatus.PENDING)]
        with pytest.raises(ValidationError, match="requires 2 accepted"):
            ensure_full_roster(match, roster)

    def test_doubles_needs_four(self):
        match = Match(id=1, match_type=MatchType.DOUBLES)
        roster = [_participant(1, "team1"), _participant(2, "team2"), _participant(3, "team1")]
        with pytest.raises(ValidationError, match="requires 4 accepted"):
            ensure_full_roster(match, roster)

    def test_unbalanced_doubles_rejected(self):
        match = Match(id=1, match_type=MatchType.DOUBLES)
        roster = [
            _participant(1, "team1"),
            _participant(2, "team1"),
            _participant(3, "team1"),
            _participant(4, "team2"),
        ]
        with pytest.raises(ValidationError, match="exactly 2"):
            ensure_full_roster(match, roster)

    def test_require_participant(self):
        roster = [_participant(1, "team1"), _participant(2, "team2", InvitationStatus.PENDING)]
        assert require_participant(roster, 1).user_id == 1
        with pytest.raises(AuthorizationError):
            require_participant(roster, 3)
        with pytest.raises(AuthorizationError, match="accepted"):
            require_participant(roster, 2)
        assert require_participant(roster, 2, accepted_only=False).user_id == 2

"""
Tests for match creation, joining, time slot voting, rescheduling and cancellation.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from deuce.database.models import (
    CancellationReason,
    InvitationStatus,
    MatchInvitation,
    MatchStatus,
    MatchTimeSlot,
    MatchType,
    ParticipantRole,
)
from deuce.services.errors import (
    AuthorizationError,
    ConflictError,
    SchedulingConflictError,
    ValidationError,
)
from deuce.services.events import EventKind, pending_events
from deuce.tests.factories import make_user
from deuce.utils.datetime_utils import utcnow


def _by_user(details):
    return {p["user_id"]: p for p in details["participants"]}


class TestCreateMatch:
    @pytest.mark.asyncio
    async def test_singles_seats_creator_and_invites_opponent(self, db_session, match_engine, league):
        ana, ben = league.players[0], league.players[1]
        start = utcnow() + timedelta(days=3)

        details = await match_engine.scheduling.create_match(
            db_session,
            ana.id,
            league.division.id,
            MatchType.SINGLES,
            opponent_id=ben.id,
            proposed_times=[start],
            location="Court 4",
        )

        assert details["status"] == "SCHEDULED"
        seats = _by_user(details)
        assert seats[ana.id]["role"] == "CREATOR"
        assert seats[ana.id]["team"] == "team1"
        assert seats[ana.id]["invitation_status"] == "ACCEPTED"
        assert seats[ben.id]["team"] == "team2"
        assert seats[ben.id]["invitation_status"] == "PENDING"
        assert details["time_slots"][0]["votes"] == [ana.id]

        kinds = [e.kind for e in pending_events(db_session)]
        assert kinds == [EventKind.MATCH_CREATED]

    @pytest.mark.asyncio
    async def test_doubles_teams(self, db_session, match_engine, league):
        ana, ben, cara, dev = league.players[:4]

        details = await match_engine.scheduling.create_match(
            db_session,
            ana.id,
            league.division.id,
            MatchType.DOUBLES,
            opponent_id=ben.id,
            partner_id=cara.id,
            opponent_partner_id=dev.id,
        )

        seats = _by_user(details)
        assert seats[cara.id]["team"] == "team1"
        assert seats[cara.id]["role"] == ParticipantRole.PARTNER.value
        assert seats[ben.id]["team"] == "team2"
        assert seats[dev.id]["team"] == "team2"
        invitations = await db_session.execute(
            select(MatchInvitation).where(MatchInvitation.match_id == details["id"])
        )
        assert len(invitations.scalars().all()) == 3

    @pytest.mark.asyncio
    async def test_doubles_requires_partner(self, db_session, match_engine, league):
        with pytest.raises(ValidationError, match="partner"):
            await match_engine.scheduling.create_match(
                db_session,
                league.players[0].id,
                league.division.id,
                MatchType.DOUBLES,
                opponent_id=league.players[1].id,
            )

    @pytest.mark.asyncio
    async def test_duplicate_player_rejected(self, db_session, match_engine, league):
        ana = league.players[0]
        with pytest.raises(ValidationError, match="only appear once"):
            await match_engine.scheduling.create_match(
                db_session, ana.id, league.division.id, MatchType.SINGLES, opponent_id=ana.id
            )

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, db_session, match_engine, league):
        outsider = await make_user(db_session, "Out Sider")
        with pytest.raises(AuthorizationError, match="not a member"):
            await match_engine.scheduling.create_match(
                db_session,
                league.players[0].id,
                league.division.id,
                MatchType.SINGLES,
                opponent_id=outsider.id,
            )

    @pytest.mark.asyncio
    async def test_creator_conflict_within_window(self, db_session, match_engine, league, ready_match):
        start = utcnow() + timedelta(days=2)
        existing = await ready_match(start=start)

        with pytest.raises(SchedulingConflictError) as exc_info:
            await match_engine.scheduling.create_match(
                db_session,
                league.players[0].id,
                league.division.id,
                MatchType.SINGLES,
                opponent_id=league.players[4].id,
                proposed_times=[start + timedelta(hours=1)],
            )
        assert exc_info.value.conflicting_match_id == existing

    @pytest.mark.asyncio
    async def test_conflict_checked_against_first_proposal(self, db_session, match_engine, league, ready_match):
        start = utcnow() + timedelta(days=2)
        existing = await ready_match(start=start)

        with pytest.raises(SchedulingConflictError) as exc_info:
            await match_engine.scheduling.create_match(
                db_session,
                league.players[0].id,
                league.division.id,
                MatchType.SINGLES,
                opponent_id=league.players[4].id,
                proposed_times=[start + timedelta(hours=1), start - timedelta(days=1)],
            )
        assert exc_info.value.conflicting_match_id == existing

    @pytest.mark.asyncio
    async def test_outside_window_allowed(self, db_session, match_engine, league, ready_match):
        start = utcnow() + timedelta(days=2)
        await ready_match(start=start)

        details = await match_engine.scheduling.create_match(
            db_session,
            league.players[0].id,
            league.division.id,
            MatchType.SINGLES,
            opponent_id=league.players[4].id,
            proposed_times=[start + timedelta(hours=5)],
        )
        assert details["status"] == "SCHEDULED"


class TestJoinMatch:
    @pytest.mark.asyncio
    async def test_open_match_fills_team2_first(self, db_session, match_engine, league):
        ana, eli = league.players[0], league.players[4]
        details = await match_engine.scheduling.create_match(
            db_session, ana.id, league.division.id, MatchType.SINGLES
        )

        joined = await match_engine.scheduling.join_match(db_session, details["id"], eli.id)

        seat = _by_user(joined)[eli.id]
        assert seat["team"] == "team2"
        assert seat["role"] == "OPPONENT"
        assert seat["invitation_status"] == "ACCEPTED"

    @pytest.mark.asyncio
    async def test_full_match_rejected(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        with pytest.raises(ConflictError, match="already full"):
            await match_engine.scheduling.join_match(db_session, match_id, league.players[4].id)

    @pytest.mark.asyncio
    async def test_pending_invitee_holds_seat(self, db_session, match_engine, league):
        details = await match_engine.scheduling.create_match(
            db_session,
            league.players[0].id,
            league.division.id,
            MatchType.SINGLES,
            opponent_id=league.players[1].id,
        )
        with pytest.raises(ConflictError, match="already full"):
            await match_engine.scheduling.join_match(db_session, details["id"], league.players[4].id)

    @pytest.mark.asyncio
    async def test_cannot_join_twice(self, db_session, match_engine, league):
        details = await match_engine.scheduling.create_match(
            db_session, league.players[0].id, league.division.id, MatchType.DOUBLES,
            partner_id=league.players[2].id,
        )
        with pytest.raises(ConflictError, match="already a participant"):
            await match_engine.scheduling.join_match(db_session, details["id"], league.players[2].id)


class TestTimeSlots:
    @pytest.mark.asyncio
    async def test_vote_confirms_when_everyone_agrees(self, db_session, match_engine, league, ready_match):
        ana, ben = league.players[0], league.players[1]
        match_id = await ready_match()
        proposed = utcnow() + timedelta(days=5)

        slot = await match_engine.scheduling.propose_time_slot(db_session, match_id, ana.id, proposed)
        assert slot["status"] == "PROPOSED"

        confirmed = await match_engine.scheduling.vote_for_time_slot(db_session, slot["id"], ben.id)

        assert confirmed["status"] == "CONFIRMED"
        details = await match_engine.scheduling.get_match_details(db_session, match_id)
        assert details["scheduled_time"] is not None

    @pytest.mark.asyncio
    async def test_double_vote_rejected(self, db_session, match_engine, league, ready_match):
        ana = league.players[0]
        match_id = await ready_match()
        slot = await match_engine.scheduling.propose_time_slot(
            db_session, match_id, ana.id, utcnow() + timedelta(days=5)
        )

        with pytest.raises(ConflictError, match="already voted"):
            await match_engine.scheduling.vote_for_time_slot(db_session, slot["id"], ana.id)

    @pytest.mark.asyncio
    async def test_vote_keeps_votes_committed_elsewhere(self, db_session, match_engine, league, ready_match):
        ana, ben, cara = league.players[0], league.players[1], league.players[2]
        match_id = await ready_match(MatchType.DOUBLES)
        slot = await match_engine.scheduling.propose_time_slot(
            db_session, match_id, ana.id, utcnow() + timedelta(days=5)
        )
        assert (await db_session.get(MatchTimeSlot, slot["id"])).votes == [ana.id]
        # Cara's vote lands in another transaction; this session still holds the old row
        await db_session.execute(
            update(MatchTimeSlot)
            .where(MatchTimeSlot.id == slot["id"])
            .values(votes=[ana.id, cara.id], vote_count=2)
            .execution_options(synchronize_session=False)
        )

        voted = await match_engine.scheduling.vote_for_time_slot(db_session, slot["id"], ben.id)

        assert voted["votes"] == [ana.id, cara.id, ben.id]
        assert voted["vote_count"] == 3
        assert voted["status"] == "VOTED"

    @pytest.mark.asyncio
    async def test_confirm_is_idempotent_and_rejects_siblings(self, db_session, match_engine, league, ready_match):
        ana = league.players[0]
        match_id = await ready_match()
        first = await match_engine.scheduling.propose_time_slot(
            db_session, match_id, ana.id, utcnow() + timedelta(days=5)
        )
        second = await match_engine.scheduling.propose_time_slot(
            db_session, match_id, ana.id, utcnow() + timedelta(days=6)
        )

        once = await match_engine.scheduling.confirm_time_slot(db_session, first["id"], ana.id)
        twice = await match_engine.scheduling.confirm_time_slot(db_session, first["id"], ana.id)

        assert once == twice
        details = await match_engine.scheduling.get_match_details(db_session, match_id)
        statuses = {s["id"]: s["status"] for s in details["time_slots"]}
        assert statuses == {first["id"]: "CONFIRMED", second["id"]: "REJECTED"}

    @pytest.mark.asyncio
    async def test_only_creator_confirms(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        slot = await match_engine.scheduling.propose_time_slot(
            db_session, match_id, league.players[1].id, utcnow() + timedelta(days=5)
        )
        with pytest.raises(AuthorizationError):
            await match_engine.scheduling.confirm_time_slot(db_session, slot["id"], league.players[1].id)

    @pytest.mark.asyncio
    async def test_outsider_cannot_propose(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        with pytest.raises(AuthorizationError):
            await match_engine.scheduling.propose_time_slot(
                db_session, match_id, league.players[5].id, utcnow() + timedelta(days=5)
            )


class TestReschedule:
    @pytest.mark.asyncio
    async def test_reschedule_clears_time_and_counts(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match(start=utcnow() + timedelta(days=2))

        details = await match_engine.scheduling.request_reschedule(
            db_session, match_id, league.players[1].id, [utcnow() + timedelta(days=4)], "Rain"
        )

        assert details["scheduled_time"] is None
        assert details["reschedule_count"] == 1
        statuses = sorted(s["status"] for s in details["time_slots"])
        assert statuses == ["PROPOSED", "REJECTED"]

    @pytest.mark.asyncio
    async def test_reschedule_limit(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        for day in range(3):
            await match_engine.scheduling.request_reschedule(
                db_session, match_id, league.players[0].id, [utcnow() + timedelta(days=10 + day)]
            )

        with pytest.raises(ConflictError, match="rescheduled 3 times"):
            await match_engine.scheduling.request_reschedule(
                db_session, match_id, league.players[0].id, [utcnow() + timedelta(days=20)]
            )


class TestCancelMatch:
    @pytest.mark.asyncio
    async def test_early_cancellation(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match(start=utcnow() + timedelta(days=3))

        details = await match_engine.scheduling.cancel_match(
            db_session, match_id, league.players[1].id, CancellationReason.WEATHER
        )

        assert details["status"] == "CANCELLED"
        assert details["is_late_cancellation"] is False
        assert details["requires_admin_review"] is False

    @pytest.mark.asyncio
    async def test_late_cancellation_flags_review(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match(start=utcnow() + timedelta(hours=2))

        details = await match_engine.scheduling.cancel_match(
            db_session, match_id, league.players[1].id, CancellationReason.ILLNESS, "Fever"
        )

        assert details["is_late_cancellation"] is True
        assert details["requires_admin_review"] is True
        assert details["cancellation_reason"] == "ILLNESS"

    @pytest.mark.asyncio
    async def test_cancel_closes_pending_invitations(self, db_session, match_engine, league):
        details = await match_engine.scheduling.create_match(
            db_session,
            league.players[0].id,
            league.division.id,
            MatchType.SINGLES,
            opponent_id=league.players[1].id,
        )

        cancelled = await match_engine.scheduling.cancel_match(
            db_session, details["id"], league.players[0].id, CancellationReason.OTHER
        )

        assert _by_user(cancelled)[league.players[1].id]["invitation_status"] == "CANCELLED"
        invitation = (
            await db_session.execute(
                select(MatchInvitation).where(MatchInvitation.match_id == details["id"])
            )
        ).scalar_one()
        assert invitation.status == InvitationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cannot_cancel_twice(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        await match_engine.scheduling.cancel_match(
            db_session, match_id, league.players[0].id, CancellationReason.OTHER
        )
        with pytest.raises(ConflictError, match="already cancelled"):
            await match_engine.scheduling.cancel_match(
                db_session, match_id, league.players[0].id, CancellationReason.OTHER
            )


@pytest.mark.asyncio
async def test_list_user_matches_filters_status(db_session, match_engine, league, ready_match):
    first = await ready_match()
    second = await ready_match(players=[league.players[0], league.players[4]])
    await match_engine.scheduling.cancel_match(
        db_session, second, league.players[0].id, CancellationReason.OTHER
    )

    everything = await match_engine.scheduling.list_user_matches(db_session, league.players[0].id)
    scheduled = await match_engine.scheduling.list_user_matches(
        db_session, league.players[0].id, MatchStatus.SCHEDULED
    )

    assert {m["id"] for m in everything} == {first, second}
    assert [m["id"] for m in scheduled] == [first]

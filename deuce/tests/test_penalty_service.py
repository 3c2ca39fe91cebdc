"""
Tests for penalties, appeals, expiry and suspensions.
"""

from datetime import timedelta

import pytest

from deuce.database.models import MatchType, PenaltySeverity, PenaltyType
from deuce.services.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from deuce.services.penalty_service import is_suspended
from deuce.services.standings_service import get_division_standings
from deuce.tests.factories import STRAIGHT_SETS
from deuce.utils.datetime_utils import utcnow


async def _completed(match_engine, session, league, ready_match):
    match_id = await ready_match()
    await match_engine.results.submit_result(session, match_id, league.players[0].id, STRAIGHT_SETS)
    await match_engine.results.confirm_result(session, match_id, league.players[1].id, True)
    return match_id


async def _suspend(match_engine, session, league, user_id, days=7):
    return await match_engine.penalties.apply_penalty(
        session,
        league.admin.id,
        user_id,
        PenaltyType.SUSPENSION,
        PenaltySeverity.SUSPENSION,
        "Abusive conduct",
        suspension_days=days,
    )


class TestApplyPenalty:
    @pytest.mark.asyncio
    async def test_deduction_lowers_standings(self, db_session, match_engine, league, ready_match):
        ana, ben = league.players[0], league.players[1]
        match_id = await _completed(match_engine, db_session, league, ready_match)

        penalty = await match_engine.penalties.apply_penalty(
            db_session,
            league.admin.id,
            ana.id,
            PenaltyType.POINTS_DEDUCTION,
            PenaltySeverity.POINTS_DEDUCTION,
            "Unregistered racket",
            related_match_id=match_id,
            points_deducted=5,
        )

        assert penalty["division_id"] == league.division.id
        assert penalty["status"] == "ACTIVE"
        standings = await get_division_standings(db_session, league.division.id)
        assert [(s["user_id"], s["points"], s["points_deducted"]) for s in standings] == [
            (ben.id, 1, 0),
            (ana.id, 0, 5),
        ]
        action = (await match_engine.admin.get_admin_actions(db_session, match_id))[-1]
        assert action["action_type"] == "APPLY_PENALTY"
        assert action["new_value"]["penalty_id"] == penalty["id"]

    @pytest.mark.asyncio
    async def test_requires_admin(self, db_session, match_engine, league):
        with pytest.raises(AuthorizationError):
            await match_engine.penalties.apply_penalty(
                db_session,
                league.players[0].id,
                league.players[1].id,
                PenaltyType.WARNING,
                PenaltySeverity.WARNING,
                "Not allowed",
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "penalty_type,severity,message",
        [
            (PenaltyType.POINTS_DEDUCTION, PenaltySeverity.POINTS_DEDUCTION, "points_deducted"),
            (PenaltyType.SUSPENSION, PenaltySeverity.SUSPENSION, "suspension_days"),
        ],
    )
    async def test_missing_details_rejected(
        self, db_session, match_engine, league, penalty_type, severity, message
    ):
        with pytest.raises(ValidationError, match=message):
            await match_engine.penalties.apply_penalty(
                db_session, league.admin.id, league.players[0].id, penalty_type, severity, "Missing"
            )

    @pytest.mark.asyncio
    async def test_division_deduction_without_match(self, db_session, match_engine, league, ready_match):
        ana, ben = league.players[0], league.players[1]
        await _completed(match_engine, db_session, league, ready_match)

        penalty = await match_engine.penalties.apply_penalty(
            db_session,
            league.admin.id,
            ana.id,
            PenaltyType.POINTS_DEDUCTION,
            PenaltySeverity.POINTS_DEDUCTION,
            "Missed the season meeting",
            points_deducted=3,
            division_id=league.division.id,
        )

        assert penalty["division_id"] == league.division.id
        assert penalty["related_match_id"] is None
        standings = await get_division_standings(db_session, league.division.id)
        assert [(s["user_id"], s["points"], s["points_deducted"]) for s in standings] == [
            (ana.id, 2, 3),
            (ben.id, 1, 0),
        ]

    @pytest.mark.asyncio
    async def test_deduction_needs_division(self, db_session, match_engine, league):
        with pytest.raises(ValidationError, match="division or related match"):
            await match_engine.penalties.apply_penalty(
                db_session,
                league.admin.id,
                league.players[0].id,
                PenaltyType.POINTS_DEDUCTION,
                PenaltySeverity.POINTS_DEDUCTION,
                "No division given",
                points_deducted=2,
            )

    @pytest.mark.asyncio
    async def test_unknown_match_rejected(self, db_session, match_engine, league):
        with pytest.raises(NotFoundError):
            await match_engine.penalties.apply_penalty(
                db_session,
                league.admin.id,
                league.players[0].id,
                PenaltyType.WARNING,
                PenaltySeverity.WARNING,
                "Ghost match",
                related_match_id=9999,
            )


class TestAppeals:
    @pytest.mark.asyncio
    async def test_overturned_deduction_restores_points(self, db_session, match_engine, league, ready_match):
        ana = league.players[0]
        match_id = await _completed(match_engine, db_session, league, ready_match)
        penalty = await match_engine.penalties.apply_penalty(
            db_session,
            league.admin.id,
            ana.id,
            PenaltyType.POINTS_DEDUCTION,
            PenaltySeverity.POINTS_DEDUCTION,
            "Late arrival",
            related_match_id=match_id,
            points_deducted=2,
        )

        appealed = await match_engine.penalties.submit_appeal(
            db_session, penalty["id"], ana.id, "Traffic accident on the way"
        )
        assert appealed["status"] == "APPEALED"
        # Deductions keep applying while the appeal is open
        standings = {s["user_id"]: s for s in await get_division_standings(db_session, league.division.id)}
        assert standings[ana.id]["points"] == 3

        resolved = await match_engine.penalties.resolve_appeal(
            db_session, penalty["id"], league.admin.id, True, "Police report provided"
        )

        assert resolved["status"] == "OVERTURNED"
        assert resolved["appeal_notes"] == "Police report provided"
        standings = {s["user_id"]: s for s in await get_division_standings(db_session, league.division.id)}
        assert standings[ana.id]["points"] == 5
        assert standings[ana.id]["points_deducted"] == 0

    @pytest.mark.asyncio
    async def test_upheld_appeal_reinstates_penalty(self, db_session, match_engine, league):
        ben = league.players[1]
        penalty = await _suspend(match_engine, db_session, league, ben.id)
        await match_engine.penalties.submit_appeal(db_session, penalty["id"], ben.id, "Misunderstanding")

        resolved = await match_engine.penalties.resolve_appeal(db_session, penalty["id"], league.admin.id, False)

        assert resolved["status"] == "ACTIVE"
        with pytest.raises(ConflictError, match="no pending appeal"):
            await match_engine.penalties.resolve_appeal(db_session, penalty["id"], league.admin.id, True)

    @pytest.mark.asyncio
    async def test_only_owner_can_appeal(self, db_session, match_engine, league):
        penalty = await _suspend(match_engine, db_session, league, league.players[1].id)
        with pytest.raises(AuthorizationError):
            await match_engine.penalties.submit_appeal(
                db_session, penalty["id"], league.players[0].id, "On Ben's behalf"
            )

    @pytest.mark.asyncio
    async def test_appeal_only_once(self, db_session, match_engine, league):
        ben = league.players[1]
        penalty = await _suspend(match_engine, db_session, league, ben.id)
        await match_engine.penalties.submit_appeal(db_session, penalty["id"], ben.id, "First")
        with pytest.raises(ConflictError):
            await match_engine.penalties.submit_appeal(db_session, penalty["id"], ben.id, "Second")


class TestSuspensions:
    @pytest.mark.asyncio
    async def test_suspended_player_cannot_join(self, db_session, match_engine, league):
        ana, eli = league.players[0], league.players[4]
        details = await match_engine.scheduling.create_match(
            db_session, ana.id, league.division.id, MatchType.SINGLES
        )
        await _suspend(match_engine, db_session, league, eli.id)

        assert await is_suspended(db_session, eli.id)
        with pytest.raises(AuthorizationError, match="Suspended"):
            await match_engine.scheduling.join_match(db_session, details["id"], eli.id)

    @pytest.mark.asyncio
    async def test_appeal_does_not_lift_suspension(self, db_session, match_engine, league):
        ana, ben = league.players[0], league.players[1]
        penalty = await _suspend(match_engine, db_session, league, ana.id)

        await match_engine.penalties.submit_appeal(db_session, penalty["id"], ana.id, "I was not there")

        assert await is_suspended(db_session, ana.id)
        with pytest.raises(AuthorizationError, match="Suspended"):
            await match_engine.scheduling.create_match(
                db_session, ana.id, league.division.id, MatchType.SINGLES, opponent_id=ben.id
            )

    @pytest.mark.asyncio
    async def test_suspension_lapses(self, db_session, match_engine, league):
        eli = league.players[4]
        await _suspend(match_engine, db_session, league, eli.id, days=3)
        later = utcnow() + timedelta(days=4)

        assert not await is_suspended(db_session, eli.id, now=later)
        assert await match_engine.penalties.expire_penalties(db_session) == 0
        assert await match_engine.penalties.expire_penalties(db_session, now=later) == 1

        penalties = await match_engine.penalties.get_player_penalties(db_session, eli.id)
        assert penalties[0]["status"] == "EXPIRED"
        assert await match_engine.penalties.get_player_penalties(db_session, eli.id, active_only=True) == []

    @pytest.mark.asyncio
    async def test_warning_does_not_suspend(self, db_session, match_engine, league):
        await match_engine.penalties.apply_penalty(
            db_session,
            league.admin.id,
            league.players[0].id,
            PenaltyType.WARNING,
            PenaltySeverity.WARNING,
            "Language",
        )
        assert not await is_suspended(db_session, league.players[0].id)

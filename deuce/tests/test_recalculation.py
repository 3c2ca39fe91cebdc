"""
Tests for ratings, best-N selection, standings and the recalculation outbox.
"""

import pytest
from sqlalchemy import func, select

from deuce.database.models import (
    MatchType,
    PlayerRating,
    RatingHistory,
    RecalculationJob,
    RecalculationJobStatus,
    RecalculationStep,
)
from deuce.services.engine import MatchEngine
from deuce.services.match_state import get_match
from deuce.services.membership_service import DivisionMembershipOracle
from deuce.services.notification_service import LoggingNotificationSink
from deuce.services.rating_service import EloRatingEngine, expected_score
from deuce.services.standings_service import (
    BestNResultsEngine,
    MatchPointsStandingsEngine,
    get_division_standings,
)
from deuce.tests.factories import STRAIGHT_SETS, TEAM2_STRAIGHT_SETS, make_division


class FlakyRatingEngine(EloRatingEngine):
    """Fails to apply ratings until told to recover."""

    def __init__(self, config):
        super().__init__(config)
        self.broken = True

    async def apply_match(self, session, match):
        if self.broken:
            raise RuntimeError("rating service unavailable")
        return await super().apply_match(session, match)


def _engine_with(config, rating_engine):
    return MatchEngine(
        config=config,
        membership=DivisionMembershipOracle(),
        rating_engine=rating_engine,
        standings_engine=MatchPointsStandingsEngine(),
        best_n_engine=BestNResultsEngine(config),
        notification_sink=LoggingNotificationSink(),
    )


async def _ratings(session):
    result = await session.execute(select(PlayerRating))
    return {r.user_id: (r.rating, r.rating_deviation, r.matches_played) for r in result.scalars().all()}


async def _history(session, match_id):
    result = await session.execute(select(RatingHistory).where(RatingHistory.match_id == match_id))
    return {
        h.user_id: (h.rating_before, h.rating_change, h.rating_after, h.deviation_after)
        for h in result.scalars().all()
    }


async def _play(engine, session, league, match_id, scores=STRAIGHT_SETS):
    await engine.results.submit_result(session, match_id, league.players[0].id, scores)
    return await engine.results.confirm_result(session, match_id, league.players[1].id, True)


def test_expected_score_is_symmetric():
    assert expected_score(1500, 1500) == pytest.approx(0.5)
    assert expected_score(1600, 1400) + expected_score(1400, 1600) == pytest.approx(1.0)


class TestRatings:
    @pytest.mark.asyncio
    async def test_apply_is_idempotent(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        await _play(match_engine, db_session, league, match_id)
        before = await _ratings(db_session)

        match = await get_match(db_session, match_id)
        assert await match_engine.recalculation.rating_engine.apply_match(db_session, match) == 0
        assert await _ratings(db_session) == before

    @pytest.mark.asyncio
    async def test_reverse_restores_previous_values(self, db_session, match_engine, league, ready_match):
        first = await ready_match()
        await _play(match_engine, db_session, league, first)
        after_first = await _ratings(db_session)

        second = await ready_match()
        await _play(match_engine, db_session, league, second, TEAM2_STRAIGHT_SETS)

        reversed_count = await match_engine.recalculation.rating_engine.reverse_match(db_session, second)

        assert reversed_count == 2
        restored = await _ratings(db_session)
        for user_id, (rating, deviation, played) in after_first.items():
            assert restored[user_id][0] == pytest.approx(rating)
            assert restored[user_id][1] == pytest.approx(deviation)
            assert restored[user_id][2] == played
        history = await db_session.execute(
            select(func.count(RatingHistory.id)).where(RatingHistory.match_id == second)
        )
        assert history.scalar() == 0

    @pytest.mark.asyncio
    async def test_reverse_then_reapply_reproduces_history(self, db_session, match_engine, league, ready_match):
        earlier = await ready_match()
        await _play(match_engine, db_session, league, earlier)
        match_id = await ready_match(MatchType.DOUBLES)
        await _play(match_engine, db_session, league, match_id, TEAM2_STRAIGHT_SETS)
        original = await _history(db_session, match_id)
        ratings_before = await _ratings(db_session)
        rating_engine = match_engine.recalculation.rating_engine

        assert await rating_engine.reverse_match(db_session, match_id) == 4
        match = await get_match(db_session, match_id)
        assert await rating_engine.apply_match(db_session, match) == 4

        assert len(original) == 4
        assert await _history(db_session, match_id) == original
        assert await _ratings(db_session) == ratings_before

    @pytest.mark.asyncio
    async def test_doubles_team_shares_change(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match(MatchType.DOUBLES)
        await match_engine.results.submit_result(db_session, match_id, league.players[0].id, STRAIGHT_SETS)
        await match_engine.results.confirm_result(db_session, match_id, league.players[3].id, True)

        ratings = await _ratings(db_session)
        ana, ben, cara, dev = (p.id for p in league.players[:4])
        assert ratings[ana][0] == pytest.approx(ratings[cara][0])
        assert ratings[ben][0] == pytest.approx(ratings[dev][0])
        assert ratings[ana][0] - 1500 == pytest.approx(1500 - ratings[ben][0])


class TestBestN:
    @pytest.mark.asyncio
    async def test_only_best_results_count(self, db_session, match_engine, league, ready_match):
        division = await make_division(db_session, league.players, best_n=1)
        ana, ben = league.players[0], league.players[1]
        loss = await ready_match(division=division)
        await _play(match_engine, db_session, league, loss, TEAM2_STRAIGHT_SETS)
        win = await ready_match(division=division)
        await _play(match_engine, db_session, league, win)

        standings = {s["user_id"]: s for s in await get_division_standings(db_session, division.id)}

        # Ana's win (5 points) is the single counted result; her loss still shows as played
        assert standings[ana.id]["points"] == 5
        assert standings[ana.id]["matches_played"] == 2
        assert standings[ana.id]["wins"] == 1
        assert standings[ben.id]["points"] == 5


class TestCascade:
    @pytest.mark.asyncio
    async def test_failed_step_is_queued_and_retried(self, db_session, engine_config, league, ready_match):
        rating_engine = FlakyRatingEngine(engine_config)
        engine = _engine_with(engine_config, rating_engine)
        match_id = await ready_match()
        await engine.results.submit_result(db_session, match_id, league.players[0].id, STRAIGHT_SETS)

        details = await engine.results.confirm_result(db_session, match_id, league.players[1].id, True)

        # The match completes and the other steps still run
        assert details["status"] == "COMPLETED"
        assert details["recalculation"]["failed_steps"] == ["ratings"]
        assert details["recalculation"]["standings_recalculated"] is True
        assert len(await get_division_standings(db_session, league.division.id)) == 2
        assert await _ratings(db_session) == {}

        job = (await db_session.execute(select(RecalculationJob))).scalar_one()
        assert job.step == RecalculationStep.RATINGS
        assert job.match_id == match_id

        assert await engine.recalculation.process_pending_jobs(db_session) == 0
        assert job.status == RecalculationJobStatus.PENDING
        assert job.attempts == 1
        assert "unavailable" in job.error_message

        rating_engine.broken = False
        assert await engine.recalculation.process_pending_jobs(db_session) == 1
        assert job.status == RecalculationJobStatus.COMPLETED
        assert len(await _ratings(db_session)) == 2

    @pytest.mark.asyncio
    async def test_job_gives_up_after_max_attempts(self, db_session, engine_config, league, ready_match):
        config = engine_config.with_overrides(recalculation_max_attempts=2)
        engine = _engine_with(config, FlakyRatingEngine(config))
        match_id = await ready_match()
        await engine.results.submit_result(db_session, match_id, league.players[0].id, STRAIGHT_SETS)
        await engine.results.confirm_result(db_session, match_id, league.players[1].id, True)

        await engine.recalculation.process_pending_jobs(db_session)
        await engine.recalculation.process_pending_jobs(db_session)

        job = (await db_session.execute(select(RecalculationJob))).scalar_one()
        assert job.status == RecalculationJobStatus.FAILED
        assert await engine.recalculation.process_pending_jobs(db_session) == 0

    @pytest.mark.asyncio
    async def test_refresh_standings(self, db_session, match_engine, league, ready_match):
        match_id = await ready_match()
        await _play(match_engine, db_session, league, match_id)

        result = await match_engine.recalculation.refresh_standings(db_session, league.division.id)

        assert result.standings_recalculated is True
        assert result.succeeded

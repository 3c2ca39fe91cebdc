"""
Recalculation of data derived from match results.

A completed (or edited, or voided) match changes three derived datasets:
player ratings, each player's best-N counted results, and the division
standings. The per-player result rows and the rating reversal are part of
the caller's transaction. Each derived step then runs in its own savepoint:
a failing step is rolled back on its own, reported in the result, and
queued as a ``RecalculationJob`` for the maintenance worker to retry.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    Match,
    MatchResult,
    MatchScore,
    MatchStatus,
    RecalculationJob,
    RecalculationJobStatus,
    RecalculationStep,
)
from deuce.services import scoring
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import CascadeStepError
from deuce.services.match_state import (
    TransitionKind,
    accepted,
    ensure_full_roster,
    get_participants,
    transition,
)
from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RecalculationResult:
    """What a recalculation touched."""

    ratings_reversed: int = 0
    ratings_recalculated: int = 0
    standings_recalculated: bool = False
    best_n_recalculated: int = 0
    affected_player_count: int = 0
    errors: List[CascadeStepError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "ratings_reversed": self.ratings_reversed,
            "ratings_recalculated": self.ratings_recalculated,
            "standings_recalculated": self.standings_recalculated,
            "best_n_recalculated": self.best_n_recalculated,
            "affected_player_count": self.affected_player_count,
            "failed_steps": [e.step for e in self.errors],
        }


async def get_set_scores(session: AsyncSession, match_id: int) -> List[scoring.SetScore]:
    result = await session.execute(
        select(MatchScore).where(MatchScore.match_id == match_id).order_by(MatchScore.set_number)
    )
    return [
        scoring.SetScore(
            set_number=s.set_number,
            team1_games=s.team1_games,
            team2_games=s.team2_games,
            team1_tiebreak=s.team1_tiebreak,
            team2_tiebreak=s.team2_tiebreak,
            tiebreak_type=s.tiebreak_type,
        )
        for s in result.scalars().all()
    ]


async def replace_set_scores(
    session: AsyncSession, match: Match, set_scores: List[scoring.SetScore]
) -> scoring.ScoreSummary:
    """Swap the stored score lines and write sets won and the winner onto the match."""
    await session.execute(delete(MatchScore).where(MatchScore.match_id == match.id))
    for score in set_scores:
        session.add(
            MatchScore(
                match_id=match.id,
                set_number=score.set_number,
                team1_games=score.team1_games,
                team2_games=score.team2_games,
                team1_tiebreak=score.team1_tiebreak,
                team2_tiebreak=score.team2_tiebreak,
                tiebreak_type=score.tiebreak_type,
            )
        )
    summary = scoring.summarize(set_scores, match.set3_format, match.sport)
    match.team1_score = summary.team1_sets
    match.team2_score = summary.team2_sets
    match.outcome = summary.winner
    await session.flush()
    return summary


class RecalculationService:
    """Keeps result rows, ratings, best-N and standings in step with matches."""

    def __init__(self, config: EngineConfig, rating_engine, standings_engine, best_n_engine):
        self.config = config
        self.rating_engine = rating_engine
        self.standings_engine = standings_engine
        self.best_n_engine = best_n_engine

    async def build_match_results(self, session: AsyncSession, match: Match) -> List[int]:
        """
        Replace the match's per-player result rows.

        Only COMPLETED matches have result rows; for any other status the
        existing rows are just removed.

        Returns:
            User ids that received a result row
        """
        await session.execute(delete(MatchResult).where(MatchResult.match_id == match.id))
        if match.status != MatchStatus.COMPLETED or match.outcome not in ("team1", "team2"):
            await session.flush()
            return []

        summary = scoring.summarize(
            await get_set_scores(session, match.id), match.set3_format, match.sport
        )
        per_team = {
            "team1": (summary.team1_sets, summary.team2_sets, summary.team1_games, summary.team2_games),
            "team2": (summary.team2_sets, summary.team1_sets, summary.team2_games, summary.team1_games),
        }
        played_at = match.completed_at or match.scheduled_time or utcnow()

        user_ids = []
        for participant in accepted(await get_participants(session, match.id)):
            if participant.team not in per_team:
                continue
            sets_won, sets_lost, games_won, games_lost = per_team[participant.team]
            is_win = match.outcome == participant.team
            session.add(
                MatchResult(
                    match_id=match.id,
                    division_id=match.division_id,
                    season_id=match.season_id,
                    user_id=participant.user_id,
                    team=participant.team,
                    is_win=is_win,
                    sets_won=sets_won,
                    sets_lost=sets_lost,
                    games_won=games_won,
                    games_lost=games_lost,
                    match_points=scoring.match_points(is_win, sets_won, match.is_walkover),
                    is_walkover=match.is_walkover,
                    played_at=played_at,
                )
            )
            user_ids.append(participant.user_id)
        await session.flush()
        return user_ids

    async def finalize_match(
        self, session: AsyncSession, match: Match, kind: TransitionKind
    ) -> RecalculationResult:
        """
        Move a match to COMPLETED and derive its results.

        Raises:
            ValidationError: If either side is short of accepted players
            IllegalTransitionError: If ``kind`` may not complete the match from its status
        """
        ensure_full_roster(match, await get_participants(session, match.id))
        transition(match, MatchStatus.COMPLETED, kind)
        match.completed_at = utcnow()
        await session.flush()
        return await self.process_completion(session, match)

    async def process_completion(self, session: AsyncSession, match: Match) -> RecalculationResult:
        """Derive everything a freshly completed match feeds into."""
        user_ids = await self.build_match_results(session, match)
        result = RecalculationResult(affected_player_count=len(user_ids))
        await self._derive(session, match, user_ids, result)
        return result

    async def recalculate_match(
        self,
        session: AsyncSession,
        match: Match,
        previous_user_ids: Iterable[int] = (),
    ) -> RecalculationResult:
        """
        Re-derive a match after its result, roster or status changed.

        Reverses existing rating effects first, then rebuilds result rows for
        the match as it now stands and re-runs the derived steps for every
        player who was or is on it.
        """
        result = RecalculationResult()
        result.ratings_reversed = await self.rating_engine.reverse_match(session, match.id)
        current_ids = await self.build_match_results(session, match)
        affected = sorted(set(previous_user_ids) | set(current_ids))
        result.affected_player_count = len(affected)
        await self._derive(session, match, affected, result)
        logger.info(f"Recalculated match {match.id}: {result.to_dict()}")
        return result

    async def refresh_standings(
        self, session: AsyncSession, division_id: int
    ) -> RecalculationResult:
        """Rebuild one division's standings outside any match change."""
        result = RecalculationResult()
        written = await self._run_step(
            session,
            RecalculationStep.STANDINGS,
            lambda: self.standings_engine.recalculate(session, division_id),
            match_id=None,
            division_id=division_id,
            result=result,
        )
        result.standings_recalculated = written is not None
        return result

    async def _derive(
        self,
        session: AsyncSession,
        match: Match,
        user_ids: Iterable[int],
        result: RecalculationResult,
    ) -> None:
        if match.status == MatchStatus.COMPLETED:
            rated = await self._run_step(
                session,
                RecalculationStep.RATINGS,
                lambda: self.rating_engine.apply_match(session, match),
                match_id=match.id,
                division_id=match.division_id,
                result=result,
            )
            result.ratings_recalculated = rated or 0

        for user_id in user_ids:
            counted = await self._run_step(
                session,
                RecalculationStep.BEST_N,
                lambda user_id=user_id: self.best_n_engine.recalculate_player(
                    session, match.division_id, user_id
                ),
                match_id=match.id,
                division_id=match.division_id,
                user_id=user_id,
                result=result,
            )
            if counted is not None:
                result.best_n_recalculated += 1

        standings = await self._run_step(
            session,
            RecalculationStep.STANDINGS,
            lambda: self.standings_engine.recalculate(session, match.division_id),
            match_id=match.id,
            division_id=match.division_id,
            result=result,
        )
        result.standings_recalculated = standings is not None

    async def _run_step(
        self,
        session: AsyncSession,
        step: RecalculationStep,
        action: Callable[[], Awaitable],
        match_id: Optional[int],
        division_id: Optional[int],
        result: RecalculationResult,
        user_id: Optional[int] = None,
    ):
        try:
            async with session.begin_nested():
                return await action()
        except Exception as e:
            error = CascadeStepError(step.value, match_id, e)
            logger.error(str(error), exc_info=True)
            result.errors.append(error)
            session.add(
                RecalculationJob(
                    step=step, match_id=match_id, division_id=division_id, user_id=user_id
                )
            )
            await session.flush()
            return None

    async def process_pending_jobs(self, session: AsyncSession, limit: int = 50) -> int:
        """
        Retry queued derived-data steps.

        Returns:
            Number of jobs completed in this pass
        """
        jobs = await session.execute(
            select(RecalculationJob)
            .where(RecalculationJob.status == RecalculationJobStatus.PENDING)
            .order_by(RecalculationJob.id)
            .limit(limit)
        )
        completed = 0
        for job in jobs.scalars().all():
            job.attempts += 1
            try:
                async with session.begin_nested():
                    await self._run_job(session, job)
                job.status = RecalculationJobStatus.COMPLETED
                job.completed_at = utcnow()
                job.error_message = None
                completed += 1
            except Exception as e:
                job.error_message = str(e)
                if job.attempts >= self.config.recalculation_max_attempts:
                    job.status = RecalculationJobStatus.FAILED
                    logger.error(f"Recalculation job {job.id} ({job.step.value}) gave up: {e}")
                else:
                    logger.warning(f"Recalculation job {job.id} ({job.step.value}) failed: {e}")
            await session.flush()
        return completed

    async def _run_job(self, session: AsyncSession, job: RecalculationJob) -> None:
        if job.step == RecalculationStep.RATINGS:
            match = await session.get(Match, job.match_id)
            if match is not None and match.status == MatchStatus.COMPLETED:
                await self.rating_engine.apply_match(session, match)
        elif job.step == RecalculationStep.BEST_N:
            await self.best_n_engine.recalculate_player(session, job.division_id, job.user_id)
        elif job.step == RecalculationStep.STANDINGS:
            await self.standings_engine.recalculate(session, job.division_id)

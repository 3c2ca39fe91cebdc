"""
Division standings and best-N result selection.

Both are pure derivations of the ``match_results`` rows of completed
matches, so they can be rebuilt from scratch at any time.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Protocol

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import (
    Division,
    DivisionStanding,
    Match,
    MatchResult,
    MatchStatus,
    PenaltyStatus,
    PenaltyType,
    PlayerPenalty,
)
from deuce.services.engine_config import EngineConfig
from deuce.services.errors import NotFoundError

logger = logging.getLogger(__name__)


class StandingsEngine(Protocol):
    async def recalculate(self, session: AsyncSession, division_id: int) -> int:
        ...


class BestNEngine(Protocol):
    async def recalculate_player(
        self, session: AsyncSession, division_id: int, user_id: int
    ) -> int:
        ...


async def _completed_results(session: AsyncSession, division_id: int, user_id=None):
    query = (
        select(MatchResult)
        .join(Match, Match.id == MatchResult.match_id)
        .where(MatchResult.division_id == division_id, Match.status == MatchStatus.COMPLETED)
    )
    if user_id is not None:
        query = query.where(MatchResult.user_id == user_id)
    result = await session.execute(query.order_by(MatchResult.played_at, MatchResult.id))
    return list(result.scalars().all())


class BestNResultsEngine:
    """
    Marks which results count toward standings.

    The first N wins in date order count; remaining slots go to the
    strongest losses by match points, then game margin, then date.
    """

    def __init__(self, config: EngineConfig):
        self.config = config

    async def recalculate_player(
        self, session: AsyncSession, division_id: int, user_id: int
    ) -> int:
        """
        Returns:
            Number of results counted for the player
        """
        division = await session.get(Division, division_id)
        limit = (division.best_n if division and division.best_n else None) or self.config.best_n_results

        results = await _completed_results(session, division_id, user_id)
        counted = [r for r in results if r.is_win][:limit]
        if len(counted) < limit:
            losses = sorted(
                (r for r in results if not r.is_win),
                key=lambda r: (-r.match_points, -(r.games_won - r.games_lost), r.played_at, r.id),
            )
            counted.extend(losses[: limit - len(counted)])

        counted_ids = {r.id for r in counted}
        sequence = 0
        for result in results:
            if result.id in counted_ids:
                sequence += 1
                result.counts_for_standings = True
                result.result_sequence = sequence
            else:
                result.counts_for_standings = False
                result.result_sequence = None
        await session.flush()
        return len(counted_ids)


class MatchPointsStandingsEngine:
    """Ranks players by counted match points, then wins, then game margin."""

    async def recalculate(self, session: AsyncSession, division_id: int) -> int:
        """
        Rebuild the division's standings table.

        Returns:
            Number of standings rows written
        """
        division = await session.get(Division, division_id)
        if division is None:
            raise NotFoundError(f"Division {division_id} not found")

        rows: Dict[int, Dict[str, int]] = defaultdict(
            lambda: {
                "matches_played": 0,
                "wins": 0,
                "losses": 0,
                "sets_won": 0,
                "sets_lost": 0,
                "games_won": 0,
                "games_lost": 0,
                "points": 0,
            }
        )
        for result in await _completed_results(session, division_id):
            row = rows[result.user_id]
            row["matches_played"] += 1
            row["wins" if result.is_win else "losses"] += 1
            row["sets_won"] += result.sets_won
            row["sets_lost"] += result.sets_lost
            row["games_won"] += result.games_won
            row["games_lost"] += result.games_lost
            if result.counts_for_standings:
                row["points"] += result.match_points

        deductions = await session.execute(
            select(PlayerPenalty.user_id, func.coalesce(func.sum(PlayerPenalty.points_deducted), 0))
            .where(
                PlayerPenalty.division_id == division_id,
                PlayerPenalty.penalty_type == PenaltyType.POINTS_DEDUCTION,
                PlayerPenalty.status.in_(
                    [PenaltyStatus.ACTIVE, PenaltyStatus.APPEALED, PenaltyStatus.COMPLETED]
                ),
            )
            .group_by(PlayerPenalty.user_id)
        )
        deducted = {user_id: int(total) for user_id, total in deductions.all()}

        ordered: List = sorted(
            rows.items(),
            key=lambda item: (
                -(item[1]["points"] - deducted.get(item[0], 0)),
                -item[1]["wins"],
                -(item[1]["games_won"] - item[1]["games_lost"]),
                item[0],
            ),
        )

        await session.execute(
            delete(DivisionStanding).where(DivisionStanding.division_id == division_id)
        )
        for position, (user_id, row) in enumerate(ordered, start=1):
            penalty_points = deducted.get(user_id, 0)
            session.add(
                DivisionStanding(
                    division_id=division_id,
                    season_id=division.season_id,
                    user_id=user_id,
                    position=position,
                    matches_played=row["matches_played"],
                    wins=row["wins"],
                    losses=row["losses"],
                    sets_won=row["sets_won"],
                    sets_lost=row["sets_lost"],
                    games_won=row["games_won"],
                    games_lost=row["games_lost"],
                    points=row["points"] - penalty_points,
                    points_deducted=penalty_points,
                )
            )
        await session.flush()
        logger.info(f"Recalculated standings for division {division_id}: {len(ordered)} players")
        return len(ordered)


async def get_division_standings(session: AsyncSession, division_id: int) -> List[Dict]:
    result = await session.execute(
        select(DivisionStanding)
        .where(DivisionStanding.division_id == division_id)
        .order_by(DivisionStanding.position)
    )
    return [
        {
            "user_id": s.user_id,
            "position": s.position,
            "matches_played": s.matches_played,
            "wins": s.wins,
            "losses": s.losses,
            "sets_won": s.sets_won,
            "sets_lost": s.sets_lost,
            "games_won": s.games_won,
            "games_lost": s.games_lost,
            "points": s.points,
            "points_deducted": s.points_deducted,
        }
        for s in result.scalars().all()
    ]

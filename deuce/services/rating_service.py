"""
Player rating engine.

Ratings are Elo-style per season. Each application writes one history row
per player holding the before and after values, which is what makes a
match's effect reversible.
"""

import logging
from typing import Dict, List, Protocol

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database.models import Match, PlayerRating, RatingHistory
from deuce.services.engine_config import EngineConfig
from deuce.services.match_state import accepted, get_participants

logger = logging.getLogger(__name__)


def expected_score(rating_a: float, rating_b: float) -> float:
    """
    Calculate expected score for side A against side B using the Elo formula.

    Formula: P(A beats B) = 1 / (1 + 10^((rating_B - rating_A) / 400))
    """
    return 1 / (1 + 10 ** ((rating_b - rating_a) / 400))


def elo_change(k: float, expected: float, actual: float) -> float:
    """Calculate Elo rating change."""
    return k * (actual - expected)


class RatingEngine(Protocol):
    """Applies and reverses the rating effect of a completed match."""

    async def apply_match(self, session: AsyncSession, match: Match) -> int:
        ...

    async def reverse_match(self, session: AsyncSession, match_id: int) -> int:
        ...


class EloRatingEngine:
    """Team-average Elo with a shrinking rating deviation."""

    def __init__(self, config: EngineConfig):
        self.config = config

    async def get_or_create_rating(
        self, session: AsyncSession, user_id: int, season_id: int
    ) -> PlayerRating:
        result = await session.execute(
            select(PlayerRating).where(
                PlayerRating.user_id == user_id, PlayerRating.season_id == season_id
            )
        )
        rating = result.scalar_one_or_none()
        if rating is None:
            rating = PlayerRating(
                user_id=user_id,
                season_id=season_id,
                rating=self.config.default_rating,
                rating_deviation=self.config.default_rating_deviation,
                matches_played=0,
                peak_rating=self.config.default_rating,
                lowest_rating=self.config.default_rating,
            )
            session.add(rating)
            await session.flush()
        return rating

    async def apply_match(self, session: AsyncSession, match: Match) -> int:
        """
        Rate every accepted participant of a completed match.

        Does nothing if the match already has rating history.

        Returns:
            Number of players rated
        """
        existing = await session.execute(
            select(func.count(RatingHistory.id)).where(RatingHistory.match_id == match.id)
        )
        if existing.scalar():
            logger.info(f"Match {match.id} already rated, skipping")
            return 0
        if match.outcome not in ("team1", "team2"):
            logger.info(f"Match {match.id} has no winner, skipping ratings")
            return 0

        roster = accepted(await get_participants(session, match.id))
        ratings: Dict[int, PlayerRating] = {}
        teams: Dict[str, List[int]] = {"team1": [], "team2": []}
        for participant in roster:
            if participant.team not in teams:
                continue
            teams[participant.team].append(participant.user_id)
            ratings[participant.user_id] = await self.get_or_create_rating(
                session, participant.user_id, match.season_id
            )
        if not teams["team1"] or not teams["team2"]:
            logger.warning(f"Match {match.id} has an incomplete roster, skipping ratings")
            return 0

        averages = {
            team: sum(ratings[u].rating for u in members) / len(members)
            for team, members in teams.items()
        }

        for team, members in teams.items():
            opponent = "team2" if team == "team1" else "team1"
            expected = expected_score(averages[team], averages[opponent])
            actual = 1.0 if match.outcome == team else 0.0
            delta = elo_change(self.config.k_factor, expected, actual)
            for user_id in members:
                rating = ratings[user_id]
                before, deviation_before = rating.rating, rating.rating_deviation
                rating.rating = before + delta
                rating.rating_deviation = max(
                    self.config.min_rating_deviation,
                    deviation_before * self.config.rating_deviation_decay,
                )
                rating.matches_played += 1
                rating.peak_rating = max(rating.peak_rating or rating.rating, rating.rating)
                rating.lowest_rating = min(rating.lowest_rating or rating.rating, rating.rating)
                session.add(
                    RatingHistory(
                        player_rating_id=rating.id,
                        user_id=user_id,
                        match_id=match.id,
                        season_id=match.season_id,
                        rating_before=before,
                        rating_after=rating.rating,
                        deviation_before=deviation_before,
                        deviation_after=rating.rating_deviation,
                        rating_change=delta,
                    )
                )

        await session.flush()
        logger.info(f"Rated match {match.id} for {len(ratings)} players")
        return len(ratings)

    async def reverse_match(self, session: AsyncSession, match_id: int) -> int:
        """
        Undo a match's rating effect using its history rows.

        Returns:
            Number of players whose rating was restored
        """
        result = await session.execute(
            select(RatingHistory).where(RatingHistory.match_id == match_id)
        )
        history = list(result.scalars().all())
        for entry in history:
            rating = await session.get(PlayerRating, entry.player_rating_id)
            if rating is None:
                continue
            rating.rating = entry.rating_before
            rating.rating_deviation = entry.deviation_before
            rating.matches_played = max(0, rating.matches_played - 1)

        if history:
            await session.execute(delete(RatingHistory).where(RatingHistory.match_id == match_id))
            await session.flush()
            logger.info(f"Reversed ratings for match {match_id} ({len(history)} players)")
        return len(history)

"""
Builders for the rows match engine tests need.
"""

from dataclasses import dataclass
from typing import List, Optional

from deuce.database.models import (
    Division,
    DivisionMember,
    League,
    Season,
    Set3Format,
    Sport,
    User,
    UserRole,
)


@dataclass
class LeagueSetup:
    division: Division
    players: List[User]
    admin: User


async def make_user(session, name: str, role: UserRole = UserRole.USER) -> User:
    user = User(full_name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role)
    session.add(user)
    await session.flush()
    return user


async def make_division(
    session,
    members: List[User],
    sport: Sport = Sport.TENNIS,
    set3_format: Set3Format = Set3Format.MATCH_TIEBREAK,
    requires_confirmation: Optional[bool] = None,
    best_n: Optional[int] = None,
) -> Division:
    league = League(name=f"{sport.value.title()} League", sport=sport)
    session.add(league)
    await session.flush()
    season = Season(league_id=league.id, name="Autumn")
    session.add(season)
    await session.flush()
    division = Division(
        season_id=season.id,
        league_id=league.id,
        name="Division 1",
        sport=sport,
        set3_format=set3_format,
        requires_confirmation=requires_confirmation,
        best_n=best_n,
    )
    session.add(division)
    await session.flush()
    for member in members:
        session.add(DivisionMember(division_id=division.id, user_id=member.id))
    await session.flush()
    return division


STRAIGHT_SETS = [
    {"team1_games": 6, "team2_games": 3},
    {"team1_games": 6, "team2_games": 4},
]

THREE_SETS = [
    {"team1_games": 6, "team2_games": 4},
    {"team1_games": 3, "team2_games": 6},
    {"team1_games": 10, "team2_games": 7},
]

TEAM2_STRAIGHT_SETS = [
    {"team1_games": 4, "team2_games": 6},
    {"team1_games": 2, "team2_games": 6},
]

"""
Score grammar and per-player result derivation.

Tennis and padel: best of three sets. Sets 1 and 2 end 6-0..6-4, 7-5 or 7-6
(7-6 needs a 7-point tiebreak). A deciding set 3 is either a 10-point match
tiebreak or a full set whose 6-6 is settled by a 10-point tiebreak.

Pickleball: best of three games to 15, win by 2, extended games allowed.

Match points per player: 1 for playing, 1 per set won, 2 for the win.
Walkovers give the winner the full 5 and the defaulting side nothing.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from deuce.database.models import Set3Format, Sport
from deuce.services.errors import ValidationError

STANDARD_TIEBREAK = "SET"
MATCH_TIEBREAK = "MATCH"

PICKLEBALL_GAME_POINTS = 15

_VALID_SET_SCORES = {(6, 0), (6, 1), (6, 2), (6, 3), (6, 4), (7, 5), (7, 6)}

PARTICIPATION_POINTS = 1
WIN_BONUS_POINTS = 2


@dataclass
class SetScore:
    """One set (tennis/padel) or game (pickleball). Pickleball points go in the games fields."""

    set_number: int
    team1_games: int
    team2_games: int
    team1_tiebreak: Optional[int] = None
    team2_tiebreak: Optional[int] = None
    tiebreak_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "set_number": self.set_number,
            "team1_games": self.team1_games,
            "team2_games": self.team2_games,
            "team1_tiebreak": self.team1_tiebreak,
            "team2_tiebreak": self.team2_tiebreak,
            "tiebreak_type": self.tiebreak_type,
        }


@dataclass
class ScoreSummary:
    """Totals derived from a validated score line."""

    team1_sets: int
    team2_sets: int
    team1_games: int
    team2_games: int
    winner: Optional[str]


def coerce_set_scores(items: Iterable[Any]) -> List[SetScore]:
    """
    Accept dicts, pydantic models or SetScore instances; number sets in order when missing.

    Raises:
        ValidationError: If a side has no score or the set numbers are not exactly 1..n
    """
    scores = []
    for index, item in enumerate(items or [], start=1):
        if isinstance(item, SetScore):
            scores.append(item)
            continue
        data = item if isinstance(item, dict) else item.model_dump()
        if data.get("team1_games") is None or data.get("team2_games") is None:
            raise ValidationError("Each set needs a score for both teams")
        scores.append(
            SetScore(
                set_number=data.get("set_number") or index,
                team1_games=data["team1_games"],
                team2_games=data["team2_games"],
                team1_tiebreak=data.get("team1_tiebreak"),
                team2_tiebreak=data.get("team2_tiebreak"),
                tiebreak_type=data.get("tiebreak_type"),
            )
        )
    scores.sort(key=lambda s: s.set_number)
    if [s.set_number for s in scores] != list(range(1, len(scores) + 1)):
        raise ValidationError("Set numbers must run from 1 without gaps or repeats")
    return scores


def set_winner(score: SetScore) -> Optional[str]:
    """Games decide; a level set falls back to the tiebreak."""
    if score.team1_games > score.team2_games:
        return "team1"
    if score.team2_games > score.team1_games:
        return "team2"
    tb1 = score.team1_tiebreak or 0
    tb2 = score.team2_tiebreak or 0
    if tb1 > tb2:
        return "team1"
    if tb2 > tb1:
        return "team2"
    return None


def _tiebreak_errors(score1: int, score2: int, min_points: int, label: str) -> List[str]:
    if score1 < 0 or score2 < 0:
        return ["Tiebreak scores cannot be negative"]
    errors = []
    winner, loser = max(score1, score2), min(score1, score2)
    if winner < min_points:
        errors.append(f"{label} winner must have at least {min_points} points")
    if winner - loser < 2:
        errors.append("Tiebreak must be won by 2 points")
    return errors


def _standard_set_errors(score: SetScore) -> List[str]:
    t1, t2 = score.team1_games, score.team2_games
    if t1 < 0 or t2 < 0:
        return ["Game scores cannot be negative"]

    errors = []
    pair = (max(t1, t2), min(t1, t2))
    if pair not in _VALID_SET_SCORES:
        if pair == (6, 5):
            errors.append("6-5 is not a valid final score (must reach 7-5 or play tiebreak)")
        elif pair == (6, 6):
            errors.append("6-6 is not valid - must play tiebreak to 7-6")
        else:
            errors.append(f"Invalid score combination: {t1}-{t2}")

    has_tiebreak = score.team1_tiebreak is not None or score.team2_tiebreak is not None
    if pair == (7, 6):
        if score.team1_tiebreak is None or score.team2_tiebreak is None:
            errors.append("7-6 score requires tiebreak scores")
        else:
            errors.extend(
                _tiebreak_errors(score.team1_tiebreak, score.team2_tiebreak, 7, "Tiebreak")
            )
            if set_winner(SetScore(0, score.team1_tiebreak, score.team2_tiebreak)) != set_winner(score):
                errors.append("Tiebreak winner must match the set winner")
    elif has_tiebreak:
        errors.append("Tiebreak scores only allowed for 7-6 sets")
    return errors


def _deciding_set_errors(score: SetScore, set3_format: Set3Format) -> List[str]:
    if set3_format == Set3Format.MATCH_TIEBREAK:
        if score.team1_tiebreak is not None and score.team2_tiebreak is not None:
            return _tiebreak_errors(score.team1_tiebreak, score.team2_tiebreak, 10, "Match tiebreak")
        return _tiebreak_errors(score.team1_games, score.team2_games, 10, "Match tiebreak")

    if score.team1_games == 6 and score.team2_games == 6:
        if score.team1_tiebreak is None or score.team2_tiebreak is None:
            return ["Set 3 at 6-6 requires 10-point match tiebreak"]
        errors = _tiebreak_errors(score.team1_tiebreak, score.team2_tiebreak, 10, "Match tiebreak")
        if score.tiebreak_type == STANDARD_TIEBREAK:
            errors.append("Set 3 at 6-6 must use 10-point match tiebreak, not standard 7-point tiebreak")
        return errors
    return _standard_set_errors(score)


def _best_of_three_errors(scores: List[SetScore], unit: str) -> List[str]:
    if len(scores) < 2:
        return [f"At least 2 {unit}s are required"]
    if len(scores) > 3:
        return [f"Maximum 3 {unit}s allowed"]

    errors = []
    winners = [set_winner(s) for s in scores]
    if winners.count("team1") != 2 and winners.count("team2") != 2:
        errors.append(f"Match must have a definitive winner (one team must win 2 {unit}s)")
    if len(scores) == 3 and winners[0] == winners[1]:
        errors.append(f"Cannot have {unit.capitalize()} 3 when match is won 2-0")
    if len(scores) == 2 and winners[0] != winners[1]:
        errors.append(f"If only 2 {unit}s are played, same team must win both")
    return errors


def _pickleball_game_errors(score: SetScore) -> List[str]:
    t1, t2 = score.team1_games, score.team2_games
    if t1 < 0 or t2 < 0:
        return ["Points cannot be negative"]
    errors = []
    winner, loser = max(t1, t2), min(t1, t2)
    if winner < PICKLEBALL_GAME_POINTS:
        errors.append(f"Winner must have at least {PICKLEBALL_GAME_POINTS} points")
    if winner - loser < 2:
        errors.append("Game must be won by 2 points")
    if winner > PICKLEBALL_GAME_POINTS and winner - loser != 2:
        errors.append(f"Extended game must end with a 2 point margin, got {t1}-{t2}")
    return errors


def score_errors(
    sport: Sport,
    set_scores: List[SetScore],
    set3_format: Set3Format = Set3Format.MATCH_TIEBREAK,
) -> List[str]:
    """Every rule the score line breaks; empty when valid."""
    if not set_scores:
        if sport == Sport.PICKLEBALL:
            return ["Pickleball scores are required"]
        return ["Set scores are required for Tennis/Padel"]

    if sport == Sport.PICKLEBALL:
        errors = _best_of_three_errors(set_scores, "game")
        if len(set_scores) > 3 or len(set_scores) < 2:
            return errors
        for index, score in enumerate(set_scores, start=1):
            errors.extend(f"Game {index}: {e}" for e in _pickleball_game_errors(score))
        return errors

    errors = _best_of_three_errors(set_scores, "set")
    if len(set_scores) > 3 or len(set_scores) < 2:
        return errors
    for index, score in enumerate(set_scores, start=1):
        if index == 3:
            errors.extend(f"Set 3: {e}" for e in _deciding_set_errors(score, set3_format))
        else:
            errors.extend(f"Set {index}: {e}" for e in _standard_set_errors(score))
    return errors


def validate_score(
    sport: Sport,
    set_scores: List[SetScore],
    set3_format: Set3Format = Set3Format.MATCH_TIEBREAK,
) -> None:
    """
    Raises:
        ValidationError: Listing every broken rule
    """
    errors = score_errors(sport, set_scores, set3_format)
    if errors:
        raise ValidationError("Invalid score: " + "; ".join(errors))


def validate_partial_score(set_scores: List[SetScore]) -> None:
    """Scores of an interrupted match only need to be well formed."""
    if len(set_scores) > 3:
        raise ValidationError("Invalid score: Maximum 3 sets allowed")
    for score in set_scores:
        values = [score.team1_games, score.team2_games, score.team1_tiebreak, score.team2_tiebreak]
        if any(v is not None and v < 0 for v in values):
            raise ValidationError("Invalid score: Scores cannot be negative")


def validate_admin_score(set_scores: List[SetScore]) -> None:
    """
    Admin-entered results skip the set grammar but must still name a winner.

    Raises:
        ValidationError: If scores are negative or neither side won more sets
    """
    if not set_scores:
        raise ValidationError("Final score requires at least one set")
    validate_partial_score(set_scores)
    summary = summarize(set_scores)
    if summary.winner is None:
        raise ValidationError("Final score must have a winner")


def summarize(
    set_scores: List[SetScore],
    set3_format: Set3Format = Set3Format.MATCH_TIEBREAK,
    sport: Optional[Sport] = None,
) -> ScoreSummary:
    """Sets and games per side. Match tiebreak points count as games for the margin."""
    team1_sets = team2_sets = team1_games = team2_games = 0
    for score in set_scores:
        winner = set_winner(score)
        if winner == "team1":
            team1_sets += 1
        elif winner == "team2":
            team2_sets += 1

        is_match_tiebreak = (
            sport != Sport.PICKLEBALL
            and score.set_number == 3
            and set3_format == Set3Format.MATCH_TIEBREAK
            and score.team1_tiebreak is not None
            and score.team2_tiebreak is not None
        )
        if is_match_tiebreak:
            team1_games += score.team1_tiebreak
            team2_games += score.team2_tiebreak
        else:
            team1_games += score.team1_games
            team2_games += score.team2_games

    winner = None
    if team1_sets > team2_sets:
        winner = "team1"
    elif team2_sets > team1_sets:
        winner = "team2"
    return ScoreSummary(team1_sets, team2_sets, team1_games, team2_games, winner)


def walkover_scores(sport: Sport, winning_team: str) -> List[SetScore]:
    """Fixed full-match score awarded to the side that showed up."""
    won = PICKLEBALL_GAME_POINTS if sport == Sport.PICKLEBALL else 6
    scores = []
    for number in (1, 2):
        if winning_team == "team1":
            scores.append(SetScore(number, won, 0))
        else:
            scores.append(SetScore(number, 0, won))
    return scores


def match_points(is_win: bool, sets_won: int, is_walkover: bool = False) -> int:
    if is_walkover and not is_win:
        return 0
    return PARTICIPATION_POINTS + sets_won + (WIN_BONUS_POINTS if is_win else 0)

"""
backend/app/services/scoring_service.py

Purpose:
    Points for a bet once the real score of a game is known. Football rewards
    the exact score; rugby rewards a close prediction because exact rugby
    scores are nearly impossible to hit.

Dependencies:
    - none (pure functions)
"""

from enum import Enum
from typing import Optional

EXACT_POINTS = 3
OUTCOME_POINTS = 1
RUGBY_PROXIMITY_MARGIN = 5


class ScoringSystem(str, Enum):
    FOOTBALL_STANDARD = "FOOTBALL_STANDARD"
    RUGBY_PROXIMITY = "RUGBY_PROXIMITY"


def _outcome(home: int, away: int) -> int:
    """1 home win, 0 draw, -1 away win."""
    return (home > away) - (home < away)


def calculate_bet_points(
    bet: tuple[int, int],
    actual: tuple[int, int],
    system: ScoringSystem | str = ScoringSystem.FOOTBALL_STANDARD,
) -> int:
    """Points for a predicted (home, away) score against the actual one.

    FOOTBALL_STANDARD: exact score 3, correct outcome 1, else 0.
    RUGBY_PROXIMITY: total deviation of both scores within 5 gives 3,
    otherwise correct outcome 1, else 0. Unknown systems score as football.
    """
    bet_home, bet_away = bet
    home, away = actual

    if system == ScoringSystem.RUGBY_PROXIMITY:
        if abs(bet_home - home) + abs(bet_away - away) <= RUGBY_PROXIMITY_MARGIN:
            return EXACT_POINTS
    elif bet_home == home and bet_away == away:
        return EXACT_POINTS

    if _outcome(bet_home, bet_away) == _outcome(home, away):
        return OUTCOME_POINTS
    return 0


def scoring_system_for_sport(sport_type: Optional[str]) -> ScoringSystem:
    if sport_type == "RUGBY":
        return ScoringSystem.RUGBY_PROXIMITY
    return ScoringSystem.FOOTBALL_STANDARD


def bet_result(points: Optional[int]) -> str:
    """Label used by the performance views: exact, correct, wrong or no_bet."""
    if points is None:
        return "no_bet"
    if points >= EXACT_POINTS:
        return "exact"
    if points > 0:
        return "correct"
    return "wrong"

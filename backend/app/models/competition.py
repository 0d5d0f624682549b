from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.models.game import SportType, TeamRef


class JoinResponse(BaseModel):
    competition_id: str
    already_member: bool


class RankingEntry(BaseModel):
    position: int
    user_id: str
    user_name: str
    profile_picture_url: Optional[str] = None
    points: int
    exact_scores: int
    bets: int
    shooters: int = 0


class EvolutionRanking(BaseModel):
    user_id: str
    user_name: str
    profile_picture_url: Optional[str] = None
    position: int
    total_points: int


class EvolutionPoint(BaseModel):
    date: datetime
    rankings: list[EvolutionRanking]


class FinalWinnerPick(BaseModel):
    team_id: str


class NextGame(BaseModel):
    id: str
    date: datetime
    home_team: str
    away_team: str


class FinalWinnerPrediction(BaseModel):
    prediction: Optional[TeamRef] = None
    deadline: Optional[datetime] = None
    deadline_passed: bool
    available_teams: list[TeamRef]
    next_game: Optional[NextGame] = None


class ParticipantAdd(BaseModel):
    user_id: str


class CompetitionImport(BaseModel):
    """Admin request to import one season of a feed competition."""
    external_competition_id: int
    season: str
    import_only_future_games: bool = True
    sport_type: SportType = SportType.FOOTBALL

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GameStatus(str, Enum):
    UPCOMING = "UPCOMING"
    LIVE = "LIVE"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"


class DecidedBy(str, Enum):
    FT = "FT"    # 90 minutes (80 in rugby)
    AET = "AET"  # after extra time; penalty shoot-outs are recorded with the 120' score


class SportType(str, Enum):
    FOOTBALL = "FOOTBALL"
    RUGBY = "RUGBY"


class TeamRef(BaseModel):
    """Team snapshot embedded in a game document."""
    id: str
    name: str
    short_name: Optional[str] = None
    logo: Optional[str] = None


class GameResponse(BaseModel):
    id: str
    competition_id: str
    date: datetime
    status: GameStatus
    home_team: TeamRef
    away_team: TeamRef
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    live_home_score: Optional[int] = None
    live_away_score: Optional[int] = None
    elapsed_minute: Optional[int] = None
    external_status: Optional[str] = None
    decided_by: Optional[DecidedBy] = None
    last_sync_at: Optional[datetime] = None


class ManualScoreUpdate(BaseModel):
    """Admin override of a game's score."""
    home_score: int = Field(ge=0)
    away_score: int = Field(ge=0)
    status: GameStatus = GameStatus.FINISHED
    decided_by: DecidedBy = DecidedBy.FT


class GameStatusUpdate(BaseModel):
    status: GameStatus


class GameUpdate(BaseModel):
    """Admin edit of scheduling fields."""
    date: Optional[datetime] = None
    status: Optional[GameStatus] = None
    external_id: Optional[str] = None

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class BetCreate(BaseModel):
    """Request body for placing or updating a bet."""
    game_id: str
    score1: int = Field(ge=0)
    score2: int = Field(ge=0)


class BetResponse(BaseModel):
    id: str
    game_id: str
    user_id: str
    score1: int
    score2: int
    points: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GameBetResponse(BaseModel):
    """A bet shown in a game's bet list."""
    id: str
    user_id: str
    user_name: str
    profile_picture_url: Optional[str] = None
    score1: int
    score2: int
    points: Optional[int] = None
    created_at: Optional[datetime] = None


class AdminBetCreate(BaseModel):
    game_id: str
    user_id: str
    score1: int = Field(ge=0)
    score2: int = Field(ge=0)


class AdminBetUpdate(BaseModel):
    score1: int = Field(ge=0)
    score2: int = Field(ge=0)

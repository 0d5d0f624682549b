from typing import Optional

from pydantic import BaseModel, Field

from app.models.game import SportType


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    short_name: Optional[str] = Field(default=None, max_length=10)
    logo: Optional[str] = None
    sport_type: SportType = SportType.FOOTBALL


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    short_name: Optional[str] = Field(default=None, max_length=10)
    logo: Optional[str] = None


class TeamResponse(BaseModel):
    id: str
    name: str
    short_name: Optional[str] = None
    logo: Optional[str] = None
    sport_type: SportType
    normalized_name: str
    similar_teams: list[str] = []

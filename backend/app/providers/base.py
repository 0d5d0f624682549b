from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from app.utils import parse_utc


class ProviderError(Exception):
    """Raised when an external sports feed is unreachable or returns garbage."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ExternalMatch:
    """A match as reported by an external feed, already normalized.

    `status` is the internal status (UPCOMING/LIVE/FINISHED/CANCELLED);
    `external_status` keeps the feed's raw short code (HT, 1H, FT, AET, ...).
    Scores are None until the feed reports them.
    """

    id: str
    status: str
    external_status: str
    home_team_id: str
    home_team_name: str
    away_team_id: str
    away_team_name: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    elapsed_minute: Optional[int] = None
    utc_date: Optional[datetime] = None
    competition_id: str = ""
    competition_name: str = ""
    home_team_logo: Optional[str] = None
    away_team_logo: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.home_team_name} vs {self.away_team_name}"


@dataclass
class ExternalSeason:
    year: str
    start: Optional[date] = None
    end: Optional[date] = None
    current: bool = False


@dataclass
class ExternalCompetition:
    """A league or cup listed by a feed's catalog."""

    id: int
    name: str
    country: str = ""
    type: str = "league"
    logo: Optional[str] = None
    seasons: list[ExternalSeason] = field(default_factory=list)


def parse_feed_date(value: str | None) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_utc(value)
    except ValueError:
        return None


class BaseScoreProvider(ABC):
    """Abstract base class for live score providers."""

    name: str = "base"
    sport_type: str = "FOOTBALL"
    # Feeds with a league catalog can import whole competitions
    supports_catalog: bool = False

    @abstractmethod
    async def get_live_matches(self) -> list[ExternalMatch]:
        """Matches currently in play. Returns [] when the feed is unavailable."""
        ...

    @abstractmethod
    async def get_matches_by_date_range(self, start: date, end: date) -> list[ExternalMatch]:
        """Matches scheduled between start and end (inclusive). Raises ProviderError."""
        ...

    @abstractmethod
    async def get_match_by_id(self, match_id: str) -> Optional[ExternalMatch]:
        ...

    @abstractmethod
    def map_status(self, external_status: str) -> str:
        """Map a raw feed status to the internal game status."""
        ...

    def attribution(self) -> str:
        return ""

    async def get_competitions(self) -> list[ExternalCompetition]:
        raise ProviderError(f"[{self.name}] no competition catalog")

    async def get_current_or_next_season(self, competition_id: int) -> Optional[ExternalSeason]:
        raise ProviderError(f"[{self.name}] no competition catalog")

    async def get_fixtures_by_competition(
        self, competition_id: int, season: str, only_future: bool = False,
    ) -> list[ExternalMatch]:
        raise ProviderError(f"[{self.name}] no competition catalog")

    async def aclose(self) -> None:
        return None

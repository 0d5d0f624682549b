"""
backend/app/providers/football_data.py

Purpose:
    Adapter for football-data.org v4 live scores (the V1 football feed).
    Normalizes matches into ExternalMatch payloads and maps statuses onto
    internal game statuses.

Dependencies:
    - app.providers.http_client
    - app.config
"""

import logging
from datetime import date
from typing import Any, Optional

from app.config import settings
from app.models.game import GameStatus
from app.providers.base import BaseScoreProvider, ExternalMatch, ProviderError, parse_feed_date
from app.providers.http_client import ResilientClient
from app.utils import utcnow

logger = logging.getLogger("pronofoot.football_data")

_STATUS_MAP = {
    "SCHEDULED": GameStatus.UPCOMING,
    "TIMED": GameStatus.UPCOMING,
    "IN_PLAY": GameStatus.LIVE,
    "PAUSED": GameStatus.LIVE,
    "LIVE": GameStatus.LIVE,
    "FINISHED": GameStatus.FINISHED,
    "COMPLETED": GameStatus.FINISHED,
    "POSTPONED": GameStatus.CANCELLED,
    "SUSPENDED": GameStatus.CANCELLED,
    "CANCELLED": GameStatus.CANCELLED,
}

_LIVE_OR_DONE = {"IN_PLAY", "PAUSED", "FINISHED"}


class FootballDataProvider(BaseScoreProvider):
    """football-data.org provider for live football scores."""

    name = "football_data"
    sport_type = "FOOTBALL"

    def __init__(self, api_key: str | None = None, competition_filter: str | None = None):
        self._api_key = settings.FOOTBALL_DATA_API_KEY if api_key is None else api_key
        self._competition_filter = (
            settings.FOOTBALL_DATA_COMPETITION_FILTER if competition_filter is None else competition_filter
        )
        self._client = ResilientClient(
            "football_data",
            settings.FOOTBALL_DATA_BASE_URL,
            headers={"X-Auth-Token": self._api_key},
        )

    def map_status(self, external_status: str) -> str:
        status = _STATUS_MAP.get(external_status)
        if status is None:
            logger.warning("Unknown external status %r, defaulting to UPCOMING", external_status)
            return GameStatus.UPCOMING.value
        return status.value

    def attribution(self) -> str:
        return "Data provided by football-data.org"

    def _is_valid(self, match: Any) -> bool:
        if not isinstance(match, dict):
            return False
        if not match.get("homeTeam") or not match.get("awayTeam"):
            return False
        if not isinstance(match.get("score"), dict):
            return False
        if self._competition_filter:
            return (match.get("competition") or {}).get("name") == self._competition_filter
        return True

    def _parse(self, match: dict) -> ExternalMatch:
        full_time = (match.get("score") or {}).get("fullTime") or {}
        competition = match.get("competition") or {}
        raw_status = str(match.get("status") or "")
        return ExternalMatch(
            id=str(match.get("id")),
            status=self.map_status(raw_status),
            external_status=raw_status,
            home_team_id=str((match.get("homeTeam") or {}).get("id") or ""),
            home_team_name=str((match.get("homeTeam") or {}).get("name") or ""),
            away_team_id=str((match.get("awayTeam") or {}).get("id") or ""),
            away_team_name=str((match.get("awayTeam") or {}).get("name") or ""),
            home_score=full_time.get("home"),
            away_score=full_time.get("away"),
            utc_date=parse_feed_date(match.get("utcDate")),
            competition_id=str(competition.get("id") or ""),
            competition_name=str(competition.get("name") or ""),
        )

    async def _matches(self, params: dict[str, Any]) -> list[dict]:
        data = await self._client.get_json("/matches", params=params)
        matches = data.get("matches")
        if not isinstance(matches, list):
            raise ProviderError("football-data.org: invalid matches payload")
        return matches

    async def get_live_matches(self) -> list[ExternalMatch]:
        """Live matches via status=LIVE, falling back to today's matches.

        Never raises: a failing feed yields an empty list so the sync loop
        can still auto-finish stale games.
        """
        if not self._api_key:
            logger.warning("FOOTBALL_DATA_API_KEY not set, skipping football-data.org")
            return []

        try:
            try:
                raw = await self._matches({"status": "LIVE"})
                valid = [self._parse(m) for m in raw if self._is_valid(m)]
                logger.debug("football-data.org LIVE: %d raw, %d valid", len(raw), len(valid))
                return valid
            except ProviderError as exc:
                logger.warning("LIVE endpoint failed, falling back to date search: %s", exc)

            today = utcnow().date().isoformat()
            raw = await self._matches({"date": today})
            valid = [
                self._parse(m) for m in raw
                if self._is_valid(m) and m.get("status") in _LIVE_OR_DONE
            ]
            logger.debug("football-data.org date fallback: %d live/finished", len(valid))
            return valid
        except ProviderError as exc:
            logger.error("Error fetching live matches from football-data.org: %s", exc)
            return []

    async def get_matches_by_date_range(self, start: date, end: date) -> list[ExternalMatch]:
        if not self._api_key:
            return []
        raw = await self._matches({"dateFrom": start.isoformat(), "dateTo": end.isoformat()})
        matches = [self._parse(m) for m in raw if self._is_valid(m)]
        logger.debug(
            "football-data.org: %d matches between %s and %s", len(matches), start, end,
        )
        return matches

    async def get_match_by_id(self, match_id: str) -> Optional[ExternalMatch]:
        if not self._api_key:
            return None
        try:
            data = await self._client.get_json(f"/matches/{match_id}")
        except ProviderError as exc:
            if exc.status_code == 404:
                return None
            raise
        match = data.get("match", data)
        if not isinstance(match, dict) or not match.get("homeTeam"):
            return None
        return self._parse(match)

    async def aclose(self) -> None:
        await self._client.aclose()

"""
backend/app/providers/api_sports.py

Purpose:
    api-sports.io adapters: football v3 (the V2 football feed, enabled with
    USE_API_V2) and rugby v1. Both normalize fixtures into ExternalMatch
    payloads; the rugby adapter tolerates the flat /games shape as well as
    the nested /fixtures shape. Both also expose the league catalog (leagues,
    seasons and season fixtures) used to import competitions.

Dependencies:
    - app.providers.http_client
    - app.config
"""

import logging
from datetime import date, timedelta
from typing import Any, Optional

from app.config import settings
from app.utils import utcnow
from app.models.game import GameStatus
from app.providers.base import (
    BaseScoreProvider,
    ExternalCompetition,
    ExternalMatch,
    ExternalSeason,
    ProviderError,
    parse_feed_date,
)
from app.providers.http_client import ResilientClient

logger = logging.getLogger("pronofoot.api_sports")

_FOOTBALL_STATUS_MAP = {
    "TBD": GameStatus.UPCOMING,
    "NS": GameStatus.UPCOMING,
    "1H": GameStatus.LIVE,
    "HT": GameStatus.LIVE,
    "2H": GameStatus.LIVE,
    "ET": GameStatus.LIVE,
    "BT": GameStatus.LIVE,
    "P": GameStatus.LIVE,
    "LIVE": GameStatus.LIVE,
    "INT": GameStatus.LIVE,
    "FT": GameStatus.FINISHED,
    "AET": GameStatus.FINISHED,
    "PEN": GameStatus.FINISHED,
    "PST": GameStatus.CANCELLED,
    "SUSP": GameStatus.CANCELLED,
    "CANC": GameStatus.CANCELLED,
    "ABD": GameStatus.CANCELLED,
    "AWD": GameStatus.CANCELLED,
    "WO": GameStatus.CANCELLED,
}

_RUGBY_STATUS_MAP = {
    "NS": GameStatus.UPCOMING,
    "POST": GameStatus.UPCOMING,
    "1H": GameStatus.LIVE,
    "HT": GameStatus.LIVE,
    "2H": GameStatus.LIVE,
    "ET": GameStatus.LIVE,
    "FT": GameStatus.FINISHED,
    "AET": GameStatus.FINISHED,
    "PEN": GameStatus.FINISHED,
    "AWARDED": GameStatus.FINISHED,
    "SUSP": GameStatus.CANCELLED,
    "INT": GameStatus.CANCELLED,
    "ABAN": GameStatus.CANCELLED,
    "CANC": GameStatus.CANCELLED,
}

# Final scores that include extra time; penalty shoot-outs are never counted.
_EXTRA_TIME_STATUSES = {"AET", "PEN"}


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _pick_score(block: Any, side: str) -> Optional[int]:
    """Score of one side from `{"home": 2}` or `{"home": {"total": 2}}` shapes."""
    if not isinstance(block, dict):
        return None
    value = block.get(side)
    if isinstance(value, dict):
        value = value.get("total", value.get("score"))
    return _as_int(value)


def _extra_time_score(
    goals: Any, home: Optional[int], away: Optional[int]
) -> tuple[Optional[int], Optional[int]]:
    """Score after extra time from `goals.extra`, else the `goals` total.

    `score.extratime` only counts the goals scored during extra time, so it is
    never a final score.
    """
    block = goals.get("extra") if isinstance(goals, dict) else None
    extra_home, extra_away = _pick_score(block, "home"), _pick_score(block, "away")
    if extra_home is not None and extra_away is not None:
        return extra_home, extra_away
    return home, away


def _parse_day(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_season(raw: Any) -> Optional[ExternalSeason]:
    if not isinstance(raw, dict) or raw.get("year") in (None, ""):
        return None
    return ExternalSeason(
        year=str(raw["year"]),
        start=_parse_day(raw.get("start")),
        end=_parse_day(raw.get("end")),
        current=bool(raw.get("current")),
    )


def pick_current_or_next_season(seasons: list[ExternalSeason], today: date) -> Optional[ExternalSeason]:
    """The ongoing season, else the next one to start, else the most recent."""
    dated = [s for s in seasons if s.start and s.end]
    if not dated:
        return None
    for season in dated:
        if season.start <= today <= season.end:
            return season
    upcoming = sorted((s for s in dated if s.start > today), key=lambda s: s.start)
    if upcoming:
        return upcoming[0]
    return max(dated, key=lambda s: s.start)


class _ApiSportsProvider(BaseScoreProvider):
    """Shared transport and plumbing for api-sports.io feeds."""

    _endpoint = "/fixtures"
    _status_map: dict[str, GameStatus] = {}
    supports_catalog = True

    def __init__(self, api_key: str, base_url: str):
        self._api_key = api_key
        self._client = ResilientClient(
            self.name, base_url, headers={"x-apisports-key": api_key},
        )

    def map_status(self, external_status: str) -> str:
        status = self._status_map.get((external_status or "").upper())
        return (status or GameStatus.UPCOMING).value

    def attribution(self) -> str:
        return "Data provided by api-sports.io"

    async def _fetch(self, params: dict[str, Any], path: str | None = None) -> list[dict]:
        data = await self._client.get_json(path or self._endpoint, params=params)
        errors = data.get("errors")
        # api-sports reports auth and quota problems with HTTP 200 + errors
        if errors and (isinstance(errors, dict) or isinstance(errors, list) and len(errors) > 0):
            raise ProviderError(f"[{self.name}] API errors: {errors}")
        response = data.get("response")
        if not isinstance(response, list):
            raise ProviderError(f"[{self.name}] invalid response payload")
        return [item for item in response if isinstance(item, dict)]

    def _parse(self, item: dict) -> Optional[ExternalMatch]:
        raise NotImplementedError

    def _parse_all(self, items: list[dict]) -> list[ExternalMatch]:
        matches = []
        for item in items:
            try:
                match = self._parse(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("[%s] Skipping malformed fixture: %s", self.name, e)
                continue
            if match is not None:
                matches.append(match)
        return matches

    async def get_live_matches(self) -> list[ExternalMatch]:
        if not self._api_key:
            logger.warning("[%s] API key not set, skipping live fetch", self.name)
            return []
        try:
            matches = self._parse_all(await self._fetch({"live": "all"}))
        except ProviderError as e:
            logger.error("[%s] Error fetching live matches: %s", self.name, e)
            return []
        logger.debug("[%s] %d live matches", self.name, len(matches))
        return matches

    async def get_matches_by_date_range(self, start: date, end: date) -> list[ExternalMatch]:
        if not self._api_key:
            return []
        matches: list[ExternalMatch] = []
        day = start
        # One request per day; the date filter takes a single day
        while day <= end:
            matches.extend(self._parse_all(await self._fetch({"date": day.isoformat()})))
            day += timedelta(days=1)
        return matches

    async def get_match_by_id(self, match_id: str) -> Optional[ExternalMatch]:
        if not self._api_key:
            return None
        matches = self._parse_all(await self._fetch({"id": match_id}))
        return matches[0] if matches else None

    def _require_key(self) -> None:
        if not self._api_key:
            raise ProviderError(f"[{self.name}] API key not configured")

    async def get_competitions(self) -> list[ExternalCompetition]:
        """Every league of the feed, one entry per league id with its seasons."""
        self._require_key()
        competitions: dict[int, ExternalCompetition] = {}
        for item in await self._fetch({}, path="/leagues"):
            # Football nests the league under "league", rugby keeps it flat
            league = item.get("league") if isinstance(item.get("league"), dict) else item
            if league.get("id") is None or not league.get("name"):
                continue
            league_id = int(league["id"])
            country = item.get("country") or {}
            seasons = [s for s in map(_parse_season, item.get("seasons") or []) if s]

            existing = competitions.get(league_id)
            if existing is None:
                competitions[league_id] = ExternalCompetition(
                    id=league_id,
                    name=str(league["name"]),
                    country=str(country.get("name") or "") if isinstance(country, dict) else "",
                    type=str(league.get("type") or "league").lower(),
                    logo=league.get("logo"),
                    seasons=seasons,
                )
                continue
            known = {s.year for s in existing.seasons}
            existing.seasons.extend(s for s in seasons if s.year not in known)

        logger.info("[%s] %d competitions in catalog", self.name, len(competitions))
        return list(competitions.values())

    async def get_current_or_next_season(self, competition_id: int) -> Optional[ExternalSeason]:
        self._require_key()
        seasons: list[ExternalSeason] = []
        for item in await self._fetch({"id": competition_id}, path="/leagues"):
            for raw in item.get("seasons") or []:
                season = _parse_season(raw)
                if season and season.year not in {s.year for s in seasons}:
                    seasons.append(season)
        return pick_current_or_next_season(seasons, utcnow().date())

    async def get_fixtures_by_competition(
        self, competition_id: int, season: str, only_future: bool = False,
    ) -> list[ExternalMatch]:
        """Fixtures of one league season. Games in play are never returned.

        With `only_future`, fixtures dated before today (UTC) are dropped.
        """
        self._require_key()
        items = await self._fetch({"league": competition_id, "season": season})
        today = utcnow().date()
        fixtures = []
        for match in self._parse_all(items):
            if match.status == GameStatus.LIVE.value:
                continue
            if only_future and (match.utc_date is None or match.utc_date.date() < today):
                continue
            fixtures.append(match)
        logger.info(
            "[%s] %d fixtures for competition %s season %s%s",
            self.name, len(fixtures), competition_id, season, " (future only)" if only_future else "",
        )
        return fixtures

    async def aclose(self) -> None:
        await self._client.aclose()


class ApiSportsFootballProvider(_ApiSportsProvider):
    """api-sports.io football v3 fixtures."""

    name = "api_sports_football"
    sport_type = "FOOTBALL"
    _endpoint = "/fixtures"
    _status_map = _FOOTBALL_STATUS_MAP

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        super().__init__(
            settings.API_SPORTS_KEY if api_key is None else api_key,
            base_url or settings.API_SPORTS_FOOTBALL_BASE_URL,
        )

    def _parse(self, item: dict) -> Optional[ExternalMatch]:
        fixture = item.get("fixture") or {}
        teams = item.get("teams") or {}
        home, away = teams.get("home") or {}, teams.get("away") or {}
        if not home.get("name") or not away.get("name"):
            return None

        status_block = fixture.get("status") or {}
        raw_status = str(status_block.get("short") or "").upper()
        goals = item.get("goals") or {}
        home_score, away_score = _pick_score(goals, "home"), _pick_score(goals, "away")
        if raw_status in _EXTRA_TIME_STATUSES:
            home_score, away_score = _extra_time_score(goals, home_score, away_score)

        league = item.get("league") or {}
        return ExternalMatch(
            id=str(fixture.get("id")),
            status=self.map_status(raw_status),
            external_status=raw_status,
            home_team_id=str(home.get("id") or ""),
            home_team_name=str(home["name"]),
            away_team_id=str(away.get("id") or ""),
            away_team_name=str(away["name"]),
            home_score=home_score,
            away_score=away_score,
            elapsed_minute=_as_int(status_block.get("elapsed")),
            utc_date=parse_feed_date(fixture.get("date")),
            competition_id=str(league.get("id") or ""),
            competition_name=str(league.get("name") or ""),
            home_team_logo=home.get("logo"),
            away_team_logo=away.get("logo"),
        )


class ApiSportsRugbyProvider(_ApiSportsProvider):
    """api-sports.io rugby v1 games."""

    name = "api_sports_rugby"
    sport_type = "RUGBY"
    _endpoint = "/games"
    _status_map = _RUGBY_STATUS_MAP

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        super().__init__(
            settings.rugby_api_key if api_key is None else api_key,
            base_url or settings.API_SPORTS_RUGBY_BASE_URL,
        )

    def _parse(self, item: dict) -> Optional[ExternalMatch]:
        # Flat /games payload keeps id/date/status at the top level, the
        # nested /fixtures payload wraps them in "fixture".
        fixture = item.get("fixture") if isinstance(item.get("fixture"), dict) else item
        teams = item.get("teams") or {}
        home, away = teams.get("home") or {}, teams.get("away") or {}
        if not home.get("name") or not away.get("name"):
            return None

        status_block = fixture.get("status") or {}
        if isinstance(status_block, str):
            status_block = {"short": status_block}
        raw_status = str(status_block.get("short") or "").upper()

        score_block = item.get("scores") if item.get("scores") is not None else item.get("goals")
        home_score, away_score = _pick_score(score_block, "home"), _pick_score(score_block, "away")
        if raw_status in _EXTRA_TIME_STATUSES:
            home_score, away_score = _extra_time_score(score_block, home_score, away_score)
        league = item.get("league") or {}
        return ExternalMatch(
            id=str(fixture.get("id")),
            status=self.map_status(raw_status),
            external_status=raw_status,
            home_team_id=str(home.get("id") or ""),
            home_team_name=str(home["name"]),
            away_team_id=str(away.get("id") or ""),
            away_team_name=str(away["name"]),
            home_score=home_score,
            away_score=away_score,
            elapsed_minute=_as_int(status_block.get("elapsed") or fixture.get("elapsed")),
            utc_date=parse_feed_date(fixture.get("date")),
            competition_id=str(league.get("id") or ""),
            competition_name=str(league.get("name") or ""),
            home_team_logo=home.get("logo"),
            away_team_logo=away.get("logo"),
        )


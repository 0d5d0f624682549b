"""
backend/app/services/import_service.py

Purpose:
    Competition import from the api-sports league catalog: list the feed's
    competitions, import one season (competition, teams, games) and pick up
    fixtures added to the feed after the import.

Dependencies:
    - app.database
    - app.services.team_service
    - app.utils.team_matching
    - app.workers.live_sync (provider per sport)
"""

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, status

import app.database as _db
from app.models.game import DecidedBy, GameStatus, SportType
from app.providers.base import BaseScoreProvider, ExternalCompetition, ExternalMatch, ProviderError
from app.services import team_service
from app.utils import ensure_utc, utcnow
from app.utils.team_matching import find_best_team_match
from app.workers.live_sync import get_provider

logger = logging.getLogger("pronofoot.import_service")

INTERNATIONAL_KEYWORDS = (
    "champions league", "europa league", "europa conference", "world cup",
    "euro", "copa america", "africa cup", "asia cup", "confederations cup",
    "club world cup", "super cup", "nations league", "olympic", "fifa",
    "uefa", "conmebol", "caf", "afc", "concacaf", "ofc",
)

# Weighted find_best_team_match score needed to reuse a registered team
TEAM_MATCH_MIN_SCORE = 0.85
RECENT_PAST_DAYS = 183
OLDEST_SEASON = 2020
MAX_SKIPPED_REASONS = 5

_SEASON_IN_NAME = re.compile(r"(\d{4})(?:-(\d{2,4}))?$")


# ---------------------------------------------------------------------------
# Season helpers
# ---------------------------------------------------------------------------

def season_start_year(season: Any) -> str:
    """"2024", 2024 and "2024-2025" all give "2024"."""
    text = str(season or "")
    if "-" in text:
        return text.split("-")[0]
    return re.sub(r"\D", "", text)


def season_label(season: Any) -> str:
    """Suffix for competition names: "2024" -> "2024-25", "2024-2025" -> "2024-25"."""
    text = str(season or "")
    if len(text) == 4 and text.isdigit():
        return f"{text}-{str(int(text) + 1)[-2:]}"
    parts = text.split("-")
    if len(parts) == 2:
        end = parts[1][-2:] if len(parts[1]) == 4 else parts[1]
        return f"{parts[0]}-{end}"
    return text


def season_from_name(name: str) -> Optional[str]:
    """Start year from a trailing season suffix ("Top 14 2025-26" -> "2025")."""
    match = _SEASON_IN_NAME.search(name.strip())
    return match.group(1) if match else None


def base_competition_name(name: str) -> str:
    return re.sub(r"\s+\d{4}(-\d{2,4})?$", "", name).strip()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def is_international(competition: ExternalCompetition) -> bool:
    name = competition.name.lower()
    return (
        any(keyword in name for keyword in INTERNATIONAL_KEYWORDS)
        or competition.country in ("", "World")
    )


def _catalog_provider(sport_type: str) -> BaseScoreProvider:
    provider = get_provider(sport_type)
    if not provider.supports_catalog:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Competition import needs the api-sports feed (USE_API_V2).",
        )
    return provider


def _feed_error(exc: ProviderError) -> HTTPException:
    message = str(exc)
    if exc.status_code == 429 or "limit" in message.lower():
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Feed request limit reached, try again later.",
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Score feed error: {message}",
    )


def _serialize_external(competition: ExternalCompetition) -> dict:
    return {
        "id": competition.id,
        "name": competition.name,
        "country": competition.country,
        "type": competition.type,
        "logo": competition.logo,
        "seasons": [
            {"year": s.year, "start": s.start, "end": s.end, "current": s.current}
            for s in competition.seasons
        ],
    }


async def list_external_competitions(sport_type: str) -> dict:
    """The feed's competitions, split into international and per-country lists."""
    provider = _catalog_provider(sport_type)
    try:
        competitions = await provider.get_competitions()
    except ProviderError as exc:
        logger.error("External competitions unavailable for %s: %s", sport_type, exc)
        raise _feed_error(exc) from exc

    international, local = [], []
    by_country: dict[str, list[dict]] = {}
    for competition in competitions:
        row = _serialize_external(competition)
        if is_international(competition):
            international.append(row)
            continue
        local.append(row)
        by_country.setdefault(competition.country or "Other", []).append(row)

    return {
        "competitions": [_serialize_external(c) for c in competitions],
        "international_competitions": international,
        "local_competitions": local,
        "competitions_by_country": by_country,
        "countries": sorted(c for c in by_country if c != "Other"),
        "attribution": provider.attribution(),
    }


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _recent_or_future(fixtures: list[ExternalMatch], now: datetime) -> list[ExternalMatch]:
    oldest = now - timedelta(days=RECENT_PAST_DAYS)
    return [f for f in fixtures if f.utc_date is not None and f.utc_date >= oldest]


async def _season_for_import(
    provider: BaseScoreProvider, external_id: int, season: str, sport_type: str,
):
    """Season start year to query, and the feed's season when it has one.

    Football must ask for the feed's current (or next) season. Rugby seasons
    are less reliable in the catalog, so the feed's season wins unless an
    older season was asked for explicitly.
    """
    selected = await provider.get_current_or_next_season(external_id)
    requested = season_start_year(season)
    is_rugby = sport_type == SportType.RUGBY.value

    if selected is None:
        if is_rugby:
            logger.warning("No season in catalog for rugby competition %s, using %s", external_id, requested)
            return requested, None
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No season found for competition {external_id}.",
        )

    available = season_start_year(selected.year)
    if not is_rugby:
        if available != requested:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Season mismatch: requested {season}, available {selected.year}.",
            )
        return available, selected
    if not selected.current and requested.isdigit() and available.isdigit() and int(requested) < int(available):
        return requested, selected
    return available, selected


async def _fixtures_for_import(
    provider: BaseScoreProvider, external_id: int, season: str, sport_type: str, only_future: bool,
) -> tuple[list[ExternalMatch], str]:
    """Fixtures to import and the season they came from.

    An empty future-only list falls back to recent past plus future games;
    rugby also looks at the two previous seasons.
    """
    fixtures = await provider.get_fixtures_by_competition(external_id, season, only_future)
    if fixtures or not only_future:
        return fixtures, season

    now = utcnow()
    fixtures = _recent_or_future(await provider.get_fixtures_by_competition(external_id, season, False), now)
    if fixtures or sport_type != SportType.RUGBY.value or not season.isdigit():
        return fixtures, season

    for year in (int(season) - 1, int(season) - 2):
        if year < OLDEST_SEASON:
            break
        previous = _recent_or_future(
            await provider.get_fixtures_by_competition(external_id, str(year), False), now,
        )
        if previous:
            logger.info("Using %d fixtures of season %d for competition %s", len(previous), year, external_id)
            return previous, str(year)
    return [], season


def _season_bounds(selected, season: str) -> tuple[datetime, datetime]:
    if selected is not None and selected.start and selected.end:
        start, end = selected.start, selected.end
    else:
        # September to June, the usual club season
        year = int(season) if season.isdigit() else utcnow().year
        start, end = date(year, 9, 1), date(year + 1, 6, 30)
    return (
        datetime(start.year, start.month, start.day, tzinfo=timezone.utc),
        datetime(end.year, end.month, end.day, tzinfo=timezone.utc),
    )


def _snapshot(team: dict) -> dict:
    return {
        "id": str(team["_id"]),
        "name": team["name"],
        "short_name": team.get("short_name"),
        "logo": team.get("logo"),
    }


def _match_registered(name: str, registry: list[dict]) -> Optional[dict]:
    match = find_best_team_match(name, registry)
    if match and match.score >= TEAM_MATCH_MIN_SCORE:
        return match.team
    return None


async def _resolve_team(
    name: str, logo: Optional[str], sport_type: str, registry: list[dict],
) -> tuple[dict, bool]:
    """Registered team for a feed team name, created when nothing matches.

    Returns the team and whether it was created. The registry list is kept
    up to date so later fixtures reuse the new team.
    """
    team = _match_registered(name, registry)
    if team is not None:
        if logo and team.get("logo") != logo:
            team = await team_service.update_team(str(team["_id"]), {"logo": logo})
            registry[:] = [t for t in registry if t["_id"] != team["_id"]] + [team]
        return team, False

    team = await team_service.create_team(name, sport_type, logo=logo)
    registry.append(team)
    return team, True


def _game_doc(fixture: ExternalMatch, competition_id: str, home: dict, away: dict) -> dict:
    now = utcnow()
    doc = {
        "competition_id": competition_id,
        "home_team": _snapshot(home),
        "away_team": _snapshot(away),
        "date": fixture.utc_date,
        "status": fixture.status,
        "external_id": fixture.id,
        "external_status": fixture.external_status,
        "home_score": None,
        "away_score": None,
        "live_home_score": None,
        "live_away_score": None,
        "created_at": now,
        "updated_at": now,
    }
    finished = fixture.status == GameStatus.FINISHED.value
    if finished and fixture.home_score is not None and fixture.away_score is not None:
        doc.update({
            "home_score": fixture.home_score,
            "away_score": fixture.away_score,
            "decided_by": DecidedBy.AET.value if fixture.external_status in ("AET", "PEN") else DecidedBy.FT.value,
            "finished_at": now,
        })
    return doc


async def import_competition(
    external_id: int, season: str, sport_type: str, only_future: bool = True,
) -> dict:
    """Create a competition with its teams and games from one feed season."""
    provider = _catalog_provider(sport_type)
    try:
        season_for_api, selected = await _season_for_import(provider, external_id, season, sport_type)
        fixtures, season_for_api = await _fixtures_for_import(
            provider, external_id, season_for_api, sport_type, only_future,
        )
    except ProviderError as exc:
        logger.error("Import of competition %s failed: %s", external_id, exc)
        raise _feed_error(exc) from exc

    if not fixtures:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"No fixtures found{' (future games only)' if only_future else ''} "
                f"for competition {external_id}, season {season_for_api}."
            ),
        )

    info: Optional[ExternalCompetition] = None
    try:
        info = next((c for c in await provider.get_competitions() if c.id == external_id), None)
    except ProviderError as exc:
        logger.warning("Competition list unavailable, importing %s without its name: %s", external_id, exc)
    base_name = info.name if info else f"Competition {external_id}"
    name = f"{base_name} {season_label(season)}"
    if await _db.db.competitions.find_one({"name": name}, {"_id": 1}):
        logger.warning("Competition %s already exists, importing it again", name)

    start_date, end_date = _season_bounds(selected, season_for_api)
    now = utcnow()
    competition = {
        "name": name,
        "description": f"{base_name} - Season {season}",
        "start_date": start_date,
        "end_date": end_date,
        "status": "UPCOMING",
        "logo": info.logo if info else None,
        "sport_type": sport_type,
        "external_id": str(external_id),
        "external_season": season_for_api,
        "created_at": now,
        "updated_at": now,
    }
    result = await _db.db.competitions.insert_one(competition)
    competition["_id"] = result.inserted_id
    competition_id = str(result.inserted_id)

    registry = await team_service.list_teams(sport_type)
    teams_by_external: dict[str, dict] = {}
    created_teams, found_teams = [], []
    for fixture in fixtures:
        for team_id, team_name, logo in (
            (fixture.home_team_id, fixture.home_team_name, fixture.home_team_logo),
            (fixture.away_team_id, fixture.away_team_name, fixture.away_team_logo),
        ):
            key = team_id or team_name
            if key in teams_by_external:
                continue
            team, created = await _resolve_team(team_name, logo, sport_type, registry)
            teams_by_external[key] = team
            (created_teams if created else found_teams).append(team["name"])

    created_games, skipped = 0, []
    for fixture in fixtures:
        home = teams_by_external.get(fixture.home_team_id or fixture.home_team_name)
        away = teams_by_external.get(fixture.away_team_id or fixture.away_team_name)
        if home is None or away is None or fixture.utc_date is None:
            skipped.append({"fixture_id": fixture.id, "reason": "Missing team or date", "label": fixture.label})
            continue
        await _db.db.games.insert_one(_game_doc(fixture, competition_id, home, away))
        created_games += 1

    logger.info(
        "Imported %s: %d teams created, %d found, %d games created, %d skipped",
        name, len(created_teams), len(found_teams), created_games, len(skipped),
    )
    return {
        "competition": {
            "id": competition_id,
            "name": name,
            "sport_type": sport_type,
            "status": competition["status"],
            "start_date": start_date,
            "end_date": end_date,
            "external_id": competition["external_id"],
            "external_season": season_for_api,
        },
        "teams": {"created": len(created_teams), "found": len(found_teams), "total": len(teams_by_external)},
        "games": {"created": created_games, "skipped": len(skipped), "total": len(fixtures)},
        "skipped_games": skipped,
        "attribution": provider.attribution(),
    }


# ---------------------------------------------------------------------------
# New games of imported competitions
# ---------------------------------------------------------------------------

async def _external_reference(
    competition: dict, provider: BaseScoreProvider,
) -> tuple[Optional[int], Optional[str], Optional[str]]:
    """(external id, season, reason when unknown) of a local competition.

    Competitions imported before the external link was stored are found by
    their name without the season suffix.
    """
    season = competition.get("external_season") or season_from_name(competition["name"])
    if not season:
        return None, None, "Could not extract season from name"
    if competition.get("external_id"):
        return int(competition["external_id"]), season, None

    base_name = base_competition_name(competition["name"]).lower()
    for external in await provider.get_competitions():
        if external.name.lower() == base_name:
            return external.id, season, None
    return None, None, "External competition not found"


async def _sync_competition(competition: dict) -> dict:
    competition_id = str(competition["_id"])
    sport_type = competition.get("sport_type", SportType.FOOTBALL.value)
    row: dict[str, Any] = {
        "competition_id": competition_id,
        "competition_name": competition["name"],
        "new_games": 0,
        "rescheduled": 0,
    }
    provider = get_provider(sport_type)
    if not provider.supports_catalog:
        return {**row, "status": "skipped", "reason": "Feed has no competition catalog"}

    external_id, season, reason = await _external_reference(competition, provider)
    if external_id is None:
        logger.info("Skipping %s: %s", competition["name"], reason)
        return {**row, "status": "skipped", "reason": reason}

    games = await _db.db.games.find({"competition_id": competition_id}).to_list(length=10_000)
    by_external = {g["external_id"]: g for g in games if g.get("external_id")}
    fixtures = await provider.get_fixtures_by_competition(external_id, season, True)
    registry = await team_service.list_teams(sport_type)

    skipped_reasons: list[str] = []
    skipped = 0
    for fixture in fixtures:
        existing = by_external.get(fixture.id)
        if existing is not None:
            moved = (
                existing["status"] == GameStatus.UPCOMING.value
                and fixture.utc_date is not None
                and existing.get("date") is not None
                and fixture.utc_date != ensure_utc(existing["date"])
            )
            if moved:
                await _db.db.games.update_one(
                    {"_id": existing["_id"]},
                    {"$set": {"date": fixture.utc_date, "updated_at": utcnow()}},
                )
                row["rescheduled"] += 1
            continue

        home = _match_registered(fixture.home_team_name, registry)
        away = _match_registered(fixture.away_team_name, registry)
        if home is None or away is None or fixture.utc_date is None:
            skipped += 1
            skipped_reasons.append(f"Team not found: {fixture.home_team_name} or {fixture.away_team_name}")
            continue
        await _db.db.games.insert_one(_game_doc(fixture, competition_id, home, away))
        row["new_games"] += 1

    logger.info(
        "Synced %s: %d new games, %d rescheduled, %d skipped",
        competition["name"], row["new_games"], row["rescheduled"], skipped,
    )
    status_label = "success" if row["new_games"] or row["rescheduled"] else "no_new_games"
    return {
        **row,
        "status": status_label,
        "skipped": skipped,
        "skipped_reasons": skipped_reasons[:MAX_SKIPPED_REASONS],
    }


async def sync_new_games() -> dict:
    """Add fixtures the feed published after import to UPCOMING/ACTIVE competitions.

    Known fixtures that have not kicked off follow the feed's new date. One
    competition failing does not stop the others.
    """
    competitions = await _db.db.competitions.find(
        {"status": {"$in": ["UPCOMING", "ACTIVE"]}}
    ).to_list(length=1000)

    results = []
    for competition in competitions:
        try:
            results.append(await _sync_competition(competition))
        except ProviderError as exc:
            logger.error("Sync of new games failed for %s: %s", competition["name"], exc)
            results.append({
                "competition_id": str(competition["_id"]),
                "competition_name": competition["name"],
                "status": "error",
                "error": str(exc),
                "new_games": 0,
                "rescheduled": 0,
            })

    return {
        "summary": {
            "total_competitions": len(competitions),
            "successful": sum(1 for r in results if r["status"] == "success"),
            "total_new_games": sum(r["new_games"] for r in results),
        },
        "results": results,
    }

"""
backend/app/workers/live_sync.py

Purpose:
    Live score reconciliation. Polls the sport's score feed, matches external
    fixtures to our LIVE games (stored external id first, fuzzy team names
    second), writes live scores and statuses, finishes games once the feed
    confirms it and auto-finishes games the feed has forgotten.

Dependencies:
    - app.providers.football_data / app.providers.api_sports
    - app.utils.team_matching
    - app.services.game_service
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

import app.database as _db
from app.config import settings
from app.models.game import DecidedBy, GameStatus, SportType
from app.providers.api_sports import ApiSportsFootballProvider, ApiSportsRugbyProvider
from app.providers.base import BaseScoreProvider, ExternalMatch, ProviderError
from app.providers.football_data import FootballDataProvider
from app.services.game_service import auto_finish_game, finalize_game
from app.utils import ensure_utc, hours_between, utcnow
from app.utils.team_matching import (
    competition_similarity,
    competitions_match,
    find_best_team_match,
)
from app.workers._state import set_synced

logger = logging.getLogger("pronofoot.live_sync")

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

# Kickoff distance (hours) for a confident match and for finishing a game
STRICT_WINDOW_HOURS = 0.5
LOOSE_WINDOW_HOURS = 2.0
LOW_MAX_DATE_DIFF_HOURS = 1.0
STALE_EXTERNAL_ID_DAYS = 7

_NOT_STARTED = {"NS", "TBD", "POST"}
_IN_PROGRESS = {"HT", "1H", "2H"}
_EXTRA_TIME = {"AET", "PEN"}

_providers: dict[str, BaseScoreProvider] = {}
_locks: dict[str, asyncio.Lock] = {}


def get_provider(sport_type: str) -> BaseScoreProvider:
    """Provider per sport, kept for the process lifetime so circuit breakers persist.

    Rugby always uses api-sports; football uses football-data.org unless
    USE_API_V2 switches it to api-sports.
    """
    provider = _providers.get(sport_type)
    if provider is None:
        if sport_type == SportType.RUGBY.value:
            provider = ApiSportsRugbyProvider()
        elif settings.USE_API_V2:
            provider = ApiSportsFootballProvider()
        else:
            provider = FootballDataProvider()
        _providers[sport_type] = provider
    return provider


async def close_providers() -> None:
    for provider in _providers.values():
        await provider.aclose()
    _providers.clear()


@dataclass
class LiveSyncReport:
    sport_type: str
    provider: str
    attribution: str
    message: str = ""
    skipped: bool = False
    total_live_games: int = 0
    external_matches_found: int = 0
    processed_matches: int = 0
    matched_games: int = 0
    rejected_count: int = 0
    updated_games: list[dict] = field(default_factory=list)
    rejected_matches: list[dict] = field(default_factory=list)
    unmatched_matches: list[dict] = field(default_factory=list)
    last_sync: datetime = field(default_factory=utcnow)

    @property
    def has_updates(self) -> bool:
        return len(self.updated_games) > 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["has_updates"] = self.has_updates
        return data


@dataclass
class _Match:
    game: dict
    confidence: str
    method: str


def _describe(ext: ExternalMatch) -> dict:
    return {
        "id": ext.id,
        "home": ext.home_team_name,
        "away": ext.away_team_name,
        "competition": ext.competition_name,
    }


def _team_refs(games: list[dict]) -> list[dict]:
    teams: dict[str, dict] = {}
    for game in games:
        for side in ("home_team", "away_team"):
            team = game[side]
            teams[team["id"]] = {"id": team["id"], "name": team["name"], "short_name": team.get("short_name")}
    return list(teams.values())


def _has_teams(game: dict, team_ids: set[str]) -> bool:
    return {game["home_team"]["id"], game["away_team"]["id"]} == team_ids


async def _load_live_games(sport_type: str) -> tuple[list[dict], dict[str, dict]]:
    competitions = await _db.db.competitions.find(
        {"sport_type": sport_type}, {"name": 1, "sport_type": 1},
    ).to_list(length=1000)
    competitions_by_id = {str(c["_id"]): c for c in competitions}
    if not competitions_by_id:
        return [], {}
    games = await _db.db.games.find({
        "status": GameStatus.LIVE.value,
        "competition_id": {"$in": list(competitions_by_id)},
    }).sort("date", 1).to_list(length=500)
    return games, competitions_by_id


async def _fetch_external(provider: BaseScoreProvider, games: list[dict]) -> list[ExternalMatch]:
    """Live feed + today's finished matches + direct lookups, deduplicated by id."""
    matches = list(await provider.get_live_matches())

    today = utcnow().date()
    try:
        recent = await provider.get_matches_by_date_range(today, today + timedelta(days=1))
        matches.extend(m for m in recent if m.status == GameStatus.FINISHED.value)
    except ProviderError as e:
        logger.warning("[%s] Could not fetch today's matches: %s", provider.name, e)

    for game in games:
        if not game.get("external_id"):
            continue
        try:
            match = await provider.get_match_by_id(str(game["external_id"]))
        except ProviderError as e:
            logger.warning("[%s] Lookup of external id %s failed: %s", provider.name, game["external_id"], e)
            continue
        if match is not None:
            matches.append(match)

    unique: dict[str, ExternalMatch] = {}
    for match in matches:
        unique.setdefault(match.id, match)
    return list(unique.values())


async def _clear_external_id(game: dict, reason: str) -> None:
    logger.warning(
        "Clearing external id %s of game %s (%s vs %s): %s",
        game.get("external_id"), game["_id"],
        game["home_team"]["name"], game["away_team"]["name"], reason,
    )
    await _db.db.games.update_one(
        {"_id": game["_id"]}, {"$set": {"external_id": None, "external_status": None}},
    )
    game["external_id"] = None


async def _match_by_external_id(
    ext: ExternalMatch, games: list[dict], teams: list[dict]
) -> Optional[_Match]:
    game = next((g for g in games if g.get("external_id") and str(g["external_id"]) == ext.id), None)
    if game is None:
        return None

    home = find_best_team_match(ext.home_team_name, teams)
    away = find_best_team_match(ext.away_team_name, teams)
    game_teams = {game["home_team"]["id"], game["away_team"]["id"]}
    if not home or not away or home.team["id"] not in game_teams or away.team["id"] not in game_teams:
        await _clear_external_id(game, f"feed now reports {ext.label}")
        return None

    if ext.utc_date is None:
        return _Match(game, MEDIUM, "external id + teams (no date)")
    diff = hours_between(ext.utc_date, game["date"])
    if diff > STALE_EXTERNAL_ID_DAYS * 24:
        await _clear_external_id(game, f"kickoff {diff / 24:.1f} days apart")
        return None
    if diff <= LOW_MAX_DATE_DIFF_HOURS:
        return _Match(game, HIGH, "external id + teams + date")
    return None


def _match_by_teams(
    ext: ExternalMatch, games: list[dict], teams: list[dict], competitions: dict[str, dict]
) -> Optional[_Match]:
    home = find_best_team_match(ext.home_team_name, teams)
    away = find_best_team_match(ext.away_team_name, teams)
    if not home or not away:
        return None
    threshold = settings.LIVE_SYNC_MIN_CONFIDENCE
    if home.score < threshold or away.score < threshold or (home.score + away.score) / 2 < threshold:
        logger.debug(
            "Team match below %.2f for %s (home=%.2f away=%.2f)",
            threshold, ext.label, home.score, away.score,
        )
        return None

    wanted = {home.team["id"], away.team["id"]}
    candidates = [g for g in games if _has_teams(g, wanted)]
    if not candidates:
        return None

    def competition_name(game: dict) -> str:
        return competitions.get(game["competition_id"], {}).get("name", "")

    if ext.utc_date is None:
        if len(candidates) == 1 and ext.competition_name and competitions_match(
            ext.competition_name, competition_name(candidates[0])
        ):
            return _Match(candidates[0], MEDIUM, "teams + competition (no date)")
        return None

    ranked = sorted(
        (
            (competition_similarity(ext.competition_name, competition_name(g)),
             hours_between(ext.utc_date, g["date"]), g)
            for g in candidates
        ),
        key=lambda item: (-item[0], item[1]),
    )
    for comp_score, diff, game in ranked:
        if diff <= STRICT_WINDOW_HOURS and comp_score >= 0.7:
            return _Match(game, MEDIUM, f"teams + date ({diff:.2f}h) + competition ({comp_score:.2f})")
    for comp_score, diff, game in ranked:
        if (diff <= STRICT_WINDOW_HOURS and comp_score >= 0.6) or (
            diff <= LOOSE_WINDOW_HOURS and comp_score >= 0.9
        ):
            return _Match(game, LOW, f"teams + date ({diff:.2f}h) + competition ({comp_score:.2f})")
    return None


def _final_score_fields(ext: ExternalMatch, home: Optional[int], away: Optional[int]) -> dict:
    return {
        "home_score": home,
        "away_score": away,
        "decided_by": (DecidedBy.AET if ext.external_status in _EXTRA_TIME else DecidedBy.FT).value,
        "finished_at": utcnow(),
        "elapsed_minute": None,
    }


async def _apply(
    ext: ExternalMatch, match: _Match, competitions: dict[str, dict], report: LiveSyncReport
) -> Optional[dict]:
    """Write one external match onto its game. Returns the report entry, or None if skipped."""
    game = match.game
    comp_name = competitions.get(game["competition_id"], {}).get("name", "")
    date_diff = hours_between(ext.utc_date, game["date"]) if ext.utc_date else None
    comp_ok = bool(ext.competition_name) and competitions_match(ext.competition_name, comp_name)

    if match.confidence == LOW:
        reasons = []
        if ext.status == GameStatus.FINISHED.value:
            reasons.append("trying to set FINISHED status")
        if date_diff is not None and date_diff > LOW_MAX_DATE_DIFF_HOURS:
            reasons.append(f"large date difference ({date_diff:.2f}h)")
        if not comp_ok:
            reasons.append("competition mismatch")
        if reasons:
            report.rejected_count += 1
            report.rejected_matches.append({**_describe(ext), "reason": " + ".join(reasons), "method": match.method})
            return None

    if ext.external_status in _NOT_STARTED:
        return None

    report.matched_games += 1
    if ext.competition_name and date_diff is not None and date_diff > LOW_MAX_DATE_DIFF_HOURS and not comp_ok:
        logger.info("Skipping %s: %.2fh apart in another competition", ext.label, date_diff)
        return None

    old_home, old_away = game.get("live_home_score"), game.get("live_away_score")
    new_home = ext.home_score if ext.home_score is not None else old_home
    new_away = ext.away_score if ext.away_score is not None else old_away

    new_status = ext.status
    if ext.external_status in _IN_PROGRESS and new_status == GameStatus.FINISHED.value:
        new_status = GameStatus.LIVE.value
    if game["status"] == GameStatus.LIVE.value and new_status == GameStatus.UPCOMING.value:
        new_status = GameStatus.LIVE.value

    update: dict[str, Any] = {
        "external_id": ext.id,
        "external_status": ext.external_status,
        "live_home_score": new_home,
        "live_away_score": new_away,
        "last_sync_at": utcnow(),
    }
    if ext.external_status == "HT":
        update["elapsed_minute"] = None
    elif ext.elapsed_minute is not None:
        update["elapsed_minute"] = ext.elapsed_minute

    if new_status == GameStatus.FINISHED.value:
        close_kickoff = date_diff is not None and date_diff <= STRICT_WINDOW_HOURS
        if not comp_ok or not close_kickoff:
            logger.warning(
                "Refusing to finish %s (%s): competition match=%s, kickoff diff=%s; keeping %s",
                ext.label, match.confidence, comp_ok,
                f"{date_diff:.2f}h" if date_diff is not None else "n/a", game["status"],
            )
            new_status = game["status"]
        elif new_home is None or new_away is None:
            logger.warning("Refusing to finish %s without a final score", ext.label)
            new_status = game["status"]
        else:
            update.update(_final_score_fields(ext, new_home, new_away))
    update["status"] = new_status

    await _db.db.games.update_one({"_id": game["_id"]}, {"$set": update})
    updated = {**game, **update}

    if new_status == GameStatus.FINISHED.value:
        await finalize_game(updated)
        logger.info(
            "Finished %s vs %s %s-%s (%s, %s)",
            game["home_team"]["name"], game["away_team"]["name"],
            new_home, new_away, update["decided_by"], match.method,
        )

    return {
        "id": str(game["_id"]),
        "home_team": game["home_team"]["name"],
        "away_team": game["away_team"]["name"],
        "old_home_score": old_home if old_home is not None else 0,
        "old_away_score": old_away if old_away is not None else 0,
        "new_home_score": new_home if new_home is not None else 0,
        "new_away_score": new_away if new_away is not None else 0,
        "elapsed_minute": updated.get("elapsed_minute"),
        "status": new_status,
        "external_status": ext.external_status,
        "decided_by": updated.get("decided_by"),
        "confidence": match.confidence,
        "score_changed": (new_home, new_away) != (old_home, old_away),
        "status_changed": new_status != game["status"],
    }


async def _auto_finish_stale(games: list[dict], report: LiveSyncReport) -> None:
    cutoff = utcnow() - timedelta(hours=settings.LIVE_AUTO_FINISH_HOURS)
    for game in games:
        if ensure_utc(game["date"]) >= cutoff:
            continue
        try:
            finished = await auto_finish_game(game)
        except Exception as e:
            logger.error("Auto-finish failed for game %s: %s", game["_id"], e)
            continue
        report.updated_games.append({
            "id": str(game["_id"]),
            "home_team": game["home_team"]["name"],
            "away_team": game["away_team"]["name"],
            "old_home_score": game.get("live_home_score") or 0,
            "old_away_score": game.get("live_away_score") or 0,
            "new_home_score": finished["home_score"],
            "new_away_score": finished["away_score"],
            "elapsed_minute": None,
            "status": GameStatus.FINISHED.value,
            "external_status": "AUTO_FINISHED",
            "decided_by": finished["decided_by"],
            "confidence": None,
            "score_changed": False,
            "status_changed": True,
        })


async def sync_live_scores(sport_type: str, provider: Optional[BaseScoreProvider] = None) -> LiveSyncReport:
    """One reconciliation pass for one sport."""
    provider = provider or get_provider(sport_type)
    report = LiveSyncReport(sport_type=sport_type, provider=provider.name, attribution=provider.attribution())

    games, competitions = await _load_live_games(sport_type)
    report.total_live_games = len(games)
    if not games:
        report.skipped = True
        report.message = f"No LIVE {sport_type.lower()} games to update"
        return report

    external = await _fetch_external(provider, games)
    report.external_matches_found = len(external)
    if not external:
        await _auto_finish_stale(games, report)
        report.message = f"No external matches; auto-finished {len(report.updated_games)} stale games"
        return report

    teams = _team_refs(games)
    processed: set = set()
    for ext in external:
        report.processed_matches += 1
        try:
            match = await _match_by_external_id(ext, games, teams)
            if match is None:
                match = _match_by_teams(ext, games, teams, competitions)
            if match is None:
                report.unmatched_matches.append({**_describe(ext), "reason": "no matching game"})
                continue
            if match.game["_id"] in processed or match.game["status"] == GameStatus.FINISHED.value:
                continue

            entry = await _apply(ext, match, competitions, report)
            if entry is not None:
                processed.add(match.game["_id"])
                report.updated_games.append(entry)
        except Exception as e:
            logger.error("Live sync error for %s: %s", ext.label, e)

    await _auto_finish_stale([g for g in games if g["_id"] not in processed], report)

    report.message = f"Updated {len(report.updated_games)} games from {provider.name}"
    if report.rejected_matches:
        logger.info("[%s] Rejected %d low-confidence matches", sport_type, len(report.rejected_matches))
    if report.unmatched_matches:
        logger.debug("[%s] %d external matches without a game", sport_type, len(report.unmatched_matches))
    return report


async def run_live_sync(sport_type: str) -> LiveSyncReport:
    """Scheduler/admin entry point: one sport, never overlapping with itself."""
    lock = _locks.setdefault(sport_type, asyncio.Lock())
    async with lock:
        report = await sync_live_scores(sport_type)
    if report.has_updates:
        logger.info("[%s] %s", sport_type, report.message)
    await set_synced(
        f"live_sync:{sport_type.lower()}",
        {
            "updated": len(report.updated_games),
            "matched": report.matched_games,
            "rejected": report.rejected_count,
            "unmatched": len(report.unmatched_matches),
            "skipped": report.skipped,
        },
    )
    return report


async def run_all_live_syncs() -> None:
    if not settings.LIVE_SYNC_ENABLED:
        return
    for sport_type in (SportType.FOOTBALL.value, SportType.RUGBY.value):
        try:
            await run_live_sync(sport_type)
        except Exception as e:
            logger.error("Live sync for %s failed: %s", sport_type, e)

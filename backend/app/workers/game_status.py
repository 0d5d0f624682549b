"""Kickoff flips: UPCOMING games become LIVE shortly after their start time.

Also activates UPCOMING competitions once one of their games is under way.
Runs every minute from the scheduler; a single process owns the scheduler.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import app.database as _db
from app.config import settings
from app.models.game import GameStatus
from app.utils import ensure_utc, utcnow
from app.workers._state import set_synced

logger = logging.getLogger("pronofoot.game_status")


async def flip_due_games() -> int:
    """UPCOMING -> LIVE once date <= now - grace."""
    due = utcnow() - timedelta(minutes=settings.GAME_START_GRACE_MINUTES)
    result = await _db.db.games.update_many(
        {"status": GameStatus.UPCOMING.value, "date": {"$lte": due}},
        {"$set": {"status": GameStatus.LIVE.value}},
    )
    if result.modified_count:
        logger.info("Flipped %d games to LIVE", result.modified_count)
    return result.modified_count


async def activate_competitions() -> int:
    """UPCOMING competitions with at least one LIVE or FINISHED game become ACTIVE."""
    started = await _db.db.games.find(
        {"status": {"$in": [GameStatus.LIVE.value, GameStatus.FINISHED.value]}},
        {"competition_id": 1},
    ).to_list(length=10_000)
    competition_ids = {g["competition_id"] for g in started}
    if not competition_ids:
        return 0

    candidates = await _db.db.competitions.find(
        {"status": {"$in": ["UPCOMING", "upcoming"]}}, {"name": 1},
    ).to_list(length=1000)
    to_activate = [c for c in candidates if str(c["_id"]) in competition_ids]
    if not to_activate:
        return 0

    result = await _db.db.competitions.update_many(
        {"_id": {"$in": [c["_id"] for c in to_activate]}},
        {"$set": {"status": "ACTIVE"}},
    )
    logger.info("Activated competitions: %s", ", ".join(c["name"] for c in to_activate))
    return result.modified_count


async def next_kickoff() -> Optional[datetime]:
    games = await _db.db.games.find(
        {"status": GameStatus.UPCOMING.value, "date": {"$gt": utcnow()}}, {"date": 1},
    ).sort("date", 1).limit(1).to_list(length=1)
    return ensure_utc(games[0]["date"]) if games else None


async def update_game_statuses() -> dict:
    """Scheduler/admin entry point."""
    flipped = await flip_due_games()
    activated = await activate_competitions()
    upcoming = await next_kickoff()
    if upcoming:
        logger.debug("Next kickoff at %s", upcoming.isoformat())
    await set_synced("game_status")
    return {"games_started": flipped, "competitions_activated": activated, "next_kickoff": upcoming}

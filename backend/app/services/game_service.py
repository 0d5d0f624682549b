import logging
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, status

import app.database as _db
from app.models.game import DecidedBy, GameStatus
from app.services.bet_service import rescore_game_bets
from app.services.competition_service import award_final_winner_points, refresh_shooters
from app.utils import as_utc, utcnow

logger = logging.getLogger("pronofoot.game_service")


def serialize_game(game: dict) -> dict:
    return {
        "id": str(game["_id"]),
        "competition_id": game["competition_id"],
        "date": as_utc(game["date"]),
        "status": game["status"],
        "home_team": game["home_team"],
        "away_team": game["away_team"],
        "home_score": game.get("home_score"),
        "away_score": game.get("away_score"),
        "live_home_score": game.get("live_home_score"),
        "live_away_score": game.get("live_away_score"),
        "elapsed_minute": game.get("elapsed_minute"),
        "external_status": game.get("external_status"),
        "decided_by": game.get("decided_by"),
        "last_sync_at": as_utc(game.get("last_sync_at")),
    }


async def get_game(game_id: str) -> dict:
    game = await _db.db.games.find_one({"_id": ObjectId(game_id)})
    if not game:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found.")
    return game


async def finalize_game(game: dict) -> int:
    """Post-finish bookkeeping: rescore bets, final winner bonus, shooters.

    `game` must already carry its final scores and FINISHED status.
    Returns the number of bets rescored.
    """
    rescored = await rescore_game_bets(game)
    await award_final_winner_points(game)
    await refresh_shooters(game["competition_id"])
    return rescored


async def auto_finish_game(game: dict) -> dict:
    """Finish a game the feed stopped reporting.

    Final score: stored final score, else the last live score, else 0-0.
    """
    home = game.get("home_score")
    away = game.get("away_score")
    if home is None or away is None:
        home = game.get("live_home_score") or 0
        away = game.get("live_away_score") or 0

    now = utcnow()
    update = {
        "status": GameStatus.FINISHED.value,
        "external_status": "FINISHED",
        "home_score": home,
        "away_score": away,
        "live_home_score": home,
        "live_away_score": away,
        "decided_by": DecidedBy.FT.value,
        "elapsed_minute": None,
        "finished_at": now,
        "last_sync_at": now,
    }
    await _db.db.games.update_one({"_id": game["_id"]}, {"$set": update})
    game = {**game, **update}
    await finalize_game(game)
    logger.info(
        "Auto-finished game %s: %s %d-%d %s",
        game["_id"], game["home_team"]["name"], home, away, game["away_team"]["name"],
    )
    return game


async def manual_score_update(
    game_id: str,
    home_score: int,
    away_score: int,
    new_status: GameStatus = GameStatus.FINISHED,
    decided_by: DecidedBy = DecidedBy.FT,
) -> dict:
    """Admin override of a game's score; bets are rescored when finished."""
    game = await get_game(game_id)
    now = utcnow()
    update = {
        "home_score": home_score,
        "away_score": away_score,
        "live_home_score": home_score,
        "live_away_score": away_score,
        "status": new_status.value,
        "last_sync_at": now,
    }
    if new_status == GameStatus.FINISHED:
        update.update({
            "decided_by": decided_by.value,
            "external_status": "FINISHED",
            "elapsed_minute": None,
            "finished_at": now,
        })
    await _db.db.games.update_one({"_id": game["_id"]}, {"$set": update})
    game = {**game, **update}
    logger.info("Manual score update for game %s: %d-%d (%s)", game_id, home_score, away_score, new_status.value)

    if new_status == GameStatus.FINISHED:
        await finalize_game(game)
    return game


async def update_game_status(game_id: str, new_status: GameStatus) -> dict:
    """Admin status change; finishing requires a final score."""
    game = await get_game(game_id)
    update: dict = {"status": new_status.value}

    if new_status == GameStatus.FINISHED:
        home = game.get("home_score")
        away = game.get("away_score")
        if home is None or away is None:
            home, away = game.get("live_home_score"), game.get("live_away_score")
        if home is None or away is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot finish a game without a score.",
            )
        update.update({
            "home_score": home,
            "away_score": away,
            "decided_by": game.get("decided_by") or DecidedBy.FT.value,
            "finished_at": utcnow(),
        })
    elif new_status == GameStatus.UPCOMING:
        update.update({"live_home_score": None, "live_away_score": None, "elapsed_minute": None})

    await _db.db.games.update_one({"_id": game["_id"]}, {"$set": update})
    game = {**game, **update}
    logger.info("Game %s status -> %s", game_id, new_status.value)

    if new_status == GameStatus.FINISHED:
        await finalize_game(game)
    return game


async def update_game(game_id: str, fields: dict) -> dict:
    """Admin edit of scheduling fields (date, external_id).

    A status change goes through update_game_status, so finishing a game
    still needs a score and rescores its bets.
    """
    game = await get_game(game_id)
    update = {k: v for k, v in fields.items() if v is not None}
    new_status = update.pop("status", None)
    if update:
        await _db.db.games.update_one({"_id": game["_id"]}, {"$set": update})
        game = {**game, **update}
    if new_status is not None and GameStatus(new_status).value != game["status"]:
        game = await update_game_status(game_id, GameStatus(new_status))
    return game


async def reset_live_games(competition_id: Optional[str] = None) -> int:
    """Send LIVE games back to UPCOMING and clear their live data."""
    query: dict = {"status": GameStatus.LIVE.value}
    if competition_id:
        query["competition_id"] = competition_id
    result = await _db.db.games.update_many(
        query,
        {"$set": {
            "status": GameStatus.UPCOMING.value,
            "live_home_score": None,
            "live_away_score": None,
            "elapsed_minute": None,
            "external_status": None,
        }},
    )
    logger.warning("Reset %d LIVE games to UPCOMING", result.modified_count)
    return result.modified_count


async def list_games(
    competition_id: Optional[str] = None,
    game_status: Optional[str] = None,
    limit: int = 200,
) -> list[dict]:
    query: dict = {}
    if competition_id:
        query["competition_id"] = competition_id
    if game_status:
        query["status"] = game_status
    return await _db.db.games.find(query).sort("date", 1).limit(limit).to_list(length=limit)

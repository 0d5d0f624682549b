import logging
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.models.game import GameStatus
from app.services.scoring_service import calculate_bet_points, scoring_system_for_sport
from app.utils import as_utc, ensure_utc, utcnow

logger = logging.getLogger("pronofoot.bet_service")


async def _get_game(game_id: str) -> dict:
    game = await _db.db.games.find_one({"_id": ObjectId(game_id)})
    if not game:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Game not found.",
        )
    return game


async def _sport_type_of(competition_id: str) -> Optional[str]:
    competition = await _db.db.competitions.find_one(
        {"_id": ObjectId(competition_id)}, {"sport_type": 1},
    )
    return (competition or {}).get("sport_type")


async def is_member(competition_id: str, user_id: str) -> bool:
    membership = await _db.db.competition_users.find_one(
        {"competition_id": competition_id, "user_id": user_id}, {"_id": 1},
    )
    return membership is not None


def _validate_scores(score1: int, score2: int) -> None:
    for value in (score1, score2):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Scores must be non-negative integers.",
            )


def points_for(bet: dict, game: dict, sport_type: Optional[str]) -> Optional[int]:
    """Points of one bet on a finished game, including any final-winner bonus.

    Placeholder bets, created only to carry the bonus, never score on their
    own 0-0 prediction.
    """
    if game.get("status") != GameStatus.FINISHED.value:
        return None
    if game.get("home_score") is None or game.get("away_score") is None:
        return None
    bonus = int(bet.get("final_winner_bonus") or 0)
    if bet.get("is_placeholder"):
        return bonus
    base = calculate_bet_points(
        (bet["score1"], bet["score2"]),
        (game["home_score"], game["away_score"]),
        scoring_system_for_sport(sport_type),
    )
    return base + bonus


async def place_bet(user_id: str, game_id: str, score1: int, score2: int) -> dict:
    """Create or update the caller's bet on a game.

    Validates:
    - Game exists, is UPCOMING and has not kicked off
    - User is a member of the game's competition
    - Scores are non-negative integers
    """
    _validate_scores(score1, score2)
    game = await _get_game(game_id)

    if game["status"] != GameStatus.UPCOMING.value or ensure_utc(game["date"]) <= utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Betting is closed for this game.",
        )

    if not await is_member(game["competition_id"], user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this competition.",
        )

    now = utcnow()
    existing = await _db.db.bets.find_one({"game_id": game_id, "user_id": user_id})
    if existing:
        await _db.db.bets.update_one(
            {"_id": existing["_id"]},
            {"$set": {"score1": score1, "score2": score2, "updated_at": now}},
        )
        existing.update({"score1": score1, "score2": score2, "updated_at": now})
        logger.info("Bet updated: user=%s game=%s %d-%d", user_id, game_id, score1, score2)
        return existing

    bet_doc = {
        "game_id": game_id,
        "user_id": user_id,
        "score1": score1,
        "score2": score2,
        "points": None,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await _db.db.bets.insert_one(bet_doc)
    except DuplicateKeyError:
        # Concurrent double submit; the unique (game_id, user_id) index won
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A bet for this game already exists.",
        )
    bet_doc["_id"] = result.inserted_id
    logger.info("Bet placed: user=%s game=%s %d-%d", user_id, game_id, score1, score2)
    return bet_doc


async def list_game_bets(game_id: str, viewer_id: str) -> list[dict]:
    """Bets of a game, oldest first.

    While the game is UPCOMING only the viewer's own bet is visible.
    """
    game = await _get_game(game_id)
    query: dict = {"game_id": game_id}
    if game["status"] == GameStatus.UPCOMING.value:
        query["user_id"] = viewer_id

    bets = await _db.db.bets.find(query).sort("created_at", 1).to_list(length=1000)
    user_ids = [ObjectId(b["user_id"]) for b in bets if ObjectId.is_valid(b["user_id"])]
    users = await _db.db.users.find(
        {"_id": {"$in": user_ids}}, {"name": 1, "profile_picture_url": 1},
    ).to_list(length=len(user_ids) or 1)
    users_by_id = {str(u["_id"]): u for u in users}

    return [
        {
            "id": str(b["_id"]),
            "user_id": b["user_id"],
            "user_name": users_by_id.get(b["user_id"], {}).get("name", "Unknown"),
            "profile_picture_url": users_by_id.get(b["user_id"], {}).get("profile_picture_url"),
            "score1": b["score1"],
            "score2": b["score2"],
            "points": b.get("points"),
            "created_at": as_utc(b.get("created_at")),
        }
        for b in bets
    ]


async def rescore_game_bets(game: dict) -> int:
    """Recompute the points of every bet of a finished game. Returns bets updated."""
    if game.get("home_score") is None or game.get("away_score") is None:
        return 0
    game_id = str(game["_id"])
    sport_type = await _sport_type_of(game["competition_id"])
    bets = await _db.db.bets.find({"game_id": game_id}).to_list(length=10_000)

    updated = 0
    now = utcnow()
    for bet in bets:
        points = points_for(bet, game, sport_type)
        if points == bet.get("points"):
            continue
        await _db.db.bets.update_one(
            {"_id": bet["_id"]}, {"$set": {"points": points, "updated_at": now}},
        )
        updated += 1

    if updated:
        logger.info(
            "Rescored %d bets for game %s (%s-%s)",
            updated, game_id, game["home_score"], game["away_score"],
        )
    return updated


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

async def admin_create_bet(game_id: str, user_id: str, score1: int, score2: int) -> dict:
    """Create a bet on behalf of a member, at any time."""
    _validate_scores(score1, score2)
    game = await _get_game(game_id)
    if not await is_member(game["competition_id"], user_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is not a member of this competition.",
        )
    if await _db.db.bets.find_one({"game_id": game_id, "user_id": user_id}, {"_id": 1}):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User already has a bet for this game.",
        )

    now = utcnow()
    bet_doc = {
        "game_id": game_id,
        "user_id": user_id,
        "score1": score1,
        "score2": score2,
        "created_at": now,
        "updated_at": now,
    }
    bet_doc["points"] = points_for(bet_doc, game, await _sport_type_of(game["competition_id"]))
    result = await _db.db.bets.insert_one(bet_doc)
    bet_doc["_id"] = result.inserted_id
    logger.info("Admin created bet: user=%s game=%s", user_id, game_id)
    return bet_doc


async def admin_update_bet(bet_id: str, score1: int, score2: int) -> dict:
    _validate_scores(score1, score2)
    bet = await _db.db.bets.find_one({"_id": ObjectId(bet_id)})
    if not bet:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bet not found.")
    game = await _get_game(bet["game_id"])

    # An admin-entered score turns a placeholder into a real prediction
    bet.update({"score1": score1, "score2": score2, "is_placeholder": False, "updated_at": utcnow()})
    bet["points"] = points_for(bet, game, await _sport_type_of(game["competition_id"]))
    await _db.db.bets.update_one(
        {"_id": bet["_id"]},
        {"$set": {
            "score1": score1,
            "score2": score2,
            "is_placeholder": False,
            "points": bet["points"],
            "updated_at": bet["updated_at"],
        }},
    )
    logger.info("Admin updated bet %s: %d-%d", bet_id, score1, score2)
    return bet


async def admin_delete_bet(bet_id: str) -> None:
    result = await _db.db.bets.delete_one({"_id": ObjectId(bet_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bet not found.")
    logger.info("Admin deleted bet %s", bet_id)

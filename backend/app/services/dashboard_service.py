"""
backend/app/services/dashboard_service.py

Purpose:
    Player home screen: headline stats, the competitions the player is in or
    can join with their progress, the player's results on finished games with
    a running total, and today's games with everyone's bets.

Dependencies:
    - app.database
    - app.services.stats_service
    - app.services.scoring_service
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Optional

from bson import ObjectId

import app.database as _db
from app.models.game import GameStatus
from app.services.competition_service import PLACEHOLDER_TEAM_NAMES
from app.services.scoring_service import bet_result
from app.services.stats_service import get_user_stats
from app.utils import as_utc, ensure_utc, utcnow

logger = logging.getLogger("pronofoot.dashboard_service")

_PLAYED = [GameStatus.LIVE.value, GameStatus.FINISHED.value]
_OPEN_COMPETITIONS = ["ACTIVE", "UPCOMING"]


def _is_placeholder_game(game: dict) -> bool:
    return (
        game["home_team"].get("name") in PLACEHOLDER_TEAM_NAMES
        or game["away_team"].get("name") in PLACEHOLDER_TEAM_NAMES
    )


def _base_points(bet: dict) -> Optional[int]:
    if bet.get("points") is None:
        return None
    return bet["points"] - int(bet.get("final_winner_bonus") or 0)


async def _headline_stats(user_id: str) -> dict[str, Any]:
    stats = await get_user_stats(user_id)
    memberships = await _db.db.competition_users.find({"user_id": user_id}).to_list(length=1000)
    played = await _played_bets(user_id)

    current_streak = 0
    for bet in played:
        current_streak = current_streak + 1 if (bet.get("points") or 0) > 0 else 0

    total = stats["total_predictions"]
    return {
        "total_predictions": total,
        "total_points": stats["total_points"],
        "accuracy": stats["accuracy"],
        "average_points": round(stats["total_points"] / total, 3) if total else 0.0,
        "current_streak": current_streak,
        "best_streak": stats["longest_streak"],
        "competitions_won": stats["wins"],
        "competitions_joined": len(memberships),
        "total_users": await _db.db.users.count_documents({"is_deleted": {"$ne": True}}),
    }


async def _played_bets(user_id: str) -> list[dict]:
    """The user's bets on LIVE/FINISHED games, oldest game first."""
    bets = await _db.db.bets.find({"user_id": user_id}).to_list(length=100_000)
    oids = [ObjectId(b["game_id"]) for b in bets if ObjectId.is_valid(b["game_id"])]
    games = await _db.db.games.find(
        {"_id": {"$in": oids}, "status": {"$in": _PLAYED}}, {"date": 1},
    ).to_list(length=len(oids) or 1)
    dates = {str(g["_id"]): ensure_utc(g["date"]) for g in games}
    played = [{**b, "date": dates[b["game_id"]]} for b in bets if b["game_id"] in dates]
    played.sort(key=lambda b: b["date"])
    return played


async def _competition_card(competition: dict, user_id: str) -> dict[str, Any]:
    competition_id = str(competition["_id"])
    games = await _db.db.games.find({"competition_id": competition_id}).to_list(length=10_000)
    game_ids = [str(g["_id"]) for g in games]
    bets = await _db.db.bets.find({"game_id": {"$in": game_ids}}).to_list(length=100_000) if game_ids else []
    participants = await _db.db.competition_users.count_documents({"competition_id": competition_id})

    points: dict[str, int] = defaultdict(int)
    for bet in bets:
        points[bet["user_id"]] += bet.get("points") or 0
    ranking = sorted(points.items(), key=lambda item: -item[1])
    position = next((i + 1 for i, (uid, _) in enumerate(ranking) if uid == user_id), None)

    played = sum(1 for g in games if g["status"] in _PLAYED and not _is_placeholder_game(g))
    return {
        "id": competition_id,
        "name": competition["name"],
        "description": competition.get("description"),
        "start_date": as_utc(competition.get("start_date")),
        "end_date": as_utc(competition.get("end_date")),
        "status": competition.get("status"),
        "logo": competition.get("logo"),
        "sport_type": competition.get("sport_type", "FOOTBALL"),
        "user_ranking": position,
        "user_points": points.get(user_id) if position else None,
        "total_participants": participants,
        "total_games": len(games),
        "remaining_games": sum(1 for g in games if g["status"] == GameStatus.UPCOMING.value),
        "games_played": played,
        "progress_percentage": round(played / len(games) * 100) if games else 0,
    }


async def _last_games_performance(user_id: str) -> list[dict]:
    """Finished games of the user's active or completed competitions, newest first."""
    memberships = await _db.db.competition_users.find({"user_id": user_id}).to_list(length=1000)
    member_of = [ObjectId(m["competition_id"]) for m in memberships if ObjectId.is_valid(m["competition_id"])]
    competitions = await _db.db.competitions.find(
        {"_id": {"$in": member_of}, "status": {"$in": ["ACTIVE", "COMPLETED"]}},
    ).to_list(length=1000)
    by_id = {str(c["_id"]): c for c in competitions}
    if not by_id:
        return []

    games = await _db.db.games.find(
        {"competition_id": {"$in": list(by_id)}, "status": GameStatus.FINISHED.value}
    ).sort("date", 1).to_list(length=10_000)
    games = [g for g in games if not _is_placeholder_game(g)]
    bets = await _db.db.bets.find(
        {"user_id": user_id, "game_id": {"$in": [str(g["_id"]) for g in games]}}
    ).to_list(length=10_000)
    bets_by_game = {b["game_id"]: b for b in bets}

    rows = []
    running_total = 0
    for game in games:
        competition = by_id[game["competition_id"]]
        bet = bets_by_game.get(str(game["_id"]))
        points = (bet.get("points") or 0) if bet else 0
        running_total += points
        rows.append({
            "game_id": str(game["_id"]),
            "date": as_utc(game["date"]),
            "home_team": game["home_team"].get("name"),
            "away_team": game["away_team"].get("name"),
            "home_team_logo": game["home_team"].get("logo"),
            "away_team_logo": game["away_team"].get("logo"),
            "competition": competition["name"],
            "competition_logo": competition.get("logo"),
            "actual_score": f"{game.get('home_score')}-{game.get('away_score')}",
            "predicted_score": f"{bet['score1']}-{bet['score2']}" if bet else "N/A",
            "points": points,
            "result": bet_result(_base_points(bet)) if bet else "no_bet",
            "running_total": running_total,
        })
    rows.reverse()
    return rows


async def get_dashboard(user: dict) -> dict[str, Any]:
    user_id = str(user["_id"])
    competitions = await _db.db.competitions.find(
        {"status": {"$in": _OPEN_COMPETITIONS}}
    ).sort("start_date", 1).to_list(length=1000)
    memberships = await _db.db.competition_users.find({"user_id": user_id}).to_list(length=1000)
    joined = {m["competition_id"] for m in memberships}

    active, available = [], []
    for competition in competitions:
        card = await _competition_card(competition, user_id)
        (active if card["id"] in joined else available).append(card)

    return {
        "stats": await _headline_stats(user_id),
        "active_competitions": active,
        "available_competitions": available,
        "last_games_performance": await _last_games_performance(user_id),
    }


async def get_games_of_day(user: dict, day: Optional[datetime] = None) -> list[dict]:
    """Games kicking off on the given UTC day (today by default), earliest first.

    Every player's bet is listed; their scores stay hidden until kickoff.
    """
    user_id = str(user["_id"])
    start = ensure_utc(day or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
    games = await _db.db.games.find({
        "date": {"$gte": start, "$lt": start + timedelta(days=1)},
        "status": {"$in": [GameStatus.UPCOMING.value, GameStatus.LIVE.value, GameStatus.FINISHED.value]},
    }).sort("date", 1).to_list(length=500)
    if not games:
        return []

    competition_oids = list({ObjectId(g["competition_id"]) for g in games if ObjectId.is_valid(g["competition_id"])})
    competitions = await _db.db.competitions.find(
        {"_id": {"$in": competition_oids}}, {"name": 1, "logo": 1},
    ).to_list(length=len(competition_oids) or 1)
    competitions_by_id = {str(c["_id"]): c for c in competitions}

    bets = await _db.db.bets.find(
        {"game_id": {"$in": [str(g["_id"]) for g in games]}}
    ).sort("created_at", 1).to_list(length=10_000)
    user_oids = list({ObjectId(b["user_id"]) for b in bets if ObjectId.is_valid(b["user_id"])})
    users = await _db.db.users.find(
        {"_id": {"$in": user_oids}}, {"name": 1, "profile_picture_url": 1},
    ).to_list(length=len(user_oids) or 1)
    users_by_id = {str(u["_id"]): u for u in users}
    bets_by_game: dict[str, list[dict]] = defaultdict(list)
    for bet in bets:
        bets_by_game[bet["game_id"]].append(bet)

    rows = []
    for game in games:
        game_id = str(game["_id"])
        revealed = game["status"] != GameStatus.UPCOMING.value
        competition = competitions_by_id.get(game["competition_id"], {})
        own = next((b for b in bets_by_game[game_id] if b["user_id"] == user_id), None)
        rows.append({
            "id": game_id,
            "date": as_utc(game["date"]),
            "status": game["status"],
            "home_score": game.get("home_score"),
            "away_score": game.get("away_score"),
            "live_home_score": game.get("live_home_score"),
            "live_away_score": game.get("live_away_score"),
            "home_team": game["home_team"],
            "away_team": game["away_team"],
            "competition": {
                "id": game["competition_id"],
                "name": competition.get("name"),
                "logo": competition.get("logo"),
            },
            "user_bet": {
                "id": str(own["_id"]),
                "score1": own["score1"],
                "score2": own["score2"],
                "points": own.get("points"),
            } if own else None,
            "all_user_bets": [
                {
                    "id": str(b["_id"]),
                    "user_id": b["user_id"],
                    "user_name": users_by_id.get(b["user_id"], {}).get("name", "Unknown"),
                    "profile_picture_url": users_by_id.get(b["user_id"], {}).get("profile_picture_url"),
                    "created_at": as_utc(b.get("created_at")),
                    "score1": b["score1"] if revealed else None,
                    "score2": b["score2"] if revealed else None,
                }
                for b in bets_by_game[game_id]
            ],
        })
    return rows

"""
backend/app/services/stats_service.py

Purpose:
    Player statistics across competitions: totals, accuracy, streaks,
    forgotten bets, competition wins, the global leaderboard and per
    competition points breakdown.

Dependencies:
    - app.database
    - app.services.scoring_service
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable

from bson import ObjectId
from fastapi import HTTPException, status

import app.database as _db
from app.models.game import GameStatus
from app.services.scoring_service import bet_result
from app.utils import as_utc, ensure_utc

logger = logging.getLogger("pronofoot.stats_service")

TOP_PLAYERS = 10
MIN_PREDICTIONS_FOR_AVERAGE = 5

_PLAYED = {GameStatus.LIVE.value, GameStatus.FINISHED.value}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def calculate_streaks(bets: Iterable[dict]) -> dict[str, int]:
    """Longest run of scoring bets and of exact scores, in game-date order.

    Each bet needs `points` and `date`; a bet without points breaks both runs.
    """
    longest = current = 0
    exact_longest = exact_current = 0
    for bet in sorted(bets, key=lambda b: ensure_utc(b["date"])):
        points = bet.get("points") or 0
        if points > 0:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
        if bet_result(points - int(bet.get("final_winner_bonus") or 0)) == "exact":
            exact_current += 1
            exact_longest = max(exact_longest, exact_current)
        else:
            exact_current = 0
    return {"longest_streak": longest, "exact_score_streak": exact_longest}


def avatar_initials(name: str) -> str:
    parts = name.split()
    if len(parts) > 1:
        return f"{parts[0][0]}{parts[1][0]}".upper()
    return name[:2].upper()


class _Snapshot:
    """All documents needed to compute stats, loaded once per request."""

    def __init__(self, games: list[dict], bets: list[dict], memberships: list[dict], competitions: list[dict]):
        self.games_by_id = {str(g["_id"]): g for g in games}
        self.competitions = competitions
        self.bets_by_user: dict[str, list[dict]] = defaultdict(list)
        for bet in bets:
            self.bets_by_user[bet["user_id"]].append(bet)
        self.memberships_by_user: dict[str, list[dict]] = defaultdict(list)
        for m in memberships:
            self.memberships_by_user[m["user_id"]].append(m)
        self.played_per_competition: dict[str, set[str]] = defaultdict(set)
        for game_id, game in self.games_by_id.items():
            if game["status"] in _PLAYED:
                self.played_per_competition[game["competition_id"]].add(game_id)


async def _load_snapshot(user_ids: list[str] | None = None) -> _Snapshot:
    bet_query: dict = {}
    membership_query: dict = {}
    if user_ids is not None:
        bet_query["user_id"] = {"$in": user_ids}
        membership_query["user_id"] = {"$in": user_ids}
    games = await _db.db.games.find(
        {}, {"competition_id": 1, "status": 1, "date": 1},
    ).to_list(length=100_000)
    bets = await _db.db.bets.find(bet_query).to_list(length=500_000)
    memberships = await _db.db.competition_users.find(membership_query).to_list(length=100_000)
    competitions = await _db.db.competitions.find({}).to_list(length=10_000)
    return _Snapshot(games, bets, memberships, competitions)


def _user_stats(user_id: str, snap: _Snapshot) -> dict[str, Any]:
    played_bets = []
    for bet in snap.bets_by_user.get(user_id, []):
        game = snap.games_by_id.get(bet["game_id"])
        if game and game["status"] in _PLAYED:
            played_bets.append({**bet, "date": game["date"], "competition_id": game["competition_id"]})

    total = len(played_bets)
    total_points = sum(b.get("points") or 0 for b in played_bets)
    results = [
        bet_result(None if b.get("points") is None else b["points"] - int(b.get("final_winner_bonus") or 0))
        for b in played_bets
    ]
    exact = results.count("exact")
    correct = results.count("correct")
    scoring = sum(1 for b in played_bets if (b.get("points") or 0) > 0)

    forgotten = 0
    bet_game_ids = {b["game_id"] for b in played_bets}
    for membership in snap.memberships_by_user.get(user_id, []):
        played = snap.played_per_competition.get(membership["competition_id"], set())
        forgotten += len(played - bet_game_ids)

    wins = sum(
        1 for c in snap.competitions
        if c.get("status") == "COMPLETED" and c.get("winner_id") == user_id
    )

    return {
        "total_predictions": total,
        "total_points": total_points,
        "exact_scores": exact,
        "correct_outcomes": correct,
        "accuracy": round(scoring / total * 100, 2) if total else 0.0,
        "forgotten_bets": forgotten,
        "wins": wins,
        **calculate_streaks(played_bets),
    }


async def get_user_stats(user_id: str) -> dict[str, Any]:
    snap = await _load_snapshot([user_id])
    return _user_stats(user_id, snap)


async def get_current_user_stats(user: dict) -> dict[str, Any]:
    user_id = str(user["_id"])
    stats = await get_user_stats(user_id)
    return {
        "id": user_id,
        "name": user.get("name", ""),
        "avatar": avatar_initials(user.get("name") or "?"),
        "profile_picture_url": user.get("profile_picture_url"),
        "stats": stats,
    }


async def get_leaderboard() -> dict[str, Any]:
    """Global leaderboard of non-admin players plus a competitions summary."""
    users = await _db.db.users.find(
        {"is_admin": {"$ne": True}, "is_deleted": {"$ne": True}},
        {"name": 1, "profile_picture_url": 1},
    ).to_list(length=100_000)
    snap = await _load_snapshot()

    players = []
    for user in users:
        user_id = str(user["_id"])
        stats = _user_stats(user_id, snap)
        players.append({
            "id": user_id,
            "name": user.get("name", ""),
            "avatar": avatar_initials(user.get("name") or "?"),
            "profile_picture_url": user.get("profile_picture_url"),
            "stats": stats,
        })
    players.sort(key=lambda p: (-p["stats"]["total_points"], -p["stats"]["accuracy"]))

    by_average = [
        {
            **p,
            "average_points": round(p["stats"]["total_points"] / p["stats"]["total_predictions"], 3),
        }
        for p in players if p["stats"]["total_predictions"] >= MIN_PREDICTIONS_FOR_AVERAGE
    ]
    by_average.sort(key=lambda p: -p["average_points"])

    names = {p["id"]: p["name"] for p in players}
    competitions = []
    for comp in snap.competitions:
        comp_id = str(comp["_id"])
        game_ids = {gid for gid, g in snap.games_by_id.items() if g["competition_id"] == comp_id}
        winner_id = comp.get("winner_id")
        winner_points = sum(
            b.get("points") or 0
            for b in snap.bets_by_user.get(winner_id, [])
            if b["game_id"] in game_ids
        ) if winner_id else 0
        competitions.append({
            "id": comp_id,
            "name": comp["name"],
            "status": comp.get("status"),
            "start_date": as_utc(comp.get("start_date")),
            "end_date": as_utc(comp.get("end_date")),
            "logo": comp.get("logo"),
            "winner": {"id": winner_id, "name": names.get(winner_id)} if winner_id else None,
            "winner_points": winner_points,
            "participant_count": sum(
                1 for ms in snap.memberships_by_user.values() for m in ms
                if m["competition_id"] == comp_id
            ),
            "game_count": len(game_ids),
        })
    competitions.sort(key=lambda c: c["start_date"] or _EPOCH, reverse=True)

    return {
        "players": players,
        "top_players_by_points": [p for p in players if p["stats"]["total_predictions"] > 0][:TOP_PLAYERS],
        "top_players_by_average": by_average[:TOP_PLAYERS],
        "total_users": len(players),
        "competitions": competitions,
    }


async def get_points_breakdown(user_id: str) -> list[dict]:
    """Total points of a user per competition, latest competition first."""
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user id.")
    snap = await _load_snapshot([user_id])
    totals: dict[str, int] = defaultdict(int)
    for bet in snap.bets_by_user.get(user_id, []):
        game = snap.games_by_id.get(bet["game_id"])
        if game:
            totals[game["competition_id"]] += bet.get("points") or 0

    rows = []
    for comp in snap.competitions:
        comp_id = str(comp["_id"])
        if comp_id in totals:
            rows.append({
                "competition_id": comp_id,
                "competition": comp["name"],
                "total_points": totals[comp_id],
                "start_date": as_utc(comp.get("start_date")),
            })
    rows.sort(key=lambda r: r["start_date"] or _EPOCH, reverse=True)
    return rows

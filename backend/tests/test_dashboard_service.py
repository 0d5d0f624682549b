"""
backend/tests/test_dashboard_service.py

Purpose:
    Player dashboard and games of the day: headline stats, joined and open
    competitions with progress, finished-game performance with a running
    total, and bet visibility before kickoff.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from app.routers import users as users_router
from app.services import dashboard_service

_ALICE = ObjectId()
_BOB = ObjectId()


def _game(competition_id: str, status: str, when: datetime, home="Nantes", away="Rennes", score=(None, None)) -> dict:
    return {
        "_id": ObjectId(),
        "competition_id": competition_id,
        "home_team": {"id": home.lower(), "name": home, "logo": f"https://img/{home.lower()}.png"},
        "away_team": {"id": away.lower(), "name": away, "logo": None},
        "date": when,
        "status": status,
        "home_score": score[0],
        "away_score": score[1],
    }


def _seed_dashboard(fake_db) -> dict:
    ligue_id, coupe_id = ObjectId(), ObjectId()
    ligue, coupe = str(ligue_id), str(coupe_id)
    fake_db.users.docs.extend([
        {"_id": _ALICE, "name": "Alice Martin"},
        {"_id": _BOB, "name": "Bob"},
    ])
    fake_db.competitions.docs.extend([
        {"_id": coupe_id, "name": "Coupe de France", "status": "UPCOMING",
         "start_date": datetime(2025, 11, 1, tzinfo=timezone.utc)},
        {"_id": ligue_id, "name": "Ligue 1", "status": "ACTIVE", "logo": "https://img/l1.png",
         "start_date": datetime(2025, 8, 15, tzinfo=timezone.utc)},
    ])
    fake_db.competition_users.docs.extend([
        {"_id": ObjectId(), "competition_id": ligue, "user_id": str(_ALICE)},
        {"_id": ObjectId(), "competition_id": ligue, "user_id": str(_BOB)},
    ])
    first = _game(ligue, "FINISHED", datetime(2025, 9, 1, 19, tzinfo=timezone.utc), score=(2, 1))
    second = _game(ligue, "FINISHED", datetime(2025, 9, 8, 19, tzinfo=timezone.utc), "Lens", "Lille", score=(0, 0))
    upcoming = _game(ligue, "UPCOMING", datetime(2025, 9, 15, 19, tzinfo=timezone.utc))
    placeholder = _game(ligue, "FINISHED", datetime(2025, 9, 10, 19, tzinfo=timezone.utc), "xxxx", "xxxx2", (0, 0))
    fake_db.games.docs.extend([first, second, upcoming, placeholder])
    fake_db.bets.docs.extend([
        {"_id": ObjectId(), "game_id": str(first["_id"]), "user_id": str(_ALICE), "score1": 2, "score2": 1, "points": 3},
        {"_id": ObjectId(), "game_id": str(second["_id"]), "user_id": str(_BOB), "score1": 1, "score2": 1, "points": 1},
    ])
    return {"ligue": ligue, "coupe": coupe, "first": str(first["_id"]), "second": str(second["_id"])}


@pytest.mark.asyncio
async def test_dashboard_stats_and_competitions(fake_db):
    ids = _seed_dashboard(fake_db)

    result = await users_router.dashboard(user={"_id": _ALICE, "name": "Alice Martin"})

    stats = result["stats"]
    assert stats["total_predictions"] == 1
    assert stats["total_points"] == 3
    assert stats["accuracy"] == 100.0
    assert stats["average_points"] == 3.0
    assert (stats["current_streak"], stats["best_streak"]) == (1, 1)
    assert stats["competitions_joined"] == 1
    assert stats["total_users"] == 2

    [ligue] = result["active_competitions"]
    assert ligue["id"] == ids["ligue"]
    assert (ligue["user_ranking"], ligue["user_points"]) == (1, 3)
    assert ligue["total_participants"] == 2
    assert (ligue["total_games"], ligue["remaining_games"], ligue["games_played"]) == (4, 1, 2)
    assert ligue["progress_percentage"] == 50

    [coupe] = result["available_competitions"]
    assert coupe["id"] == ids["coupe"]
    assert coupe["user_ranking"] is None
    assert coupe["progress_percentage"] == 0


@pytest.mark.asyncio
async def test_last_games_performance_newest_first_with_running_total(fake_db):
    ids = _seed_dashboard(fake_db)

    result = await dashboard_service.get_dashboard({"_id": _ALICE})

    rows = result["last_games_performance"]
    assert [r["game_id"] for r in rows] == [ids["second"], ids["first"]]
    latest, earliest = rows
    assert (latest["predicted_score"], latest["result"], latest["points"]) == ("N/A", "no_bet", 0)
    assert latest["running_total"] == 3
    assert (earliest["actual_score"], earliest["predicted_score"], earliest["result"]) == ("2-1", "2-1", "exact")
    assert earliest["running_total"] == 3
    assert earliest["competition_logo"] == "https://img/l1.png"


@pytest.mark.asyncio
async def test_games_of_day_hide_other_bets_until_kickoff(fake_db):
    competition_id = ObjectId()
    fake_db.competitions.docs.append({"_id": competition_id, "name": "Top 14", "status": "ACTIVE"})
    fake_db.users.docs.extend([{"_id": _ALICE, "name": "Alice"}, {"_id": _BOB, "name": "Bob"}])
    evening = _game(str(competition_id), "UPCOMING", datetime(2025, 4, 12, 18, tzinfo=timezone.utc))
    afternoon = _game(str(competition_id), "LIVE", datetime(2025, 4, 12, 15, tzinfo=timezone.utc))
    tomorrow = _game(str(competition_id), "UPCOMING", datetime(2025, 4, 13, 0, tzinfo=timezone.utc))
    called_off = _game(str(competition_id), "CANCELLED", datetime(2025, 4, 12, 20, tzinfo=timezone.utc))
    fake_db.games.docs.extend([evening, afternoon, tomorrow, called_off])
    fake_db.bets.docs.extend([
        {"_id": ObjectId(), "game_id": str(evening["_id"]), "user_id": str(_BOB), "score1": 2, "score2": 2,
         "created_at": datetime(2025, 4, 10, tzinfo=timezone.utc)},
        {"_id": ObjectId(), "game_id": str(evening["_id"]), "user_id": str(_ALICE), "score1": 1, "score2": 0,
         "created_at": datetime(2025, 4, 11, tzinfo=timezone.utc)},
        {"_id": ObjectId(), "game_id": str(afternoon["_id"]), "user_id": str(_BOB), "score1": 3, "score2": 1,
         "created_at": datetime(2025, 4, 11, tzinfo=timezone.utc)},
    ])

    rows = await dashboard_service.get_games_of_day(
        {"_id": _ALICE}, day=datetime(2025, 4, 12, 9, 30, tzinfo=timezone.utc),
    )

    assert [r["id"] for r in rows] == [str(afternoon["_id"]), str(evening["_id"])]
    live, upcoming = rows
    assert live["competition"]["name"] == "Top 14"
    assert live["user_bet"] is None
    assert [(b["user_name"], b["score1"], b["score2"]) for b in live["all_user_bets"]] == [("Bob", 3, 1)]

    assert upcoming["user_bet"]["score1"] == 1
    assert [(b["user_name"], b["score1"]) for b in upcoming["all_user_bets"]] == [("Bob", None), ("Alice", None)]


@pytest.mark.asyncio
async def test_games_of_day_empty(fake_db):
    assert await users_router.games_of_day(user={"_id": _ALICE}) == []

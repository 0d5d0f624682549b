"""
backend/tests/test_competition_service.py

Purpose:
    Membership, live ranking, ranking evolution, players performance,
    calendar, shooters and the final winner prediction with its bonus.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from fastapi import HTTPException

from app.routers import competitions as competitions_router
from app.services import bet_service, competition_service, game_service
from app.utils import utcnow

_DAY1 = datetime(2025, 9, 16, 19, 0, tzinfo=timezone.utc)


def _competition(fake_db, name: str = "Ligue 1", status: str = "ACTIVE") -> str:
    competition_id = ObjectId()
    fake_db.competitions.docs.append({
        "_id": competition_id, "name": name, "sport_type": "FOOTBALL", "status": status,
    })
    return str(competition_id)


def _user(fake_db, name: str) -> str:
    user_id = ObjectId()
    fake_db.users.docs.append({"_id": user_id, "name": name, "profile_picture_url": None})
    return str(user_id)


def _member(fake_db, competition_id: str, user_id: str, **extra) -> None:
    fake_db.competition_users.docs.append({
        "_id": ObjectId(), "competition_id": competition_id, "user_id": user_id, "shooters": 0, **extra,
    })


def _game(fake_db, competition_id: str, date: datetime, status: str = "FINISHED",
          score=(None, None), home=("h", "Home"), away=("a", "Away")) -> dict:
    game = {
        "_id": ObjectId(),
        "competition_id": competition_id,
        "home_team": {"id": home[0], "name": home[1]},
        "away_team": {"id": away[0], "name": away[1]},
        "date": date,
        "status": status,
        "home_score": score[0],
        "away_score": score[1],
    }
    fake_db.games.docs.append(game)
    return game


def _bet(fake_db, game: dict, user_id: str, score1: int, score2: int, points) -> None:
    fake_db.bets.docs.append({
        "_id": ObjectId(), "game_id": str(game["_id"]), "user_id": user_id,
        "score1": score1, "score2": score2, "points": points,
    })


@pytest.mark.asyncio
async def test_join_is_idempotent_and_blocked_when_completed(fake_db):
    open_id = _competition(fake_db)
    done_id = _competition(fake_db, "Euro 2024", status="COMPLETED")
    user_id = _user(fake_db, "Alice")

    assert await competition_service.join_competition(open_id, user_id) == {
        "already_member": False, "competition_id": open_id,
    }
    again = await competitions_router.join(open_id, user={"_id": ObjectId(user_id)})
    assert again["already_member"] is True
    assert len(fake_db.competition_users.docs) == 1

    with pytest.raises(HTTPException) as exc_info:
        await competition_service.join_competition(done_id, user_id)
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        await competition_service.join_competition(str(ObjectId()), user_id)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_live_ranking_orders_by_points_then_exact_scores(fake_db):
    competition_id = _competition(fake_db)
    alice, bob, carol = (_user(fake_db, n) for n in ("Alice", "Bob", "Carol"))
    for user_id in (alice, bob, carol):
        _member(fake_db, competition_id, user_id)
    g1 = _game(fake_db, competition_id, _DAY1, score=(2, 1))
    g2 = _game(fake_db, competition_id, _DAY1 + timedelta(days=1), score=(0, 0))
    upcoming = _game(fake_db, competition_id, _DAY1 + timedelta(days=30), status="UPCOMING")
    _bet(fake_db, g1, alice, 2, 1, 3)
    _bet(fake_db, g2, alice, 1, 0, 0)
    _bet(fake_db, g1, bob, 1, 0, 1)
    _bet(fake_db, g2, bob, 1, 1, 1)
    _bet(fake_db, g1, carol, 3, 0, 1)
    _bet(fake_db, upcoming, carol, 1, 0, None)

    ranking = await competition_service.get_live_ranking(competition_id)

    assert [(r["user_name"], r["points"], r["exact_scores"], r["position"]) for r in ranking] == [
        ("Alice", 3, 1, 1),
        ("Bob", 2, 0, 2),
        ("Carol", 1, 0, 3),
    ]
    assert ranking[2]["bets"] == 1


@pytest.mark.asyncio
async def test_ranking_evolution_is_cumulative_per_day_and_members_only(fake_db):
    competition_id = _competition(fake_db)
    alice, bob = _user(fake_db, "Alice"), _user(fake_db, "Bob")
    _member(fake_db, competition_id, alice)
    _member(fake_db, competition_id, bob)
    g1 = _game(fake_db, competition_id, _DAY1, score=(1, 0))
    g2 = _game(fake_db, competition_id, _DAY1 + timedelta(hours=2), score=(0, 0))
    g3 = _game(fake_db, competition_id, _DAY1 + timedelta(days=1), score=(2, 2))
    _bet(fake_db, g1, alice, 1, 0, 3)
    _bet(fake_db, g2, bob, 0, 0, 3)
    _bet(fake_db, g2, alice, 1, 1, 1)
    _bet(fake_db, g3, bob, 1, 1, 1)

    evolution = await competition_service.get_ranking_evolution(competition_id, alice)

    assert len(evolution) == 2
    assert evolution[0]["date"] == g2["date"]
    day1 = {r["user_name"]: (r["total_points"], r["position"]) for r in evolution[0]["rankings"]}
    assert day1 == {"Alice": (4, 1), "Bob": (3, 2)}
    day2 = {r["user_name"]: r["total_points"] for r in evolution[1]["rankings"]}
    assert day2 == {"Alice": 4, "Bob": 4}

    with pytest.raises(HTTPException) as exc_info:
        await competition_service.get_ranking_evolution(competition_id, str(ObjectId()))
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_players_performance_last_finished_games(fake_db):
    competition_id = _competition(fake_db)
    alice = _user(fake_db, "Alice")
    _member(fake_db, competition_id, alice)
    older = _game(fake_db, competition_id, _DAY1, score=(1, 0))
    newer = _game(fake_db, competition_id, _DAY1 + timedelta(days=3), score=(2, 2))
    _game(fake_db, competition_id, _DAY1 + timedelta(days=5), status="LIVE")
    _bet(fake_db, older, alice, 2, 0, 1)

    performance = await competition_service.get_players_performance(competition_id)

    assert performance["games_count"] == 2
    games = performance["players"][0]["games"]
    assert [g["game_id"] for g in games] == [str(newer["_id"]), str(older["_id"])]
    assert games[0]["predicted_score"] == "N/A"
    assert games[0]["result"] == "no_bet"
    assert games[1]["actual_score"] == "1-0"
    assert games[1]["predicted_score"] == "2-0"
    assert games[1]["result"] == "correct"


@pytest.mark.asyncio
async def test_calendar_groups_consecutive_days_into_matchdays(fake_db):
    competition_id = _competition(fake_db)
    alice, bob = _user(fake_db, "Alice"), _user(fake_db, "Bob")
    _member(fake_db, competition_id, alice)
    _member(fake_db, competition_id, bob)
    g1 = _game(fake_db, competition_id, _DAY1, score=(1, 0))
    g2 = _game(fake_db, competition_id, _DAY1 + timedelta(days=1), score=(0, 1))
    _game(fake_db, competition_id, _DAY1 + timedelta(days=7), status="UPCOMING")
    _bet(fake_db, g1, alice, 1, 0, 3)
    _bet(fake_db, g2, bob, 0, 2, 1)

    calendar = await competition_service.get_calendar(competition_id, alice)

    days = calendar["game_days"]
    assert [(d["day_number"], d["matchday"], d["is_completed"]) for d in days] == [
        (1, 1, True), (2, 1, True), (3, 2, False),
    ]
    assert days[0]["games"][0]["my_bet"] == {"score1": 1, "score2": 0, "points": 3}
    assert days[1]["games"][0]["my_bet"] is None
    scores = {(s["player_id"], s["day_number"]): s["points"] for s in calendar["player_day_scores"]}
    assert scores[(alice, 1)] == 3
    assert scores[(bob, 2)] == 1
    assert len(calendar["players"]) == 2


@pytest.mark.asyncio
async def test_refresh_shooters_counts_missing_bets(fake_db):
    competition_id = _competition(fake_db)
    alice, bob = _user(fake_db, "Alice"), _user(fake_db, "Bob")
    _member(fake_db, competition_id, alice)
    _member(fake_db, competition_id, bob)
    g1 = _game(fake_db, competition_id, _DAY1, score=(1, 0))
    _game(fake_db, competition_id, _DAY1 + timedelta(days=1), status="LIVE")
    _game(fake_db, competition_id, _DAY1 + timedelta(days=9), status="UPCOMING")
    _bet(fake_db, g1, alice, 1, 0, 3)

    assert await competition_service.refresh_shooters(competition_id) == 2

    shooters = {m["user_id"]: m["shooters"] for m in fake_db.competition_users.docs}
    assert shooters == {alice: 1, bob: 2}
    participants = await competition_service.list_participants(competition_id)
    assert {p["user_id"]: p["shooters"] for p in participants} == shooters


@pytest.mark.asyncio
async def test_remove_member(fake_db):
    competition_id = _competition(fake_db)
    alice = _user(fake_db, "Alice")
    _member(fake_db, competition_id, alice)

    await competition_service.remove_member(competition_id, alice)
    assert fake_db.competition_users.docs == []
    with pytest.raises(HTTPException) as exc_info:
        await competition_service.remove_member(competition_id, alice)
    assert exc_info.value.status_code == 404


def _final_winner_setup(fake_db):
    competition_id = _competition(fake_db, "UEFA Champions League 25/26")
    alice, bob = _user(fake_db, "Alice"), _user(fake_db, "Bob")
    _member(fake_db, competition_id, alice)
    _member(fake_db, competition_id, bob)
    kickoff = utcnow() + timedelta(days=2)
    semi = _game(fake_db, competition_id, kickoff, status="UPCOMING",
                 home=("t-psg", "Paris Saint-Germain"), away=("t-ars", "Arsenal"))
    _game(fake_db, competition_id, kickoff + timedelta(days=20), status="UPCOMING",
          home=("x1", "xxxx"), away=("x2", "xxxx2"))
    return competition_id, alice, bob, semi


@pytest.mark.asyncio
async def test_final_winner_prediction_before_deadline(fake_db):
    competition_id, alice, _, semi = _final_winner_setup(fake_db)

    state = await competition_service.get_final_winner_prediction(competition_id, alice)
    assert state["prediction"] is None
    assert state["deadline"] == semi["date"]
    assert state["deadline_passed"] is False
    assert {t["id"] for t in state["available_teams"]} == {"t-psg", "t-ars"}
    assert state["next_game"]["home_team"] == "Paris Saint-Germain"

    result = await competition_service.set_final_winner_prediction(competition_id, alice, "t-psg")
    assert result["prediction"]["name"] == "Paris Saint-Germain"
    state = await competition_service.get_final_winner_prediction(competition_id, alice)
    assert state["prediction"]["id"] == "t-psg"

    with pytest.raises(HTTPException) as exc_info:
        await competition_service.set_final_winner_prediction(competition_id, alice, "x1")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_final_winner_prediction_closed_after_deadline(fake_db):
    competition_id, alice, _, semi = _final_winner_setup(fake_db)
    semi["date"] = utcnow() - timedelta(minutes=5)

    with pytest.raises(HTTPException) as exc_info:
        await competition_service.set_final_winner_prediction(competition_id, alice, "t-psg")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_final_winner_not_available_for_other_competitions(fake_db):
    competition_id = _competition(fake_db, "Ligue 1")
    alice = _user(fake_db, "Alice")

    with pytest.raises(HTTPException) as exc_info:
        await competition_service.get_final_winner_prediction(competition_id, alice)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_final_winner_bonus_awarded_once_on_the_final(fake_db):
    competition_id = _competition(fake_db, "UEFA Champions League 25/26")
    alice, bob, carol = (_user(fake_db, n) for n in ("Alice", "Bob", "Carol"))
    _member(fake_db, competition_id, alice, final_winner_team_id="t-psg")
    _member(fake_db, competition_id, bob, final_winner_team_id="t-psg")
    _member(fake_db, competition_id, carol, final_winner_team_id="t-ars")
    semi = _game(fake_db, competition_id, _DAY1, score=(1, 0),
                 home=("t-psg", "Paris Saint-Germain"), away=("t-bay", "Bayern"))
    final = _game(fake_db, competition_id, _DAY1 + timedelta(days=10), status="LIVE",
                  home=("t-psg", "Paris Saint-Germain"), away=("t-ars", "Arsenal"))
    _bet(fake_db, final, alice, 2, 0, None)

    assert await competition_service.award_final_winner_points(semi) == 0

    finished = await game_service.manual_score_update(str(final["_id"]), 2, 0)

    assert finished["status"] == "FINISHED"
    bets = {b["user_id"]: b for b in fake_db.bets.docs}
    assert bets[alice]["points"] == 3 + 5
    assert bets[alice]["final_winner_bonus"] == 5
    assert (bets[bob]["score1"], bets[bob]["score2"]) == (0, 0)
    assert bets[bob]["points"] == 5
    assert carol not in bets
    assert final["final_winner_awarded"] is True

    stored_final = next(g for g in fake_db.games.docs if g["_id"] == final["_id"])
    assert await competition_service.award_final_winner_points(stored_final) == 0
    assert len(fake_db.bets.docs) == 2

    ranking = await competition_service.get_live_ranking(competition_id)
    alice_row = next(r for r in ranking if r["user_id"] == alice)
    assert alice_row["points"] == 8
    assert alice_row["exact_scores"] == 1


@pytest.mark.asyncio
async def test_final_winner_draw_awards_nothing(fake_db):
    competition_id = _competition(fake_db, "UEFA Champions League 25/26")
    alice = _user(fake_db, "Alice")
    _member(fake_db, competition_id, alice, final_winner_team_id="h")
    final = _game(fake_db, competition_id, _DAY1, score=(1, 1))

    assert await competition_service.award_final_winner_points(final) == 0
    assert fake_db.bets.docs == []


@pytest.mark.asyncio
async def test_final_winner_placeholder_carries_only_the_bonus_in_rugby(fake_db):
    competition_id = _competition(fake_db, "European Rugby Champions League")
    fake_db.competitions.docs[0]["sport_type"] = "RUGBY"
    alice = _user(fake_db, "Alice")
    _member(fake_db, competition_id, alice, final_winner_team_id="t-tou")
    final = _game(fake_db, competition_id, _DAY1, status="LIVE",
                  home=("t-tou", "Toulouse"), away=("t-nor", "Northampton"))

    # 3-0 is within the rugby proximity margin of a 0-0 prediction
    await game_service.manual_score_update(str(final["_id"]), 3, 0)

    placeholder = fake_db.bets.docs[0]
    assert placeholder["is_placeholder"] is True
    assert placeholder["points"] == 5

    stored_final = next(g for g in fake_db.games.docs if g["_id"] == final["_id"])
    assert await bet_service.rescore_game_bets(stored_final) == 0
    assert fake_db.bets.docs[0]["points"] == 5

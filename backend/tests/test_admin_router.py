"""
backend/tests/test_admin_router.py

Purpose:
    Admin endpoints: team registry, score overrides, status changes, live
    resets, points recomputation and the audit trail they leave behind.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from bson import ObjectId
from fastapi import HTTPException

from app.models.game import GameStatus, GameStatusUpdate, GameUpdate, ManualScoreUpdate, SportType
from app.models.competition import CompetitionImport
from app.models.teams import TeamCreate, TeamUpdate
from app.routers import admin as admin_router
from app.services import import_service
from app.utils import utcnow

_ADMIN = {"_id": ObjectId(), "is_admin": True}


def _competition_with_game(fake_db, *, status: str = "LIVE", **game_fields) -> tuple[dict, str]:
    competition_id = ObjectId()
    fake_db.competitions.docs.append({
        "_id": competition_id, "name": "Ligue 1", "sport_type": "FOOTBALL", "status": "ACTIVE",
    })
    game = {
        "_id": ObjectId(),
        "competition_id": str(competition_id),
        "home_team": {"id": "t1", "name": "Nantes"},
        "away_team": {"id": "t2", "name": "Rennes"},
        "date": utcnow() - timedelta(minutes=90),
        "status": status,
        "home_score": None,
        "away_score": None,
        **game_fields,
    }
    fake_db.games.docs.append(game)
    return game, str(competition_id)


@pytest.mark.asyncio
async def test_create_team_rejects_normalized_duplicates(fake_db):
    created = await admin_router.create_team(
        TeamCreate(name="  Olympique de Marseille ", short_name="OM"), request=None, admin=_ADMIN,
    )

    assert created["name"] == "Olympique de Marseille"
    assert created["sport_type"] == "FOOTBALL"
    with pytest.raises(HTTPException) as exc_info:
        await admin_router.create_team(TeamCreate(name="olympique de marseille"), request=None, admin=_ADMIN)
    assert exc_info.value.status_code == 409

    # Same name in another sport is a different team
    await admin_router.create_team(
        TeamCreate(name="Olympique de Marseille", sport_type=SportType.RUGBY), request=None, admin=_ADMIN,
    )
    assert len(fake_db.teams.docs) == 2
    assert [a["action"] for a in fake_db.audit_logs.docs] == ["TEAM_CREATE", "TEAM_CREATE"]


@pytest.mark.asyncio
async def test_rename_team_updates_embedded_game_snapshots(fake_db):
    created = await admin_router.create_team(TeamCreate(name="Nantes"), request=None, admin=_ADMIN)
    team_id = created["id"]
    game, _ = _competition_with_game(fake_db, home_team={"id": team_id, "name": "Nantes"})

    renamed = await admin_router.update_team(
        team_id, TeamUpdate(name="FC Nantes", logo="https://img/fcn.png"), request=None, admin=_ADMIN,
    )

    assert renamed["name"] == "FC Nantes"
    stored = fake_db.games.docs[0]
    assert stored["home_team"] == {"id": team_id, "name": "FC Nantes", "logo": "https://img/fcn.png"}
    assert stored["away_team"]["name"] == "Rennes"
    assert fake_db.audit_logs.docs[-1]["metadata"] == {"name": "FC Nantes", "logo": "https://img/fcn.png"}


@pytest.mark.asyncio
async def test_delete_team_in_use_or_missing(fake_db):
    created = await admin_router.create_team(TeamCreate(name="Rennes"), request=None, admin=_ADMIN)
    _competition_with_game(fake_db, away_team={"id": created["id"], "name": "Rennes"})

    with pytest.raises(HTTPException) as exc_info:
        await admin_router.delete_team(created["id"], request=None, admin=_ADMIN)
    assert exc_info.value.status_code == 409

    with pytest.raises(HTTPException) as exc_info:
        await admin_router.delete_team(str(ObjectId()), request=None, admin=_ADMIN)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_manual_score_finishes_and_audits(fake_db):
    game, competition_id = _competition_with_game(fake_db, live_home_score=1, live_away_score=1)
    game_id = str(game["_id"])
    fake_db.competition_users.docs.extend([
        {"_id": ObjectId(), "competition_id": competition_id, "user_id": "u1", "shooters": 0},
        {"_id": ObjectId(), "competition_id": competition_id, "user_id": "u2", "shooters": 0},
    ])
    fake_db.bets.docs.append(
        {"_id": ObjectId(), "game_id": game_id, "user_id": "u1", "score1": 2, "score2": 1, "points": None},
    )

    result = await admin_router.manual_score(
        game_id, ManualScoreUpdate(home_score=2, away_score=1), request=None, admin=_ADMIN,
    )

    assert result["status"] == "FINISHED"
    assert (result["home_score"], result["away_score"]) == (2, 1)
    assert fake_db.bets.docs[0]["points"] == 3
    shooters = {m["user_id"]: m["shooters"] for m in fake_db.competition_users.docs}
    assert shooters == {"u1": 0, "u2": 1}
    entry = fake_db.audit_logs.docs[0]
    assert entry["action"] == "GAME_SCORE_OVERRIDE"
    assert entry["actor_id"] == str(_ADMIN["_id"])
    assert entry["ip"] == ""
    assert entry["metadata"]["before"] == {"status": "LIVE", "home_score": None, "away_score": None}
    assert entry["metadata"]["after"] == {"status": "FINISHED", "home_score": 2, "away_score": 1}


@pytest.mark.asyncio
async def test_set_status_finished_needs_a_score(fake_db):
    game, _ = _competition_with_game(fake_db)

    with pytest.raises(HTTPException) as exc_info:
        await admin_router.set_game_status(
            str(game["_id"]), GameStatusUpdate(status=GameStatus.FINISHED), request=None, admin=_ADMIN,
        )
    assert exc_info.value.status_code == 400
    assert fake_db.games.docs[0]["status"] == "LIVE"


@pytest.mark.asyncio
async def test_set_status_finished_uses_live_score(fake_db):
    game, _ = _competition_with_game(fake_db, live_home_score=0, live_away_score=2)

    result = await admin_router.set_game_status(
        str(game["_id"]), GameStatusUpdate(status=GameStatus.FINISHED), request=None, admin=_ADMIN,
    )

    assert result["status"] == "FINISHED"
    assert (result["home_score"], result["away_score"]) == (0, 2)
    assert result["decided_by"] == "FT"


@pytest.mark.asyncio
async def test_reset_live_games(fake_db):
    _competition_with_game(fake_db, live_home_score=1, live_away_score=0, elapsed_minute=55)
    _competition_with_game(fake_db, status="FINISHED", home_score=1, away_score=0)

    result = await admin_router.reset_live(request=None, competition_id=None, admin=_ADMIN)

    assert result == {"reset": 1}
    live, finished = fake_db.games.docs
    assert live["status"] == "UPCOMING"
    assert live["live_home_score"] is None
    assert live["elapsed_minute"] is None
    assert finished["status"] == "FINISHED"


@pytest.mark.asyncio
async def test_recompute_rescores_finished_games(fake_db):
    game, competition_id = _competition_with_game(fake_db, status="FINISHED", home_score=1, away_score=1)
    fake_db.competition_users.docs.append(
        {"_id": ObjectId(), "competition_id": competition_id, "user_id": "u1", "shooters": 5},
    )
    fake_db.bets.docs.append(
        {"_id": ObjectId(), "game_id": str(game["_id"]), "user_id": "u1", "score1": 0, "score2": 0, "points": 0},
    )

    result = await admin_router.recompute(competition_id, request=None, admin=_ADMIN)

    assert result == {"games": 1, "bets_rescored": 1, "members": 1}
    assert fake_db.bets.docs[0]["points"] == 1
    assert fake_db.competition_users.docs[0]["shooters"] == 0
    assert fake_db.audit_logs.docs[0]["action"] == "RECOMPUTE_POINTS"

    with pytest.raises(HTTPException) as exc_info:
        await admin_router.recompute(str(ObjectId()), request=None, admin=_ADMIN)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_patch_status_finished_scores_bets(fake_db):
    game, competition_id = _competition_with_game(fake_db, live_home_score=2, live_away_score=1)
    game_id = str(game["_id"])
    fake_db.competition_users.docs.append(
        {"_id": ObjectId(), "competition_id": competition_id, "user_id": "u1", "shooters": 0},
    )
    fake_db.bets.docs.append(
        {"_id": ObjectId(), "game_id": game_id, "user_id": "u1", "score1": 2, "score2": 1, "points": None},
    )

    result = await admin_router.update_game(
        game_id, GameUpdate(status=GameStatus.FINISHED), request=None, admin=_ADMIN,
    )

    assert result["status"] == "FINISHED"
    assert (result["home_score"], result["away_score"]) == (2, 1)
    stored = fake_db.games.docs[0]
    assert (stored["status"], stored["home_score"], stored["away_score"]) == ("FINISHED", 2, 1)
    assert fake_db.bets.docs[0]["points"] == 3


@pytest.mark.asyncio
async def test_patch_status_finished_without_score_is_rejected(fake_db):
    game, _ = _competition_with_game(fake_db)
    kickoff = utcnow() - timedelta(minutes=30)

    with pytest.raises(HTTPException) as exc_info:
        await admin_router.update_game(
            str(game["_id"]), GameUpdate(date=kickoff, status=GameStatus.FINISHED), request=None, admin=_ADMIN,
        )

    assert exc_info.value.status_code == 400
    stored = fake_db.games.docs[0]
    assert stored["status"] == "LIVE"
    assert stored["home_score"] is None


@pytest.mark.asyncio
async def test_create_team_flags_similar_names(fake_db):
    first = await admin_router.create_team(TeamCreate(name="Stade Rennais"), request=None, admin=_ADMIN)
    second = await admin_router.create_team(TeamCreate(name="Stade Brestois"), request=None, admin=_ADMIN)

    assert first["similar_teams"] == []
    assert second["similar_teams"] == ["Stade Rennais"]
    assert len(fake_db.teams.docs) == 2
    assert all("similar_teams" not in doc for doc in fake_db.teams.docs)


@pytest.mark.asyncio
async def test_import_competition_is_audited(fake_db, monkeypatch):
    calls = []

    async def _fake_import(external_id, season, sport_type, only_future):
        calls.append((external_id, season, sport_type, only_future))
        return {"competition": {"id": "c42"}, "games": {"created": 12, "skipped": 0, "total": 12}}

    monkeypatch.setattr(import_service, "import_competition", _fake_import)

    result = await admin_router.import_competition(
        CompetitionImport(external_competition_id=16, season="2025", sport_type=SportType.RUGBY),
        request=None, admin=_ADMIN,
    )

    assert result["games"]["created"] == 12
    assert calls == [(16, "2025", "RUGBY", True)]
    entry = fake_db.audit_logs.docs[0]
    assert (entry["action"], entry["target_id"]) == ("COMPETITION_IMPORT", "c42")
    assert entry["metadata"] == {"external_id": 16, "season": "2025", "games": 12}


@pytest.mark.asyncio
async def test_sync_new_games_is_audited(fake_db, monkeypatch):
    summary = {"total_competitions": 1, "successful": 1, "total_new_games": 2}

    async def _fake_sync():
        return {"summary": summary, "results": []}

    monkeypatch.setattr(import_service, "sync_new_games", _fake_sync)

    result = await admin_router.sync_new_games(request=None, admin=_ADMIN)

    assert result["summary"] == summary
    assert fake_db.audit_logs.docs[0]["action"] == "COMPETITION_SYNC_NEW_GAMES"
    assert fake_db.audit_logs.docs[0]["metadata"] == summary

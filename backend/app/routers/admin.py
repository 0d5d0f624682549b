"""
backend/app/routers/admin.py

Purpose:
    Admin HTTP router: teams, games and scores, live sync triggers, game
    status updates, competition import from the feed catalog, competition
    participants, bets and points recomputation.
    Every mutating endpoint writes an audit entry.

Dependencies:
    - app.services.auth_service
    - app.services.audit_service
    - app.services.game_service / bet_service / competition_service / team_service
    - app.workers.live_sync / game_status
"""

import logging
import time as _time
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

import app.database as _db
from app.models.bet import AdminBetCreate, AdminBetUpdate
from app.models.competition import CompetitionImport, ParticipantAdd
from app.models.game import GameStatus, GameStatusUpdate, GameUpdate, ManualScoreUpdate, SportType
from app.models.teams import TeamCreate, TeamResponse, TeamUpdate
from app.services import bet_service, competition_service, game_service, import_service, team_service
from app.services.audit_service import log_audit
from app.services.auth_service import get_admin_user
from app.workers.game_status import update_game_statuses
from app.workers.live_sync import run_live_sync

logger = logging.getLogger("pronofoot.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

@router.get("/teams", response_model=list[TeamResponse])
async def list_teams(sport_type: Optional[SportType] = Query(None), admin=Depends(get_admin_user)):
    teams = await team_service.list_teams(sport_type.value if sport_type else None)
    return [team_service.serialize_team(t) for t in teams]


@router.post("/teams", status_code=status.HTTP_201_CREATED, response_model=TeamResponse)
async def create_team(body: TeamCreate, request: Request, admin=Depends(get_admin_user)):
    team = await team_service.create_team(body.name, body.sport_type.value, body.short_name, body.logo)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=str(team["_id"]), action="TEAM_CREATE",
        metadata={"name": team["name"]}, request=request,
    )
    return team_service.serialize_team(team)


@router.patch("/teams/{team_id}", response_model=TeamResponse)
async def update_team(team_id: str, body: TeamUpdate, request: Request, admin=Depends(get_admin_user)):
    team = await team_service.update_team(team_id, body.model_dump(exclude_unset=True))
    await log_audit(
        actor_id=str(admin["_id"]), target_id=team_id, action="TEAM_UPDATE",
        metadata=body.model_dump(exclude_unset=True), request=request,
    )
    return team_service.serialize_team(team)


@router.delete("/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(team_id: str, request: Request, admin=Depends(get_admin_user)):
    await team_service.delete_team(team_id)
    await log_audit(actor_id=str(admin["_id"]), target_id=team_id, action="TEAM_DELETE", request=request)


# ---------------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------------

@router.get("/games")
async def list_games(
    competition_id: Optional[str] = Query(None),
    game_status: Optional[GameStatus] = Query(None, alias="status"),
    limit: int = Query(500, ge=1, le=5000),
    admin=Depends(get_admin_user),
):
    games = await game_service.list_games(
        competition_id, game_status.value if game_status else None, limit,
    )
    return [game_service.serialize_game(g) for g in games]


@router.patch("/games/{game_id}")
async def update_game(game_id: str, body: GameUpdate, request: Request, admin=Depends(get_admin_user)):
    fields = body.model_dump(exclude_unset=True)
    game = await game_service.update_game(game_id, fields)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=game_id, action="GAME_UPDATE",
        metadata={k: str(v) for k, v in fields.items()}, request=request,
    )
    return game_service.serialize_game(game)


@router.post("/games/{game_id}/score")
async def manual_score(
    game_id: str, body: ManualScoreUpdate, request: Request, admin=Depends(get_admin_user),
):
    """Override a game's score; finishing rescores its bets."""
    before = await game_service.get_game(game_id)
    game = await game_service.manual_score_update(
        game_id, body.home_score, body.away_score, body.status, body.decided_by,
    )
    await log_audit(
        actor_id=str(admin["_id"]), target_id=game_id, action="GAME_SCORE_OVERRIDE",
        metadata={
            "before": {
                "status": before.get("status"),
                "home_score": before.get("home_score"),
                "away_score": before.get("away_score"),
            },
            "after": {"status": body.status.value, "home_score": body.home_score, "away_score": body.away_score},
        },
        request=request,
    )
    return game_service.serialize_game(game)


@router.post("/games/{game_id}/status")
async def set_game_status(
    game_id: str, body: GameStatusUpdate, request: Request, admin=Depends(get_admin_user),
):
    game = await game_service.update_game_status(game_id, body.status)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=game_id, action="GAME_STATUS",
        metadata={"status": body.status.value}, request=request,
    )
    return game_service.serialize_game(game)


@router.get("/games/{game_id}/bets")
async def game_bets(game_id: str, admin=Depends(get_admin_user)):
    """All bets of a game regardless of kickoff."""
    await game_service.get_game(game_id)
    bets = await _db.db.bets.find({"game_id": game_id}).sort("created_at", 1).to_list(length=1000)
    return [
        {
            "id": str(b["_id"]),
            "user_id": b["user_id"],
            "score1": b["score1"],
            "score2": b["score2"],
            "points": b.get("points"),
        }
        for b in bets
    ]


@router.post("/games/reset-live")
async def reset_live(
    request: Request,
    competition_id: Optional[str] = Query(None),
    admin=Depends(get_admin_user),
):
    count = await game_service.reset_live_games(competition_id)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=competition_id or "*", action="RESET_LIVE_GAMES",
        metadata={"count": count}, request=request,
    )
    return {"reset": count}


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

@router.post("/live-sync/{sport_type}")
async def trigger_live_sync(sport_type: SportType, admin=Depends(get_admin_user)):
    """Run one live sync pass now and return its report."""
    logger.info("Admin %s triggered live sync: %s", admin["_id"], sport_type.value)
    t0 = _time.monotonic()
    try:
        report = await run_live_sync(sport_type.value)
    except Exception as e:
        logger.error("Manual live sync %s failed: %s", sport_type.value, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Live sync failed. Check server logs.")
    return {**report.to_dict(), "duration_ms": int((_time.monotonic() - t0) * 1000)}


@router.post("/update-game-statuses")
async def trigger_status_update(admin=Depends(get_admin_user)):
    return await update_game_statuses()


# ---------------------------------------------------------------------------
# Competitions
# ---------------------------------------------------------------------------

@router.get("/competitions/external")
async def external_competitions(
    sport_type: SportType = Query(SportType.FOOTBALL), admin=Depends(get_admin_user),
):
    return await import_service.list_external_competitions(sport_type.value)


@router.post("/competitions/import", status_code=status.HTTP_201_CREATED)
async def import_competition(body: CompetitionImport, request: Request, admin=Depends(get_admin_user)):
    result = await import_service.import_competition(
        body.external_competition_id, body.season, body.sport_type.value, body.import_only_future_games,
    )
    await log_audit(
        actor_id=str(admin["_id"]), target_id=result["competition"]["id"], action="COMPETITION_IMPORT",
        metadata={
            "external_id": body.external_competition_id,
            "season": body.season,
            "games": result["games"]["created"],
        },
        request=request,
    )
    return result


@router.post("/competitions/sync-new-games")
async def sync_new_games(request: Request, admin=Depends(get_admin_user)):
    """Add fixtures published after import to UPCOMING/ACTIVE competitions."""
    result = await import_service.sync_new_games()
    await log_audit(
        actor_id=str(admin["_id"]), target_id="*", action="COMPETITION_SYNC_NEW_GAMES",
        metadata=result["summary"], request=request,
    )
    return result


@router.get("/competitions/{competition_id}/participants")
async def participants(competition_id: str, admin=Depends(get_admin_user)):
    return await competition_service.list_participants(competition_id)


@router.post("/competitions/{competition_id}/participants", status_code=status.HTTP_201_CREATED)
async def add_participant(
    competition_id: str, body: ParticipantAdd, request: Request, admin=Depends(get_admin_user),
):
    user = await _db.db.users.find_one({"_id": ObjectId(body.user_id)}, {"_id": 1})
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    result = await competition_service.join_competition(competition_id, body.user_id)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=competition_id, action="PARTICIPANT_ADD",
        metadata={"user_id": body.user_id}, request=request,
    )
    return result


@router.delete("/competitions/{competition_id}/participants/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_participant(
    competition_id: str, user_id: str, request: Request, admin=Depends(get_admin_user),
):
    await competition_service.remove_member(competition_id, user_id)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=competition_id, action="PARTICIPANT_REMOVE",
        metadata={"user_id": user_id}, request=request,
    )


@router.post("/competitions/{competition_id}/recompute")
async def recompute(competition_id: str, request: Request, admin=Depends(get_admin_user)):
    """Rescore every finished game of a competition and refresh shooters."""
    await competition_service.get_competition(competition_id)
    games = await _db.db.games.find(
        {"competition_id": competition_id, "status": GameStatus.FINISHED.value}
    ).to_list(length=10_000)
    rescored = 0
    for game in games:
        rescored += await bet_service.rescore_game_bets(game)
    members = await competition_service.refresh_shooters(competition_id)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=competition_id, action="RECOMPUTE_POINTS",
        metadata={"games": len(games), "bets": rescored}, request=request,
    )
    return {"games": len(games), "bets_rescored": rescored, "members": members}


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------

@router.post("/bets", status_code=status.HTTP_201_CREATED)
async def create_bet(body: AdminBetCreate, request: Request, admin=Depends(get_admin_user)):
    bet = await bet_service.admin_create_bet(body.game_id, body.user_id, body.score1, body.score2)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=str(bet["_id"]), action="BET_CREATE",
        metadata=body.model_dump(), request=request,
    )
    return {"id": str(bet["_id"]), "points": bet.get("points")}


@router.patch("/bets/{bet_id}")
async def update_bet(bet_id: str, body: AdminBetUpdate, request: Request, admin=Depends(get_admin_user)):
    bet = await bet_service.admin_update_bet(bet_id, body.score1, body.score2)
    await log_audit(
        actor_id=str(admin["_id"]), target_id=bet_id, action="BET_UPDATE",
        metadata=body.model_dump(), request=request,
    )
    return {"id": bet_id, "score1": bet["score1"], "score2": bet["score2"], "points": bet.get("points")}


@router.delete("/bets/{bet_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bet(bet_id: str, request: Request, admin=Depends(get_admin_user)):
    await bet_service.admin_delete_bet(bet_id)
    await log_audit(actor_id=str(admin["_id"]), target_id=bet_id, action="BET_DELETE", request=request)
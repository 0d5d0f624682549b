import logging
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, status

import app.database as _db
from app.utils.team_matching import normalize_team_name, teams_match

logger = logging.getLogger("pronofoot.team_service")


def serialize_team(team: dict) -> dict:
    return {
        "id": str(team["_id"]),
        "name": team["name"],
        "short_name": team.get("short_name"),
        "logo": team.get("logo"),
        "sport_type": team.get("sport_type", "FOOTBALL"),
        "normalized_name": team.get("normalized_name") or normalize_team_name(team["name"]),
        "similar_teams": team.get("similar_teams", []),
    }


async def _ensure_unique(name: str, sport_type: str, exclude_id: Optional[ObjectId] = None) -> str:
    """Reject a name whose normalized form already exists for the sport."""
    normalized = normalize_team_name(name)
    query: dict = {"normalized_name": normalized, "sport_type": sport_type}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    existing = await _db.db.teams.find_one(query, {"name": 1})
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Team '{existing['name']}' already exists.",
        )
    return normalized


async def find_similar_teams(name: str, sport_type: str, exclude_id: Optional[ObjectId] = None) -> list[str]:
    """Names of existing teams that loosely match `name` (shared token or prefix).

    Not a conflict: "Stade Rennais" and "Stade Brestois" match too, so
    callers only surface these to the admin.
    """
    teams = await _db.db.teams.find({"sport_type": sport_type}, {"name": 1}).to_list(length=5000)
    return [
        t["name"] for t in teams
        if t["_id"] != exclude_id and teams_match(name, t["name"])
    ]


async def list_teams(sport_type: Optional[str] = None) -> list[dict]:
    query = {"sport_type": sport_type} if sport_type else {}
    return await _db.db.teams.find(query).sort("name", 1).to_list(length=5000)


async def create_team(
    name: str, sport_type: str, short_name: Optional[str] = None, logo: Optional[str] = None,
) -> dict:
    name = name.strip()
    normalized = await _ensure_unique(name, sport_type)
    similar = await find_similar_teams(name, sport_type)
    if similar:
        logger.warning("New team %s looks like existing team(s): %s", name, ", ".join(similar))
    doc = {
        "name": name,
        "short_name": short_name,
        "logo": logo,
        "sport_type": sport_type,
        "normalized_name": normalized,
    }
    result = await _db.db.teams.insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("Team created: %s (%s)", name, sport_type)
    return {**doc, "similar_teams": similar}


async def update_team(team_id: str, fields: dict) -> dict:
    team = await _db.db.teams.find_one({"_id": ObjectId(team_id)})
    if not team:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found.")

    update = {k: v for k, v in fields.items() if v is not None}
    if "name" in update:
        update["name"] = update["name"].strip()
        update["normalized_name"] = await _ensure_unique(
            update["name"], team.get("sport_type", "FOOTBALL"), exclude_id=team["_id"],
        )
    if update:
        await _db.db.teams.update_one({"_id": team["_id"]}, {"$set": update})
        # Games embed a team snapshot; keep it in sync
        snapshot = {k: update[k] for k in ("name", "short_name", "logo") if k in update}
        for side in ("home_team", "away_team"):
            if snapshot:
                await _db.db.games.update_many(
                    {f"{side}.id": team_id},
                    {"$set": {f"{side}.{k}": v for k, v in snapshot.items()}},
                )
    return {**team, **update}


async def delete_team(team_id: str) -> None:
    in_use = await _db.db.games.count_documents(
        {"$or": [{"home_team.id": team_id}, {"away_team.id": team_id}]}
    )
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Team is used by {in_use} games.",
        )
    result = await _db.db.teams.delete_one({"_id": ObjectId(team_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found.")
    logger.info("Team deleted: %s", team_id)

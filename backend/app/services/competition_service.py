"""
backend/app/services/competition_service.py

Purpose:
    Competition-level read models and membership: join, live ranking, ranking
    evolution, players performance, calendar, shooters (forgotten bets) and
    the final winner prediction with its bonus.

Dependencies:
    - app.database
    - app.services.bet_service
    - app.services.scoring_service
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.config import settings
from app.models.game import GameStatus
from app.services.bet_service import is_member, points_for
from app.services.scoring_service import bet_result
from app.utils import as_utc, ensure_utc, utcnow

logger = logging.getLogger("pronofoot.competition_service")

PLACEHOLDER_TEAM_NAMES = {"xxxx", "xxxx2"}
RANKING_EVOLUTION_DAYS = 20
PERFORMANCE_GAMES = 10

_PLAYED = [GameStatus.LIVE.value, GameStatus.FINISHED.value]


async def get_competition(competition_id: str) -> dict:
    competition = await _db.db.competitions.find_one({"_id": ObjectId(competition_id)})
    if not competition:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Competition not found.",
        )
    return competition


async def _require_member(competition_id: str, user_id: str) -> None:
    if not await is_member(competition_id, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this competition.",
        )


async def _members(competition_id: str) -> list[dict]:
    """Memberships of a competition joined with user name and picture."""
    memberships = await _db.db.competition_users.find(
        {"competition_id": competition_id}
    ).to_list(length=10_000)
    oids = [ObjectId(m["user_id"]) for m in memberships if ObjectId.is_valid(m["user_id"])]
    users = await _db.db.users.find(
        {"_id": {"$in": oids}}, {"name": 1, "profile_picture_url": 1},
    ).to_list(length=len(oids) or 1)
    users_by_id = {str(u["_id"]): u for u in users}

    members = []
    for m in memberships:
        user = users_by_id.get(m["user_id"], {})
        members.append({
            **m,
            "user_name": user.get("name", "Unknown"),
            "profile_picture_url": user.get("profile_picture_url"),
        })
    return members


async def _games(competition_id: str, statuses: Optional[list[str]] = None) -> list[dict]:
    query: dict = {"competition_id": competition_id}
    if statuses:
        query["status"] = {"$in": statuses}
    return await _db.db.games.find(query).sort("date", 1).to_list(length=10_000)


async def _bets_for_games(games: list[dict]) -> list[dict]:
    game_ids = [str(g["_id"]) for g in games]
    if not game_ids:
        return []
    return await _db.db.bets.find({"game_id": {"$in": game_ids}}).to_list(length=100_000)


def _base_points(bet: Optional[dict]) -> Optional[int]:
    """Points of a bet without the final winner bonus."""
    if not bet or bet.get("points") is None:
        return None
    return bet["points"] - int(bet.get("final_winner_bonus") or 0)


def _date_key(value: datetime) -> str:
    return ensure_utc(value).date().isoformat()


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

async def join_competition(competition_id: str, user_id: str) -> dict:
    """Join a competition. Joining twice is a no-op reported as already_member."""
    competition = await get_competition(competition_id)
    if competition.get("status") == "COMPLETED":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This competition is already completed.",
        )

    if await is_member(competition_id, user_id):
        return {"already_member": True, "competition_id": competition_id}

    try:
        await _db.db.competition_users.insert_one({
            "competition_id": competition_id,
            "user_id": user_id,
            "shooters": 0,
            "final_winner_team_id": None,
            "joined_at": utcnow(),
        })
    except DuplicateKeyError:
        return {"already_member": True, "competition_id": competition_id}

    logger.info("User %s joined competition %s", user_id, competition_id)
    return {"already_member": False, "competition_id": competition_id}


async def remove_member(competition_id: str, user_id: str) -> None:
    result = await _db.db.competition_users.delete_one(
        {"competition_id": competition_id, "user_id": user_id}
    )
    if result.deleted_count == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User is not a member of this competition.",
        )
    logger.info("User %s removed from competition %s", user_id, competition_id)


async def list_participants(competition_id: str) -> list[dict]:
    await get_competition(competition_id)
    return [
        {
            "user_id": m["user_id"],
            "user_name": m["user_name"],
            "profile_picture_url": m["profile_picture_url"],
            "shooters": m.get("shooters", 0),
            "joined_at": as_utc(m.get("joined_at")),
        }
        for m in await _members(competition_id)
    ]


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

async def get_live_ranking(competition_id: str) -> list[dict]:
    """Members ranked by points on FINISHED games, then by exact scores."""
    await get_competition(competition_id)
    members = await _members(competition_id)
    games = await _games(competition_id, [GameStatus.FINISHED.value])

    totals: dict[str, dict] = {
        m["user_id"]: {"points": 0, "exact_scores": 0, "bets": 0} for m in members
    }
    for bet in await _bets_for_games(games):
        row = totals.get(bet["user_id"])
        if row is None:
            continue
        row["points"] += bet.get("points") or 0
        row["bets"] += 1
        if bet_result(_base_points(bet)) == "exact":
            row["exact_scores"] += 1

    ranking = [
        {
            "user_id": m["user_id"],
            "user_name": m["user_name"],
            "profile_picture_url": m["profile_picture_url"],
            "shooters": m.get("shooters", 0),
            **totals[m["user_id"]],
        }
        for m in members
    ]
    ranking.sort(key=lambda r: (-r["points"], -r["exact_scores"]))
    for position, row in enumerate(ranking, start=1):
        row["position"] = position
    return ranking


async def get_ranking_evolution(competition_id: str, user_id: str) -> list[dict]:
    """Cumulative ranking after each of the last 20 matchdays."""
    await _require_member(competition_id, user_id)
    games = await _games(competition_id, _PLAYED)
    if not games:
        return []
    members = await _members(competition_id)
    bets = await _bets_for_games(games)

    games_by_date: dict[str, list[dict]] = defaultdict(list)
    for game in games:
        games_by_date[_date_key(game["date"])].append(game)

    bets_by_game: dict[str, list[dict]] = defaultdict(list)
    for bet in bets:
        bets_by_game[bet["game_id"]].append(bet)

    evolution = []
    for date_key in sorted(games_by_date)[-RANKING_EVOLUTION_DAYS:]:
        latest = ensure_utc(games_by_date[date_key][-1]["date"])
        points = {m["user_id"]: 0 for m in members}
        for game in games:
            if ensure_utc(game["date"]) > latest:
                break
            for bet in bets_by_game[str(game["_id"])]:
                if bet["user_id"] in points:
                    points[bet["user_id"]] += bet.get("points") or 0

        rankings = sorted(
            (
                {
                    "user_id": m["user_id"],
                    "user_name": m["user_name"],
                    "profile_picture_url": m["profile_picture_url"],
                    "total_points": points[m["user_id"]],
                }
                for m in members
            ),
            key=lambda r: -r["total_points"],
        )
        for position, row in enumerate(rankings, start=1):
            row["position"] = position
        evolution.append({"date": latest, "rankings": rankings})
    return evolution


async def get_players_performance(competition_id: str) -> dict:
    """Per member results on the last 10 FINISHED games, most recent first."""
    await get_competition(competition_id)
    members = await _members(competition_id)
    games = await _db.db.games.find(
        {"competition_id": competition_id, "status": GameStatus.FINISHED.value}
    ).sort("date", -1).limit(PERFORMANCE_GAMES).to_list(length=PERFORMANCE_GAMES)
    bets = {(b["game_id"], b["user_id"]): b for b in await _bets_for_games(games)}

    players = []
    for m in members:
        results = []
        for game in games:
            bet = bets.get((str(game["_id"]), m["user_id"]))
            results.append({
                "game_id": str(game["_id"]),
                "date": as_utc(game["date"]),
                "home_team": game["home_team"]["name"],
                "away_team": game["away_team"]["name"],
                "actual_score": f"{game.get('home_score')}-{game.get('away_score')}",
                "predicted_score": f"{bet['score1']}-{bet['score2']}" if bet else "N/A",
                "points": bet.get("points") if bet else None,
                "result": bet_result(_base_points(bet)),
            })
        players.append({
            "user_id": m["user_id"],
            "user_name": m["user_name"],
            "profile_picture_url": m["profile_picture_url"],
            "games": results,
        })
    return {"games_count": len(games), "players": players}


async def get_calendar(competition_id: str, user_id: str) -> dict:
    """Game days grouped into matchdays of consecutive dates.

    Each day carries its games with the caller's bet; player_day_scores holds
    every member's points per day.
    """
    await get_competition(competition_id)
    members = await _members(competition_id)
    games = await _games(competition_id)
    bets = await _bets_for_games(games)
    bets_by_game: dict[str, list[dict]] = defaultdict(list)
    for bet in bets:
        bets_by_game[bet["game_id"]].append(bet)

    games_by_date: dict[str, list[dict]] = defaultdict(list)
    for game in games:
        games_by_date[_date_key(game["date"])].append(game)
    dates = sorted(games_by_date)

    matchday = 1
    today = utcnow().date().isoformat()
    game_days = []
    player_day_scores = []
    for index, date_key in enumerate(dates):
        if index > 0:
            previous = datetime.fromisoformat(dates[index - 1])
            if datetime.fromisoformat(date_key) - previous != timedelta(days=1):
                matchday += 1

        day_games = games_by_date[date_key]
        day_number = index + 1
        game_days.append({
            "day_number": day_number,
            "matchday": matchday,
            "date": date_key,
            "is_completed": all(g["status"] == GameStatus.FINISHED.value for g in day_games),
            "is_current": date_key == today,
            "games": [
                {
                    "id": str(g["_id"]),
                    "date": as_utc(g["date"]),
                    "status": g["status"],
                    "home_team": g["home_team"],
                    "away_team": g["away_team"],
                    "home_score": g.get("home_score"),
                    "away_score": g.get("away_score"),
                    "my_bet": next(
                        (
                            {"score1": b["score1"], "score2": b["score2"], "points": b.get("points")}
                            for b in bets_by_game[str(g["_id"])] if b["user_id"] == user_id
                        ),
                        None,
                    ),
                }
                for g in day_games
            ],
        })
        for m in members:
            day_points = sum(
                b.get("points") or 0
                for g in day_games
                for b in bets_by_game[str(g["_id"])]
                if b["user_id"] == m["user_id"]
            )
            player_day_scores.append(
                {"player_id": m["user_id"], "day_number": day_number, "points": day_points}
            )

    return {
        "players": [
            {"id": m["user_id"], "name": m["user_name"], "profile_picture_url": m["profile_picture_url"]}
            for m in members
        ],
        "game_days": game_days,
        "player_day_scores": player_day_scores,
    }


# ---------------------------------------------------------------------------
# Shooters
# ---------------------------------------------------------------------------

async def refresh_shooters(competition_id: str) -> int:
    """Store, per member, the number of LIVE/FINISHED games they did not bet on."""
    games = await _games(competition_id, _PLAYED)
    bet_counts: dict[str, int] = defaultdict(int)
    for bet in await _bets_for_games(games):
        bet_counts[bet["user_id"]] += 1

    memberships = await _db.db.competition_users.find(
        {"competition_id": competition_id}
    ).to_list(length=10_000)
    for m in memberships:
        shooters = max(len(games) - bet_counts[m["user_id"]], 0)
        if m.get("shooters") != shooters:
            await _db.db.competition_users.update_one(
                {"_id": m["_id"]}, {"$set": {"shooters": shooters}},
            )
    return len(memberships)


# ---------------------------------------------------------------------------
# Final winner prediction
# ---------------------------------------------------------------------------

def has_final_winner_prediction(competition: dict) -> bool:
    return settings.FINAL_WINNER_COMPETITION_KEYWORD in competition.get("name", "")


def _is_placeholder(team: dict) -> bool:
    return (team.get("name") or "").strip().lower() in PLACEHOLDER_TEAM_NAMES


async def _open_games(competition_id: str) -> list[dict]:
    return await _games(competition_id, [GameStatus.UPCOMING.value, GameStatus.LIVE.value])


def _available_teams(games: list[dict]) -> dict[str, dict]:
    teams: dict[str, dict] = {}
    for game in games:
        for team in (game["home_team"], game["away_team"]):
            if not _is_placeholder(team):
                teams[team["id"]] = team
    return teams


async def _final_winner_competition(competition_id: str) -> dict:
    competition = await get_competition(competition_id)
    if not has_final_winner_prediction(competition):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feature not available for this competition.",
        )
    return competition


async def get_final_winner_prediction(competition_id: str, user_id: str) -> dict:
    await _final_winner_competition(competition_id)
    membership = await _db.db.competition_users.find_one(
        {"competition_id": competition_id, "user_id": user_id}
    )
    games = await _open_games(competition_id)
    next_game = games[0] if games else None
    deadline = ensure_utc(next_game["date"]) if next_game else None
    teams = _available_teams(games)

    prediction = None
    team_id = (membership or {}).get("final_winner_team_id")
    if team_id:
        prediction = teams.get(team_id)
        if prediction is None and ObjectId.is_valid(team_id):
            team = await _db.db.teams.find_one({"_id": ObjectId(team_id)})
            if team:
                prediction = {
                    "id": team_id,
                    "name": team["name"],
                    "short_name": team.get("short_name"),
                    "logo": team.get("logo"),
                }

    return {
        "prediction": prediction,
        "deadline": deadline,
        "deadline_passed": deadline is None or utcnow() >= deadline,
        "available_teams": list(teams.values()),
        "next_game": {
            "id": str(next_game["_id"]),
            "date": deadline,
            "home_team": next_game["home_team"]["name"],
            "away_team": next_game["away_team"]["name"],
        } if next_game else None,
    }


async def set_final_winner_prediction(competition_id: str, user_id: str, team_id: str) -> dict:
    await _final_winner_competition(competition_id)
    games = await _open_games(competition_id)
    if games and utcnow() >= ensure_utc(games[0]["date"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Deadline has passed. Prediction cannot be changed.",
        )

    team = _available_teams(games).get(team_id)
    if team is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Team is not available for selection.",
        )

    await _db.db.competition_users.update_one(
        {"competition_id": competition_id, "user_id": user_id},
        {
            "$set": {"final_winner_team_id": team_id},
            "$setOnInsert": {"shooters": 0, "joined_at": utcnow()},
        },
        upsert=True,
    )
    logger.info("Final winner pick: user=%s competition=%s team=%s", user_id, competition_id, team["name"])
    return {"prediction": team}


async def award_final_winner_points(game: dict) -> int:
    """Give the final winner bonus for the last game of a competition.

    Only competitions named with FINAL_WINNER_COMPETITION_KEYWORD qualify,
    only the latest-dated game counts as the final and a draw awards nothing.
    Returns the number of members rewarded.
    """
    if game.get("final_winner_awarded"):
        return 0
    home, away = game.get("home_score"), game.get("away_score")
    if home is None or away is None or home == away:
        return 0

    competition = await _db.db.competitions.find_one({"_id": ObjectId(game["competition_id"])})
    if not competition or not has_final_winner_prediction(competition):
        return 0

    final = await _db.db.games.find(
        {"competition_id": game["competition_id"]}
    ).sort("date", -1).limit(1).to_list(length=1)
    if not final or final[0]["_id"] != game["_id"]:
        return 0

    winner_id = game["home_team"]["id"] if home > away else game["away_team"]["id"]
    winners = await _db.db.competition_users.find(
        {"competition_id": game["competition_id"], "final_winner_team_id": winner_id}
    ).to_list(length=10_000)

    game_id = str(game["_id"])
    bonus = settings.FINAL_WINNER_POINTS
    now = utcnow()
    for membership in winners:
        bet = await _db.db.bets.find_one({"game_id": game_id, "user_id": membership["user_id"]})
        if bet:
            bet["final_winner_bonus"] = bonus
            await _db.db.bets.update_one(
                {"_id": bet["_id"]},
                {"$set": {
                    "final_winner_bonus": bonus,
                    "points": points_for(bet, game, competition.get("sport_type")),
                    "updated_at": now,
                }},
            )
        else:
            placeholder = {
                "game_id": game_id,
                "user_id": membership["user_id"],
                "score1": 0,
                "score2": 0,
                "is_placeholder": True,
                "final_winner_bonus": bonus,
                "created_at": now,
                "updated_at": now,
            }
            placeholder["points"] = points_for(placeholder, game, competition.get("sport_type"))
            await _db.db.bets.insert_one(placeholder)

    await _db.db.games.update_one({"_id": game["_id"]}, {"$set": {"final_winner_awarded": True}})
    logger.info(
        "Final winner bonus: %d members rewarded for %s in %s",
        len(winners), game["home_team"]["name"] if home > away else game["away_team"]["name"],
        competition["name"],
    )
    return len(winners)

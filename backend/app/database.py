"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for the prediction game
    collections (users, teams, competitions, memberships, games, bets).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("pronofoot.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Users ----
    await db.users.create_index("email", unique=True, sparse=True)
    await db.users.create_index("is_deleted")

    # ---- Teams ----
    await db.teams.create_index("normalized_name")
    await db.teams.create_index("sport_type")

    # ---- Competitions / memberships ----
    await db.competitions.create_index("status")
    await db.competitions.create_index("sport_type")
    try:
        await db.competition_users.create_index(
            [("competition_id", 1), ("user_id", 1)], unique=True,
        )
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning("Skipped unique membership index due to duplicate data: %s", exc)
    await db.competition_users.create_index("user_id")

    # ---- Games ----
    await db.games.create_index([("competition_id", 1), ("date", 1)])
    await db.games.create_index([("status", 1), ("date", 1)])
    await db.games.create_index("external_id", sparse=True)

    # ---- Bets: one bet per user and game ----
    try:
        await db.bets.create_index([("game_id", 1), ("user_id", 1)], unique=True)
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning("Skipped unique bets index due to duplicate data: %s", exc)
    await db.bets.create_index("user_id")

    logger.info("MongoDB indexes ensured")

"""Periodic refresh of forgotten-bet counts ("shooters") on memberships."""

import logging

import app.database as _db
from app.services.competition_service import refresh_shooters
from app.workers._state import set_synced

logger = logging.getLogger("pronofoot.shooters")


async def refresh_all_shooters() -> int:
    """Refresh shooters for every non-completed competition. Returns competitions done."""
    competitions = await _db.db.competitions.find(
        {"status": {"$ne": "COMPLETED"}}, {"name": 1},
    ).to_list(length=1000)

    done = 0
    for competition in competitions:
        try:
            await refresh_shooters(str(competition["_id"]))
            done += 1
        except Exception as e:
            logger.error("Shooters refresh failed for %s: %s", competition.get("name", "?"), e)

    await set_synced("shooters")
    return done

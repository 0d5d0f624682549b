"""Worker bookkeeping in the `worker_state` collection.

One document per worker id holds the last run time and an optional summary
of that run, so admin views can show when live sync last ran and what it did.
"""

from typing import Any, Optional

import app.database as _db
from app.utils import utcnow


async def get_state(worker_id: str) -> Optional[dict]:
    return await _db.db.worker_state.find_one({"_id": worker_id})


async def set_synced(worker_id: str, summary: Optional[dict[str, Any]] = None) -> None:
    """Record a finished run, with its summary when given."""
    update: dict[str, Any] = {"synced_at": utcnow()}
    if summary is not None:
        update["last_summary"] = summary
    await _db.db.worker_state.update_one({"_id": worker_id}, {"$set": update}, upsert=True)

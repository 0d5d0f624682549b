"""Insert-only trail of admin actions (score overrides, bet edits, resets).

Only `log_audit` writes to the `audit_logs` collection; nothing updates or
deletes entries.
"""

import logging
from typing import Optional

from fastapi import Request

import app.database as _db
from app.utils import utcnow

logger = logging.getLogger("pronofoot.audit")


def _client_ip(request: Optional[Request]) -> str:
    if request is None:
        return ""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


async def log_audit(
    *,
    actor_id: str,
    target_id: str,
    action: str,
    metadata: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Record one admin action. A failed write is logged, never raised."""
    entry = {
        "actor_id": actor_id,
        "target_id": target_id,
        "action": action,
        "metadata": metadata or {},
        "ip": _client_ip(request),
        "timestamp": utcnow(),
    }
    try:
        await _db.db.audit_logs.insert_one(entry)
    except Exception as e:
        logger.error("Audit write failed for %s on %s: %s", action, target_id, e)
        return
    logger.info("AUDIT %s by %s on %s", action, actor_id, target_id)

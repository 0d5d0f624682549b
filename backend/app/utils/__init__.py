from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware datetimes are returned unchanged.

    Mongo hands dates back naive. Kickoff comparisons against utcnow() need
    both sides aware, so wrap every stored date before doing arithmetic.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def as_utc(dt: datetime | None) -> datetime | None:
    """ensure_utc() for optional fields in API responses."""
    if dt is None:
        return None
    return ensure_utc(dt)


def parse_utc(value: str | datetime) -> datetime:
    """Feed timestamps (ISO 8601, 'Z' or offset) to an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ensure_utc(parsed).astimezone(timezone.utc)


def hours_between(a: datetime, b: datetime) -> float:
    """Absolute distance between two datetimes in hours."""
    return abs((ensure_utc(a) - ensure_utc(b)).total_seconds()) / 3600.0

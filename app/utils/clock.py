"""
Clock seam.

Everything time-based takes an explicit ``now``; when omitted it falls back to
utc_now(), which tests pin with freezegun.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def resolve_now(now: datetime | None) -> datetime:
    """Return now (made UTC-aware if naive) or the current time."""
    if now is None:
        return utc_now()
    return now.replace(tzinfo=UTC) if now.tzinfo is None else now


def as_utc(dt: datetime | None) -> datetime | None:
    """Stored timestamp made UTC-aware (SQLite hands back naive datetimes), or None."""
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def iso_or_none(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None

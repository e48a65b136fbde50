"""
System event logging service.

Provides structured logging of key funnel events and failures to the database.
All SystemEvent creation should go through log_event (or info/warn/error) so the
payload shape stays consistent.
"""

import logging
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.models import SystemEvent
from app.middleware.correlation_id import get_correlation_id
from app.utils.clock import resolve_now

logger = logging.getLogger(__name__)

# Default retention: delete events older than this many days
DEFAULT_RETENTION_DAYS = 90


def log_event(
    db: Session,
    level: str,
    event_type: str,
    conversation_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
    correlation_id: str | None = None,
) -> SystemEvent:
    """
    Log a system event to the database.

    Args:
        db: Database session
        level: Event level (INFO, WARN, ERROR)
        event_type: Type of event (e.g., "offer_dm.delivery_failure")
        conversation_id: Optional conversation the event belongs to
        payload: Optional additional event data. Copied, never mutated.
        exc: Optional exception; its type and message are added to the payload.
        correlation_id: Optional request correlation ID (defaults to the current request's)

    Returns:
        Created SystemEvent object
    """
    normalized: dict = dict(payload) if payload else {}
    if exc is not None:
        normalized["error"] = {
            "type": type(exc).__name__,
            "message": str(exc)[:500],  # Truncate to avoid huge payloads
        }
    resolved_cid = correlation_id if correlation_id is not None else get_correlation_id()
    if resolved_cid is not None:
        normalized["correlation_id"] = resolved_cid

    event = SystemEvent(
        level=level.upper(),
        event_type=event_type,
        conversation_id=conversation_id,
        payload=normalized or None,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def info(db: Session, event_type: str, conversation_id: int | None = None, **kwargs) -> SystemEvent:
    """Log an INFO-level system event."""
    return log_event(db, "INFO", event_type, conversation_id=conversation_id, **kwargs)


def warn(db: Session, event_type: str, conversation_id: int | None = None, **kwargs) -> SystemEvent:
    """Log a WARN-level system event."""
    return log_event(db, "WARN", event_type, conversation_id=conversation_id, **kwargs)


def error(db: Session, event_type: str, conversation_id: int | None = None, **kwargs) -> SystemEvent:
    """Log an ERROR-level system event."""
    return log_event(db, "ERROR", event_type, conversation_id=conversation_id, **kwargs)


def list_events(
    db: Session,
    *,
    level: str | None = None,
    event_type: str | None = None,
    conversation_id: int | None = None,
    limit: int = 100,
) -> list[SystemEvent]:
    """Most recent events first, optionally filtered."""
    stmt = select(SystemEvent).order_by(SystemEvent.created_at.desc(), SystemEvent.id.desc())
    if level:
        stmt = stmt.where(SystemEvent.level == level.upper())
    if event_type:
        stmt = stmt.where(SystemEvent.event_type == event_type)
    if conversation_id is not None:
        stmt = stmt.where(SystemEvent.conversation_id == conversation_id)
    stmt = stmt.limit(max(0, min(limit, 500)))
    return list(db.execute(stmt).scalars().all())


def cleanup_old_events(
    db: Session,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now=None,
) -> int:
    """
    Delete SystemEvents older than retention_days.

    Returns:
        Number of rows deleted
    """
    cutoff = resolve_now(now) - timedelta(days=retention_days)
    result = db.execute(delete(SystemEvent).where(SystemEvent.created_at < cutoff))
    db.commit()
    deleted = result.rowcount
    logger.info(f"SystemEvent retention: deleted {deleted} events older than {cutoff.isoformat()}")
    return deleted

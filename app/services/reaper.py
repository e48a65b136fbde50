"""
Lifecycle reaper - closes conversations with no activity for the inactivity threshold.

Last activity = newest message, else updated_at, else created_at. Closing is a
conditional UPDATE on status='active', so re-running (or racing another reaper)
never double-closes and never reopens anything.
"""

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_CONVERSATION_CLOSED, EVENT_REAPER_ITEM_FAILURE
from app.constants.statuses import CLOSE_REASON_INACTIVE, STATUS_ACTIVE, STATUS_CLOSED
from app.core.config import settings
from app.db.models import Conversation
from app.services.conversations_repo import cas_update, latest_message_at, list_active
from app.services.system_event_service import info, warn
from app.utils.clock import as_utc, iso_or_none, resolve_now

logger = logging.getLogger(__name__)


@dataclass
class ReaperReport:
    checked: int = 0
    closed: int = 0
    already_closed: int = 0
    cancelled: bool = False
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def last_activity_at(db: Session, conversation: Conversation) -> datetime | None:
    return (
        latest_message_at(db, conversation.id)
        or as_utc(conversation.updated_at)
        or as_utc(conversation.created_at)
    )


def close_inactive_conversations(
    db: Session,
    *,
    now: datetime | None = None,
    threshold: timedelta | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> ReaperReport:
    """
    Close every active conversation idle for at least threshold.

    Args:
        db: Database session
        now: Reference time (defaults to utc_now())
        threshold: Inactivity threshold (defaults to settings.inactivity_threshold_days)
        should_stop: Polled between items; returning True ends the scan early

    Returns:
        ReaperReport. Per-item failures are collected in errors, never raised.
    """
    now = resolve_now(now)
    if threshold is None:
        threshold = timedelta(days=settings.inactivity_threshold_days)
    report = ReaperReport()

    for conversation in list_active(db):
        if should_stop is not None and should_stop():
            report.cancelled = True
            logger.info(f"Reaper cancelled after {report.checked} conversations")
            break
        conversation_id = conversation.id
        report.checked += 1
        try:
            last = last_activity_at(db, conversation)
            if last is None or now - last < threshold:
                continue
            affected = cas_update(
                db,
                conversation_id,
                {"status": STATUS_ACTIVE},
                {
                    "status": STATUS_CLOSED,
                    "closed_at": now,
                    "close_reason": CLOSE_REASON_INACTIVE,
                    "updated_at": now,
                },
            )
            if affected == 0:
                report.already_closed += 1
                continue
            report.closed += 1
            info(
                db=db,
                event_type=EVENT_CONVERSATION_CLOSED,
                conversation_id=conversation_id,
                payload={"reason": CLOSE_REASON_INACTIVE, "last_activity_at": iso_or_none(last)},
            )
        except Exception as e:
            db.rollback()
            logger.error(f"Reaper failed on conversation {conversation_id}: {e}", exc_info=True)
            report.errors.append({"conversation_id": conversation_id, "error": str(e)})

    if report.errors:
        warn(
            db=db,
            event_type=EVENT_REAPER_ITEM_FAILURE,
            payload={"count": len(report.errors), "errors": report.errors[:50]},
        )
    logger.info(
        f"Reaper: checked={report.checked} closed={report.closed} "
        f"already_closed={report.already_closed} errors={len(report.errors)}"
    )
    return report

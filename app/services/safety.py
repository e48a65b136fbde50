"""
Webhook idempotency.

Pattern: check_processed_event() -> process -> record_processed_event().
Recording only after processing means a crash mid-way lets the provider's retry
run the work again instead of silently dropping it.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.providers import PROVIDER_WHOP
from app.db.models import ProcessedMessage

logger = logging.getLogger(__name__)


def _find_processed(db: Session, event_id: str, provider: str) -> ProcessedMessage | None:
    stmt = select(ProcessedMessage).where(
        ProcessedMessage.provider == provider,
        ProcessedMessage.message_id == event_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def check_processed_event(
    db: Session,
    event_id: str,
    provider: str = PROVIDER_WHOP,
) -> tuple[bool, ProcessedMessage | None]:
    """
    Read-only duplicate check.

    Returns:
        Tuple of (is_duplicate, processed_message)
    """
    existing = _find_processed(db, event_id, provider)
    if existing:
        logger.info(f"Event {event_id} ({provider}) already processed at {existing.processed_at}")
        return True, existing
    return False, None


def record_processed_event(
    db: Session,
    event_id: str,
    event_type: str,
    conversation_id: int | None = None,
    provider: str = PROVIDER_WHOP,
) -> ProcessedMessage:
    """
    Mark an event as processed. Call AFTER the work succeeded.

    A concurrent request that recorded the same event first wins; its row is returned.
    """
    processed = ProcessedMessage(
        provider=provider,
        message_id=event_id,
        event_type=event_type,
        conversation_id=conversation_id,
    )
    db.add(processed)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_processed(db, event_id, provider)
        if existing is None:
            logger.error(f"IntegrityError recording event {event_id}, but no existing record found")
            raise
        logger.info(f"Event {event_id} recorded by concurrent request")
        return existing
    db.refresh(processed)
    return processed

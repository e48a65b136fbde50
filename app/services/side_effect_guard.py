"""
Side-effect guard - runs an irreversible action at most once per conversation.

Claim-then-act:
1. Conditional UPDATE sets one_time_action_claimed = true only if it is false.
   Exactly one of N concurrent callers gets rowcount 1; the rest get ALREADY_CLAIMED.
2. The winner awaits the action under a timeout.
3. DeliveryFailure or timeout -> the claim is released so a later trigger can retry.
4. Success -> bookkeeping (record the DM, stamp sent_at). The action already
   happened, so a bookkeeping failure never releases the claim; it is logged as
   an ERROR event and reported on the result.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_OFFER_DM_BOOKKEEPING_FAILURE,
    EVENT_OFFER_DM_DELIVERY_FAILURE,
)
from app.core.config import settings
from app.services.conversations_repo import cas_update
from app.services.funnel.errors import DeliveryFailure
from app.services.system_event_service import error, warn

logger = logging.getLogger(__name__)

STATUS_FIRED = "fired"
STATUS_ALREADY_CLAIMED = "already_claimed"
STATUS_FAILED = "failed"


@dataclass
class GuardResult:
    status: str
    value: Any = None
    error: str | None = None
    bookkeeping_error: str | None = None

    @property
    def fired(self) -> bool:
        return self.status == STATUS_FIRED


def claim_one_time_action(db: Session, conversation_id: int) -> bool:
    """True if this caller won the claim."""
    won = (
        cas_update(
            db,
            conversation_id,
            {"one_time_action_claimed": False},
            {"one_time_action_claimed": True},
        )
        == 1
    )
    if not won:
        logger.info(f"Conversation {conversation_id}: one-time action already claimed")
    return won


def release_one_time_action(db: Session, conversation_id: int) -> bool:
    """
    Compensating reset after a failed action.
    Only releases a claim whose action never completed (sent_at still NULL).
    """
    released = (
        cas_update(
            db,
            conversation_id,
            {"one_time_action_claimed": True, "one_time_action_sent_at": None},
            {"one_time_action_claimed": False},
        )
        == 1
    )
    if released:
        logger.info(f"Conversation {conversation_id}: one-time action claim released")
    return released


async def run_once(
    db: Session,
    conversation_id: int,
    action: Callable[[], Awaitable[Any]],
    *,
    bookkeeping: Callable[[Any], None] | None = None,
    timeout: float | None = None,
    failure_event_type: str = EVENT_OFFER_DM_DELIVERY_FAILURE,
    bookkeeping_event_type: str = EVENT_OFFER_DM_BOOKKEEPING_FAILURE,
) -> GuardResult:
    """
    Claim, then run action exactly once.

    Args:
        db: Database session
        conversation_id: Conversation owning the one-time action
        action: Zero-arg coroutine factory performing the side effect
        bookkeeping: Called with the action's return value after success
        timeout: Seconds before the action counts as failed
            (defaults to settings.side_effect_timeout_seconds)

    Returns:
        GuardResult (FIRED, ALREADY_CLAIMED or FAILED)
    """
    if not claim_one_time_action(db, conversation_id):
        return GuardResult(status=STATUS_ALREADY_CLAIMED)

    if timeout is None:
        timeout = settings.side_effect_timeout_seconds

    try:
        value = await asyncio.wait_for(action(), timeout=timeout)
    except (DeliveryFailure, asyncio.TimeoutError) as e:
        reason = str(e) or f"timed out after {timeout}s"
        logger.warning(f"Conversation {conversation_id}: one-time action failed ({reason})")
        db.rollback()
        release_one_time_action(db, conversation_id)
        warn(
            db=db,
            event_type=failure_event_type,
            conversation_id=conversation_id,
            payload={"reason": reason, "timeout_seconds": timeout},
            exc=e,
        )
        return GuardResult(status=STATUS_FAILED, error=reason)
    except Exception:
        db.rollback()
        release_one_time_action(db, conversation_id)
        raise

    result = GuardResult(status=STATUS_FIRED, value=value)
    if bookkeeping is not None:
        try:
            bookkeeping(value)
        except Exception as e:
            logger.error(
                f"Conversation {conversation_id}: action succeeded but bookkeeping failed: {e}",
                exc_info=True,
            )
            db.rollback()
            error(
                db=db,
                event_type=bookkeeping_event_type,
                conversation_id=conversation_id,
                exc=e,
            )
            result.bookkeeping_error = str(e)
    return result

"""
Offer DM - the one-time direct message carrying the affiliate link.

Fired through the side-effect guard when a conversation enters a trigger stage
(OFFER by default). sweep_offer_conversations() is the cron safety net for
conversations that reached OFFER but whose DM never went out.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_OFFER_DM_SENT
from app.constants.statuses import MESSAGE_TYPE_BOT
from app.core.config import settings
from app.db.models import Conversation
from app.services.conversations_repo import (
    cas_update,
    list_active,
    load_conversation,
    record_message,
)
from app.services.funnel.errors import ConversationNotFoundError
from app.services.funnel.graph import load_funnel_graph, resolve_block, stage_of
from app.services.funnel.link_resolver import resolve_link
from app.services.message_composer import render_message
from app.services.messaging import send_direct_message
from app.services.side_effect_guard import STATUS_ALREADY_CLAIMED, GuardResult, run_once
from app.services.system_event_service import info
from app.utils.clock import as_utc, resolve_now

logger = logging.getLogger(__name__)


def build_offer_dm(affiliate_link: str, install_url: str | None = None) -> str:
    return render_message(
        "offer_dm",
        affiliate_link=affiliate_link,
        install_url=install_url or settings.fallback_install_url,
    )


def _offer_link(db: Session, conversation: Conversation, resource_name: str | None) -> str:
    if resource_name:
        return resolve_link(db, conversation, resource_name)
    return conversation.resolved_affiliate_link or settings.fallback_install_url


async def send_offer_dm(
    db: Session,
    conversation_id: int,
    *,
    resource_name: str | None = None,
    now: datetime | None = None,
    timeout: float | None = None,
) -> GuardResult:
    """
    Send the offer DM for a conversation at most once.

    Args:
        db: Database session
        conversation_id: Conversation to DM
        resource_name: Resource to link (defaults to the current block's resource)
        now: Timestamp recorded as one_time_action_sent_at
        timeout: Delivery timeout override

    Returns:
        GuardResult from the side-effect guard

    Raises:
        ConversationNotFoundError: unknown conversation id
    """
    conversation = load_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    if conversation.one_time_action_claimed:
        # Cheap pre-check; the guard's conditional claim is what actually decides
        return GuardResult(status=STATUS_ALREADY_CLAIMED)

    if resource_name is None:
        graph = load_funnel_graph(conversation.funnel)
        resource_name = resolve_block(graph, conversation.current_block_id).resource_name

    link = _offer_link(db, conversation, resource_name)
    text = build_offer_dm(link)
    user_ref = conversation.user_ref

    async def deliver() -> dict:
        return await send_direct_message(user_ref, text)

    def bookkeeping(delivery: dict) -> None:
        sent_at = resolve_now(now)
        record_message(db, conversation_id, MESSAGE_TYPE_BOT, text, now=sent_at)
        cas_update(db, conversation_id, {}, {"one_time_action_sent_at": sent_at})
        info(
            db=db,
            event_type=EVENT_OFFER_DM_SENT,
            conversation_id=conversation_id,
            payload={
                "resource_name": resource_name,
                "link": link,
                "delivery_status": delivery.get("status"),
            },
        )

    result = await run_once(db, conversation_id, deliver, bookkeeping=bookkeeping, timeout=timeout)
    logger.info(f"Offer DM for conversation {conversation_id}: {result.status}")
    return result


async def sweep_offer_conversations(
    db: Session,
    *,
    now: datetime | None = None,
    delay: timedelta | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> dict:
    """
    Send the offer DM to active, unclaimed conversations sitting in a trigger stage
    for at least `delay` (default settings.offer_dm_delay_seconds).

    Returns:
        dict with checked, sent, failed, already_claimed, cancelled and errors
    """
    now = resolve_now(now)
    if delay is None:
        delay = timedelta(seconds=settings.offer_dm_delay_seconds)
    trigger_names = set(settings.trigger_stages())
    report: dict = {
        "checked": 0,
        "sent": 0,
        "failed": 0,
        "already_claimed": 0,
        "cancelled": False,
        "errors": [],
    }

    if not settings.feature_offer_dm_enabled:
        logger.info("Offer DM sweep skipped: feature disabled")
        return report

    for conversation in list_active(db, claimed=False):
        if should_stop is not None and should_stop():
            report["cancelled"] = True
            break
        conversation_id = conversation.id
        try:
            graph = load_funnel_graph(conversation.funnel)
            block = resolve_block(graph, conversation.current_block_id)
            if stage_of(graph, block.id).name.upper() not in trigger_names:
                continue
            entered = as_utc(conversation.updated_at) or as_utc(conversation.created_at)
            if entered is not None and now - entered < delay:
                continue
            report["checked"] += 1
            result = await send_offer_dm(
                db, conversation_id, resource_name=block.resource_name, now=now
            )
        except Exception as e:
            db.rollback()
            logger.error(f"Offer DM sweep failed for conversation {conversation_id}: {e}")
            report["errors"].append({"conversation_id": conversation_id, "error": str(e)})
            continue

        if result.fired:
            report["sent"] += 1
        elif result.status == STATUS_ALREADY_CLAIMED:
            report["already_claimed"] += 1
        else:
            report["failed"] += 1
            report["errors"].append({"conversation_id": conversation_id, "error": result.error})

    logger.info(
        f"Offer DM sweep: checked={report['checked']} sent={report['sent']} "
        f"failed={report['failed']} errors={len(report['errors'])}"
    )
    return report

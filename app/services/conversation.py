"""
Conversation flow service - wraps the pure funnel engine with persistence and delivery.

One inbound message:
    load row + graph -> record user message -> advance() -> conditional advance
    (status active AND current block unchanged) -> interaction row -> record and
    deliver bot reply -> offer DM through the side-effect guard.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_BOT_REPLY_FAILURE,
    EVENT_CONVERSATION_CLOSED,
    EVENT_CONVERSATION_STARTED,
    EVENT_GRAPH_INTEGRITY_FAILURE,
    EVENT_ORPHANED_CONVERSATION,
    EVENT_WELCOME_DM_FAILURE,
)
from app.constants.statuses import (
    CLOSE_REASON_FUNNEL_COMPLETED,
    MESSAGE_TYPE_BOT,
    MESSAGE_TYPE_USER,
    STATUS_CLOSED,
)
from app.core.config import settings
from app.db.models import Conversation, Funnel
from app.services.conversations_repo import (
    advance_conversation_if_at,
    create_conversation,
    get_deployed_funnel,
    load_conversation,
    record_interaction,
    record_message,
    reset_conversation as reset_conversation_row,
    to_state,
)
from app.services.funnel.engine import (
    OUTCOME_CLOSED,
    OUTCOME_INVALID_INPUT,
    SIDE_EFFECT_OFFER_DM,
    advance,
)
from app.services.funnel.errors import (
    ConversationNotFoundError,
    DeliveryFailure,
    FunnelNotDeployedError,
    GraphIntegrityError,
    OrphanedConversationError,
)
from app.services.funnel.graph import (
    FunnelGraph,
    detect_phase,
    load_funnel_graph,
    resolve_block,
    welcome_message,
)
from app.services.funnel.link_resolver import resolve_link
from app.services.messaging import send_direct_message
from app.services.offer_dm import send_offer_dm
from app.services.system_event_service import error, info, warn
from app.utils.clock import iso_or_none, resolve_now

logger = logging.getLogger(__name__)


def _load_graph(db: Session, funnel: Funnel) -> FunnelGraph:
    try:
        return load_funnel_graph(funnel)
    except GraphIntegrityError as e:
        error(
            db=db,
            event_type=EVENT_GRAPH_INTEGRITY_FAILURE,
            payload={"funnel_id": funnel.id, "version": funnel.version, "problems": e.problems},
        )
        raise


async def _deliver(
    db: Session,
    conversation: Conversation,
    text: str,
    failure_event_type: str,
    dry_run: bool | None,
) -> bool:
    """Send a DM. Delivery problems are logged and reported, never raised to the caller."""
    try:
        await send_direct_message(conversation.user_ref, text, dry_run=dry_run)
    except DeliveryFailure as e:
        warn(db=db, event_type=failure_event_type, conversation_id=conversation.id, exc=e)
        return False
    return True


def _render_welcome(db: Session, conversation: Conversation, graph: FunnelGraph) -> str:
    text = welcome_message(graph)
    start = resolve_block(graph, graph.start_block_id)
    if start.resource_name and settings.link_placeholder in text:
        text = text.replace(
            settings.link_placeholder, resolve_link(db, conversation, start.resource_name)
        )
    return text


async def start_conversation(
    db: Session,
    scope: str,
    user_ref: str,
    dry_run: bool | None = None,
    *,
    funnel: Funnel | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Create a conversation on the scope's deployed funnel and send the welcome DM.

    Any active conversation the user already has in this scope is closed as superseded.

    Raises:
        FunnelNotDeployedError: scope has no deployed funnel
        GraphIntegrityError: deployed funnel's flow is malformed
    """
    now = resolve_now(now)
    if funnel is None:
        funnel = get_deployed_funnel(db, scope)
    if funnel is None:
        raise FunnelNotDeployedError(scope)

    graph = _load_graph(db, funnel)
    conversation = create_conversation(db, funnel, graph, user_ref, now=now)

    text = _render_welcome(db, conversation, graph)
    record_message(db, conversation.id, MESSAGE_TYPE_BOT, text, now=now)
    delivered = await _deliver(db, conversation, text, EVENT_WELCOME_DM_FAILURE, dry_run)

    info(
        db=db,
        event_type=EVENT_CONVERSATION_STARTED,
        conversation_id=conversation.id,
        payload={"funnel_id": funnel.id, "user_ref": user_ref, "welcome_delivered": delivered},
    )
    logger.info(f"Conversation {conversation.id} started for {user_ref} on funnel {funnel.id}")
    return {
        "type": "started",
        "conversation_id": conversation.id,
        "funnel_id": funnel.id,
        "current_block_id": conversation.current_block_id,
        "message": text,
        "delivered": delivered,
    }


async def handle_inbound_message(
    db: Session,
    conversation_id: int,
    message_text: str,
    dry_run: bool | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """
    Handle one user message for a conversation.

    Returns:
        dict with type (advanced, invalid_input, closed), the new position,
        the bot reply and the outcome of any side effects

    Raises:
        ConversationNotFoundError: unknown conversation id
        OrphanedConversationError: current block no longer exists in the graph
        ConversationClosedError: conversation was already closed
        StaleTransitionError: a concurrent message moved the conversation first
    """
    now = resolve_now(now)
    conversation = load_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)

    graph = _load_graph(db, conversation.funnel)
    record_message(db, conversation.id, MESSAGE_TYPE_USER, message_text, now=now)
    state = to_state(conversation)

    try:
        result = advance(
            graph,
            state,
            message_text,
            at=now,
            resolve_link=lambda name: resolve_link(db, conversation, name),
            trigger_stages=settings.trigger_stages(),
            placeholder=settings.link_placeholder,
        )
    except OrphanedConversationError as e:
        warn(
            db=db,
            event_type=EVENT_ORPHANED_CONVERSATION,
            conversation_id=conversation.id,
            payload={"block_id": e.block_id, "funnel_id": conversation.funnel_id},
        )
        raise

    response: dict = {
        "type": result.outcome,
        "conversation_id": conversation.id,
        "previous_block_id": result.previous_block_id,
        "current_block_id": result.conversation.current_block_id,
        "status": result.conversation.status,
        "message": result.bot_output,
        "delivered": None,
        "side_effects": [],
    }

    if result.outcome != OUTCOME_INVALID_INPUT:
        advance_conversation_if_at(db, conversation, state.current_block_id, result.conversation, now)
        if result.interaction is not None:
            record_interaction(db, conversation.id, result.interaction)
        if result.outcome == OUTCOME_CLOSED:
            info(
                db=db,
                event_type=EVENT_CONVERSATION_CLOSED,
                conversation_id=conversation.id,
                payload={"reason": CLOSE_REASON_FUNNEL_COMPLETED, "block_id": result.previous_block_id},
            )

    if result.bot_output:
        record_message(db, conversation.id, MESSAGE_TYPE_BOT, result.bot_output, now=now)
        response["delivered"] = await _deliver(
            db, conversation, result.bot_output, EVENT_BOT_REPLY_FAILURE, dry_run
        )

    for request in result.side_effects:
        if request.kind != SIDE_EFFECT_OFFER_DM or not settings.feature_offer_dm_enabled:
            continue
        guard = await send_offer_dm(db, conversation.id, resource_name=request.resource_name, now=now)
        response["side_effects"].append(
            {"kind": request.kind, "status": guard.status, "error": guard.error}
        )

    return response


async def reset_conversation(
    db: Session,
    conversation_id: int,
    dry_run: bool | None = None,
    *,
    send_welcome: bool = False,
    now: datetime | None = None,
) -> dict:
    """Admin reset: back to the start block, active, one-time claim released."""
    now = resolve_now(now)
    conversation = load_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    graph = _load_graph(db, conversation.funnel)
    reset_conversation_row(db, conversation, graph, now=now)
    logger.info(f"Conversation {conversation_id} reset to {graph.start_block_id}")

    delivered = None
    if send_welcome:
        text = _render_welcome(db, conversation, graph)
        record_message(db, conversation.id, MESSAGE_TYPE_BOT, text, now=now)
        delivered = await _deliver(db, conversation, text, EVENT_WELCOME_DM_FAILURE, dry_run)
    return {**get_conversation_summary(db, conversation_id), "welcome_delivered": delivered}


def get_conversation_summary(db: Session, conversation_id: int) -> dict:
    """Admin view of a conversation."""
    conversation = load_conversation(db, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)

    phase = None
    try:
        phase = detect_phase(load_funnel_graph(conversation.funnel), conversation.current_block_id)
    except GraphIntegrityError:
        logger.warning(f"Conversation {conversation_id}: funnel graph invalid, phase unknown")

    return {
        "id": conversation.id,
        "funnel_id": conversation.funnel_id,
        "scope": conversation.scope,
        "user_ref": conversation.user_ref,
        "status": conversation.status,
        "current_block_id": conversation.current_block_id,
        "phase": phase if conversation.status != STATUS_CLOSED else None,
        "user_path": list(conversation.user_path or []),
        "one_time_action_claimed": conversation.one_time_action_claimed,
        "one_time_action_sent_at": iso_or_none(conversation.one_time_action_sent_at),
        "resolved_affiliate_link": conversation.resolved_affiliate_link,
        "phase_start_time": iso_or_none(conversation.phase_start_time),
        "created_at": iso_or_none(conversation.created_at),
        "updated_at": iso_or_none(conversation.updated_at),
        "closed_at": iso_or_none(conversation.closed_at),
        "close_reason": conversation.close_reason,
        "interactions": [
            {
                "block_id": i.block_id,
                "option_text": i.option_text,
                "next_block_id": i.next_block_id,
                "created_at": iso_or_none(i.created_at),
            }
            for i in sorted(conversation.interactions, key=lambda i: i.id)
        ],
    }

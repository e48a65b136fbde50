"""
Conversation persistence - the narrow interface the funnel engine relies on.

Every write that can race uses a conditional UPDATE judged by rowcount
(portable: SQLite + Postgres):

  UPDATE conversations SET ... WHERE id = :id AND <predicate>
  rowcount == 1 => we won; rowcount == 0 => somebody else changed the row first.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_ATOMIC_UPDATE_CONFLICT
from app.constants.statuses import (
    CLOSE_REASON_FUNNEL_COMPLETED,
    CLOSE_REASON_SUPERSEDED,
    STATUS_ACTIVE,
    STATUS_CLOSED,
)
from app.db.helpers import add_and_commit, commit_and_refresh
from app.db.models import Conversation, Funnel, FunnelInteraction, Message
from app.services.funnel.engine import ConversationState, InteractionRecord
from app.services.funnel.errors import StaleTransitionError
from app.services.funnel.graph import FunnelGraph
from app.utils.clock import as_utc, resolve_now

logger = logging.getLogger(__name__)


def load_conversation(db: Session, conversation_id: int) -> Conversation | None:
    return db.get(Conversation, conversation_id)


def find_active_conversation(db: Session, scope: str, user_ref: str) -> Conversation | None:
    stmt = (
        select(Conversation)
        .where(Conversation.scope == scope)
        .where(Conversation.user_ref == user_ref)
        .where(Conversation.status == STATUS_ACTIVE)
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
    )
    return db.execute(stmt).scalars().first()


def list_active(
    db: Session,
    *,
    scope: str | None = None,
    funnel_id: int | None = None,
    claimed: bool | None = None,
    limit: int | None = None,
) -> list[Conversation]:
    """Active conversations, oldest first, optionally filtered."""
    stmt = select(Conversation).where(Conversation.status == STATUS_ACTIVE)
    if scope is not None:
        stmt = stmt.where(Conversation.scope == scope)
    if funnel_id is not None:
        stmt = stmt.where(Conversation.funnel_id == funnel_id)
    if claimed is not None:
        stmt = stmt.where(Conversation.one_time_action_claimed.is_(claimed))
    stmt = stmt.order_by(Conversation.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def cas_update(
    db: Session,
    conversation_id: int,
    predicate: dict[str, Any],
    values: dict[str, Any],
) -> int:
    """
    Conditionally update one conversation.

    Args:
        db: Database session
        conversation_id: Row to update
        predicate: {column: expected value}; every pair must hold for the update to apply
        values: {column: new value}

    Returns:
        Number of rows affected (0 or 1)
    """
    stmt = update(Conversation).where(Conversation.id == conversation_id)
    for column_name, expected in predicate.items():
        column = getattr(Conversation, column_name)
        if expected is None or isinstance(expected, bool):
            stmt = stmt.where(column.is_(expected))
        else:
            stmt = stmt.where(column == expected)
    result = db.execute(stmt.values(**values))
    db.commit()
    return result.rowcount


def to_state(conversation: Conversation, include_interactions: bool = False) -> ConversationState:
    """Snapshot a Conversation row for the pure engine."""
    interactions: tuple[InteractionRecord, ...] = ()
    if include_interactions:
        interactions = tuple(
            InteractionRecord(
                block_id=i.block_id,
                option_text=i.option_text,
                next_block_id=i.next_block_id,
                timestamp=as_utc(i.created_at),
            )
            for i in sorted(conversation.interactions, key=lambda i: i.id)
        )
    return ConversationState(
        id=conversation.id,
        current_block_id=conversation.current_block_id,
        user_path=tuple(conversation.user_path or ()),
        interactions=interactions,
        status=conversation.status,
        created_at=as_utc(conversation.created_at),
        phase_start_time=as_utc(conversation.phase_start_time),
        one_time_action_claimed=bool(conversation.one_time_action_claimed),
        resolved_affiliate_link=conversation.resolved_affiliate_link,
    )


def advance_conversation_if_at(
    db: Session,
    conversation: Conversation,
    expected_block_id: str | None,
    new_state: ConversationState,
    now: datetime | None = None,
) -> Conversation:
    """
    Persist an engine transition only if the conversation is still active at expected_block_id.

    Raises:
        StaleTransitionError: another request moved or closed the conversation first
    """
    now = resolve_now(now)
    values: dict[str, Any] = {
        "current_block_id": new_state.current_block_id,
        "user_path": list(new_state.user_path),
        "status": new_state.status,
        "phase_start_time": new_state.phase_start_time,
        "updated_at": now,
    }
    if new_state.status == STATUS_CLOSED:
        values["closed_at"] = now
        values["close_reason"] = CLOSE_REASON_FUNNEL_COMPLETED

    affected = cas_update(
        db,
        conversation.id,
        {"status": STATUS_ACTIVE, "current_block_id": expected_block_id},
        values,
    )
    db.refresh(conversation)
    if affected == 0:
        from app.services.system_event_service import warn

        warn(
            db=db,
            event_type=EVENT_ATOMIC_UPDATE_CONFLICT,
            conversation_id=conversation.id,
            payload={
                "operation": "advance_block",
                "expected_block_id": expected_block_id,
                "actual_block_id": conversation.current_block_id,
                "actual_status": conversation.status,
            },
        )
        raise StaleTransitionError(
            conversation.id, expected_block_id, conversation.current_block_id
        )

    logger.info(
        f"Conversation {conversation.id} advanced: {expected_block_id} -> "
        f"{new_state.current_block_id} (status={new_state.status})"
    )
    return conversation


def record_message(
    db: Session,
    conversation_id: int,
    message_type: str,
    content: str,
    now: datetime | None = None,
) -> Message:
    message = Message(
        conversation_id=conversation_id,
        type=message_type,
        content=content,
        created_at=resolve_now(now),
    )
    return add_and_commit(db, message)


def record_interaction(db: Session, conversation_id: int, record: InteractionRecord) -> FunnelInteraction:
    interaction = FunnelInteraction(
        conversation_id=conversation_id,
        block_id=record.block_id,
        option_text=record.option_text,
        next_block_id=record.next_block_id,
        created_at=record.timestamp,
    )
    return add_and_commit(db, interaction)


def latest_message_at(db: Session, conversation_id: int) -> datetime | None:
    stmt = select(func.max(Message.created_at)).where(Message.conversation_id == conversation_id)
    return as_utc(db.execute(stmt).scalar_one_or_none())


def get_deployed_funnel(db: Session, scope: str) -> Funnel | None:
    """The live funnel for a scope (most recently updated if several are flagged)."""
    stmt = (
        select(Funnel)
        .where(Funnel.scope == scope)
        .where(Funnel.is_deployed.is_(True))
        .order_by(Funnel.updated_at.desc(), Funnel.id.desc())
    )
    return db.execute(stmt).scalars().first()


def create_conversation(
    db: Session,
    funnel: Funnel,
    graph: FunnelGraph,
    user_ref: str,
    now: datetime | None = None,
) -> Conversation:
    """
    Start a conversation at the graph's start block.

    Any other active conversation for the same (scope, user_ref) is closed first,
    so a user has at most one live funnel per scope.
    """
    now = resolve_now(now)
    superseded = (
        update(Conversation)
        .where(Conversation.scope == funnel.scope)
        .where(Conversation.user_ref == user_ref)
        .where(Conversation.status == STATUS_ACTIVE)
        .values(
            status=STATUS_CLOSED,
            closed_at=now,
            close_reason=CLOSE_REASON_SUPERSEDED,
            updated_at=now,
        )
    )
    closed = db.execute(superseded).rowcount
    if closed:
        logger.info(f"Closed {closed} superseded conversation(s) for {user_ref} in {funnel.scope}")

    conversation = Conversation(
        funnel_id=funnel.id,
        scope=funnel.scope,
        user_ref=user_ref,
        status=STATUS_ACTIVE,
        current_block_id=graph.start_block_id,
        user_path=[],
        created_at=now,
        updated_at=now,
    )
    return add_and_commit(db, conversation)


def reset_conversation(
    db: Session,
    conversation: Conversation,
    graph: FunnelGraph,
    now: datetime | None = None,
) -> Conversation:
    """Admin reset: back to the start block, active, claim and caches cleared."""
    now = resolve_now(now)
    conversation.status = STATUS_ACTIVE
    conversation.current_block_id = graph.start_block_id
    conversation.user_path = []
    conversation.phase_start_time = None
    conversation.one_time_action_claimed = False
    conversation.one_time_action_sent_at = None
    conversation.resolved_affiliate_link = None
    conversation.resolved_resource_name = None
    conversation.last_reprompt_phase = None
    conversation.last_reprompt_offset = None
    conversation.closed_at = None
    conversation.close_reason = None
    conversation.created_at = now
    conversation.updated_at = now
    commit_and_refresh(db, conversation)
    return conversation

"""
Re-prompt scheduler - time-based nudges computed per conversation on each tick.

A conversation is due when its age in whole minutes since the phase anchor is
exactly one of the phase's offsets:

    PHASE1: anchor created_at,        offsets 10, 60, 720
    PHASE2: anchor phase_start_time,  offsets 15, 60, 720

The tick is expected to run every minute. (last_reprompt_phase,
last_reprompt_offset) records the nudge already sent so a second tick inside the
same minute doesn't repeat it.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy.orm import Session

from app.constants.event_types import reprompt_event_type
from app.constants.statuses import MESSAGE_TYPE_BOT, PHASE_1, PHASE_2, STATUS_ACTIVE
from app.core.config import settings
from app.services.conversations_repo import cas_update, list_active, record_message
from app.services.funnel.errors import DeliveryFailure, RePromptConfigError
from app.services.funnel.graph import FunnelGraph, detect_phase, load_funnel_graph
from app.services.messaging import send_direct_message
from app.services.system_event_service import info, warn
from app.utils.clock import as_utc, resolve_now

logger = logging.getLogger(__name__)

PHASE_OFFSETS: dict[str, tuple[int, ...]] = {
    PHASE_1: (10, 60, 720),
    PHASE_2: (15, 60, 720),
}

REPROMPTS_FILE = Path(__file__).resolve().parent.parent / "copy" / "reprompts.yml"


@dataclass(frozen=True)
class DueRePrompt:
    phase: str
    offset_minutes: int


def _anchor(conversation: Any, phase: str) -> datetime | None:
    if phase == PHASE_1:
        return as_utc(conversation.created_at)
    if phase == PHASE_2:
        return as_utc(conversation.phase_start_time)
    return None


def due_reprompt(
    conversation: Any,
    graph: FunnelGraph,
    *,
    now: datetime | None = None,
) -> DueRePrompt | None:
    """
    Which re-prompt (if any) is due for this conversation right now.

    conversation may be a Conversation row or a ConversationState snapshot.
    """
    phase = detect_phase(graph, conversation.current_block_id)
    offsets = PHASE_OFFSETS.get(phase)
    if not offsets:
        return None
    anchor = _anchor(conversation, phase)
    if anchor is None:
        return None
    age_minutes = int((resolve_now(now) - anchor).total_seconds() // 60)
    if age_minutes in offsets:
        return DueRePrompt(phase=phase, offset_minutes=age_minutes)
    return None


def load_reprompt_messages(path: Path | None = None) -> dict[str, dict[int, str]]:
    """
    Load and check the re-prompt message table.

    Raises:
        RePromptConfigError: a configured (phase, offset) has no message
    """
    path = path or REPROMPTS_FILE
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise RePromptConfigError(f"Re-prompt messages file not found: {path}") from e

    table: dict[str, dict[int, str]] = {}
    missing: list[str] = []
    for phase, offsets in PHASE_OFFSETS.items():
        entries = {int(k): str(v).strip() for k, v in (raw.get(phase) or {}).items() if v}
        for offset in offsets:
            if not entries.get(offset):
                missing.append(f"{phase}/{offset}")
        table[phase] = entries
    if missing:
        raise RePromptConfigError(f"Missing re-prompt messages for: {', '.join(missing)}")
    logger.info(f"Loaded re-prompt messages from {path}")
    return table


_messages: dict[str, dict[int, str]] | None = None


def get_reprompt_messages() -> dict[str, dict[int, str]]:
    global _messages
    if _messages is None:
        _messages = load_reprompt_messages()
    return _messages


def reset_cache() -> None:
    global _messages
    _messages = None


def reprompt_message(phase: str, offset_minutes: int) -> str:
    """Text for a (phase, offset). Raises RePromptConfigError if there is none."""
    text = get_reprompt_messages().get(phase, {}).get(offset_minutes)
    if not text:
        raise RePromptConfigError(f"No re-prompt message for {phase}/{offset_minutes}")
    return text


async def send_due_reprompts(
    db: Session,
    *,
    now: datetime | None = None,
    should_stop: Callable[[], bool] | None = None,
    dry_run: bool | None = None,
) -> dict:
    """
    Send every re-prompt due at now.

    Returns:
        dict with checked, sent, skipped, failed, cancelled and errors

    Raises:
        RePromptConfigError: message table is incomplete (checked before any send)
    """
    now = resolve_now(now)
    report: dict = {
        "checked": 0,
        "sent": 0,
        "skipped": 0,
        "failed": 0,
        "cancelled": False,
        "errors": [],
    }
    if not settings.feature_reprompts_enabled:
        logger.info("Re-prompts skipped: feature disabled")
        return report

    messages = get_reprompt_messages()

    for conversation in list_active(db):
        if should_stop is not None and should_stop():
            report["cancelled"] = True
            break
        conversation_id = conversation.id
        report["checked"] += 1
        try:
            due = due_reprompt(conversation, load_funnel_graph(conversation.funnel), now=now)
            if due is None:
                continue
            previous = {
                "last_reprompt_phase": conversation.last_reprompt_phase,
                "last_reprompt_offset": conversation.last_reprompt_offset,
            }
            if (previous["last_reprompt_phase"], previous["last_reprompt_offset"]) == (
                due.phase,
                due.offset_minutes,
            ):
                report["skipped"] += 1
                continue

            # Claim this (phase, offset) so a concurrent tick can't send it too
            claimed = cas_update(
                db,
                conversation_id,
                {"status": STATUS_ACTIVE, **previous},
                {"last_reprompt_phase": due.phase, "last_reprompt_offset": due.offset_minutes},
            )
            if not claimed:
                report["skipped"] += 1
                continue

            text = messages[due.phase][due.offset_minutes]
            try:
                await send_direct_message(conversation.user_ref, text, dry_run=dry_run)
            except DeliveryFailure as e:
                cas_update(
                    db,
                    conversation_id,
                    {"last_reprompt_phase": due.phase, "last_reprompt_offset": due.offset_minutes},
                    previous,
                )
                warn(
                    db=db,
                    event_type=reprompt_event_type(due.phase, due.offset_minutes),
                    conversation_id=conversation_id,
                    exc=e,
                )
                report["failed"] += 1
                report["errors"].append({"conversation_id": conversation_id, "error": str(e)})
                continue

            record_message(db, conversation_id, MESSAGE_TYPE_BOT, text, now=now)
            info(
                db=db,
                event_type=reprompt_event_type(due.phase, due.offset_minutes),
                conversation_id=conversation_id,
            )
            report["sent"] += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Re-prompt failed for conversation {conversation_id}: {e}", exc_info=True)
            report["errors"].append({"conversation_id": conversation_id, "error": str(e)})

    logger.info(
        f"Re-prompts: checked={report['checked']} sent={report['sent']} "
        f"skipped={report['skipped']} errors={len(report['errors'])}"
    )
    return report

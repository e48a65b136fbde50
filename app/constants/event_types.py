"""
Event type constants for SystemEvent and ProcessedMessage.

Use these instead of string literals to ensure consistency.
"""

# ---- Transitions ----
EVENT_ATOMIC_UPDATE_CONFLICT = "atomic_update.conflict"
EVENT_ORPHANED_CONVERSATION = "conversation.orphaned"
EVENT_CONVERSATION_CLOSED = "conversation.closed"
EVENT_CONVERSATION_STARTED = "conversation.started"

# ---- Graph ----
EVENT_GRAPH_INTEGRITY_FAILURE = "funnel.graph_integrity_failure"

# ---- Side-effect guard ----
EVENT_OFFER_DM_SENT = "offer_dm.sent"
EVENT_OFFER_DM_DELIVERY_FAILURE = "offer_dm.delivery_failure"
EVENT_OFFER_DM_BOOKKEEPING_FAILURE = "offer_dm.bookkeeping_failure"

# ---- Delivery ----
EVENT_WELCOME_DM_FAILURE = "welcome_dm.delivery_failure"
EVENT_BOT_REPLY_FAILURE = "bot_reply.delivery_failure"

# ---- Inbound webhooks ----
EVENT_WEBHOOK_SIGNATURE_FAILURE = "webhook.signature_verification_failure"
EVENT_WHOP_JOIN = "whop.join"
EVENT_WHOP_MESSAGE = "whop.message"

# ---- Batch jobs ----
EVENT_REAPER_ITEM_FAILURE = "reaper.item_failure"
EVENT_REPROMPT_PREFIX = "reprompt"


def reprompt_event_type(phase: str, offset_minutes: int) -> str:
    """e.g. reprompt.PHASE1.10"""
    return f"{EVENT_REPROMPT_PREFIX}.{phase}.{offset_minutes}"

"""
Conversation status, message type, stage and phase constants.
"""

# Conversation lifecycle (monotonic: active -> closed)
STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"

# Close reasons
CLOSE_REASON_FUNNEL_COMPLETED = "funnel_completed"
CLOSE_REASON_INACTIVE = "inactive"
CLOSE_REASON_SUPERSEDED = "superseded"  # User re-joined; a new conversation replaced this one

# Message authors
MESSAGE_TYPE_USER = "user"
MESSAGE_TYPE_BOT = "bot"
MESSAGE_TYPE_SYSTEM = "system"

# Well-known stage names
STAGE_WELCOME = "WELCOME"
STAGE_VALUE_DELIVERY = "VALUE_DELIVERY"
STAGE_TRANSITION = "TRANSITION"
STAGE_OFFER = "OFFER"

# Re-prompt phases
PHASE_1 = "PHASE1"  # WELCOME stage, anchored on created_at
PHASE_2 = "PHASE2"  # VALUE_DELIVERY stage, anchored on phase_start_time
PHASE_COMPLETED = "COMPLETED"

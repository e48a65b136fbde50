"""
Provider constants for ProcessedMessage idempotency keys.
"""

PROVIDER_WHOP = "whop"  # Inbound platform webhooks (joins, chat messages)

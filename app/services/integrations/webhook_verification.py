"""
Inbound webhook signature verification.

The sender signs the raw body with HMAC-SHA256 using the shared webhook secret
and sends it as X-Webhook-Signature: sha256=<hex_digest>.
"""

import hashlib
import hmac
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def sign_payload(payload: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(payload: bytes, signature_header: str | None) -> bool:
    """
    Check the X-Webhook-Signature header against the raw body.

    Returns:
        True if valid, or if no webhook secret is configured (dev mode)
    """
    if not settings.webhook_secret:
        return True

    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning(f"Missing or malformed {SIGNATURE_HEADER} header")
        return False

    expected = sign_payload(payload, settings.webhook_secret)
    is_valid = hmac.compare_digest(signature_header, expected)
    if not is_valid:
        logger.warning("Invalid webhook signature - request rejected")
    return is_valid

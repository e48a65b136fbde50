"""
Direct-message delivery over the platform messaging API, with dry-run mode for development.
"""

import logging
import os

import httpx

from app.core.config import settings
from app.services.funnel.errors import DeliveryFailure
from app.services.integrations.http_client import create_httpx_client

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEYS = ("", "test_key")


def _should_dry_run(dry_run: bool) -> bool:
    # Never hit the network from tests or without real credentials
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return True
    if not settings.messaging_api_key or settings.messaging_api_key in PLACEHOLDER_API_KEYS:
        return True
    return dry_run


async def send_direct_message(
    to: str,
    text: str,
    dry_run: bool | None = None,
) -> dict:
    """
    Send a direct message to a platform user.

    Args:
        to: Platform user id or username
        text: Message body
        dry_run: Only log the message (defaults to settings.messaging_dry_run)

    Returns:
        dict with status ("sent" or "dry_run") and message_id

    Raises:
        DeliveryFailure: transport error, timeout or non-2xx response
    """
    if dry_run is None:
        dry_run = settings.messaging_dry_run

    if _should_dry_run(dry_run):
        logger.info(f"[DRY-RUN] Would send DM to {to}: {text}")
        return {"status": "dry_run", "message_id": None, "to": to}

    url = f"{settings.messaging_api_base_url.rstrip('/')}/messages/direct"
    headers = {
        "Authorization": f"Bearer {settings.messaging_api_key}",
        "Content-Type": "application/json",
    }
    payload = {"to_user_id_or_username": to, "message": text}

    try:
        async with create_httpx_client() as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            result = response.json() if response.content else {}
    except httpx.HTTPError as e:
        logger.error(f"Failed to send DM to {to}: {e}")
        raise DeliveryFailure(f"DM to {to} failed: {e}") from e

    return {"status": "sent", "message_id": result.get("id"), "to": to}

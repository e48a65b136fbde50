"""
Link resolver - turns a block's resource reference into an attribution-tagged URL.

Policy, in order:
1. Reuse the link already cached on the conversation (a user never sees two
   different links for the same offer).
2. Look the resource up by (name, scope); tag it with ?app=<affiliate_app_id>
   unless it already carries app= or ref= attribution.
3. Fall back to the generic install URL (not cached, so a later render can
   still pick up the real resource).
"""

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import Conversation
from app.services.resources import find_resource

logger = logging.getLogger(__name__)

ATTRIBUTION_PARAMS = ("app", "ref")


def has_attribution(link: str) -> bool:
    query_keys = {key.lower() for key, _ in parse_qsl(urlsplit(link).query, keep_blank_values=True)}
    return any(param in query_keys for param in ATTRIBUTION_PARAMS)


def attach_attribution(link: str, app_id: str) -> str:
    """
    Append app=<app_id> to link unless it already has app=/ref= attribution.

    >>> attach_attribution("https://x/y", "ID")
    'https://x/y?app=ID'
    """
    if has_attribution(link):
        return link
    parts = urlsplit(link)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("app", app_id))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _cache_link(db: Session, conversation: Conversation, resource_name: str, link: str) -> str:
    """
    Store link on the conversation only if none is stored yet.
    Returns whichever link ended up stored (ours, or a concurrent writer's).
    """
    stmt = (
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .where(Conversation.resolved_affiliate_link.is_(None))
        .values(resolved_affiliate_link=link, resolved_resource_name=resource_name)
    )
    result = db.execute(stmt)
    db.commit()
    db.refresh(conversation)
    if result.rowcount == 0:
        logger.info(
            f"Conversation {conversation.id} link already cached by a concurrent render - reusing it"
        )
    return conversation.resolved_affiliate_link or link


def resolve_link(
    db: Session,
    conversation: Conversation,
    resource_name: str,
    scope: str | None = None,
) -> str:
    """
    Resolve resource_name to the URL shown to this conversation.

    Args:
        db: Database session
        conversation: Conversation row (its cache fields are read and may be written)
        resource_name: Name of the resource referenced by the block
        scope: Resource scope (defaults to the conversation's scope)

    Returns:
        Cached link, freshly tagged link, or the fallback install URL
    """
    cached = conversation.resolved_affiliate_link
    if cached and conversation.resolved_resource_name in (None, resource_name):
        return cached

    resource = find_resource(db, resource_name, scope or conversation.scope)
    if resource is None:
        logger.warning(
            f"Resource '{resource_name}' not found for scope {scope or conversation.scope} "
            f"(conversation {conversation.id}) - using fallback URL"
        )
        return settings.fallback_install_url

    link = attach_attribution(resource.link, settings.affiliate_app_id)
    if cached:
        # A different resource is already cached; don't replace the offer link
        return link
    return _cache_link(db, conversation, resource_name, link)

"""
Tests for link resolution: attribution tagging, per-conversation caching and fallback.
"""

from app.db.models import Resource
from app.services.funnel.link_resolver import attach_attribution, has_attribution, resolve_link


def test_attach_attribution_adds_app_param():
    assert attach_attribution("https://x/y", "ID") == "https://x/y?app=ID"


def test_attach_attribution_keeps_existing_query():
    assert attach_attribution("https://x/y?utm=a", "ID") == "https://x/y?utm=a&app=ID"


def test_existing_attribution_is_not_doubled():
    assert attach_attribution("https://x/y?ref=partner", "ID") == "https://x/y?ref=partner"
    assert attach_attribution("https://x/y?APP=other", "ID") == "https://x/y?APP=other"
    assert has_attribution("https://x/y?app=1")
    assert not has_attribution("https://x/y?apple=1")


def test_resolve_tags_and_caches_link(db, make_conversation, resources):
    """Guide -> https://x/y?app=ID, stored on the conversation."""
    conversation = make_conversation("ecom_value")

    link = resolve_link(db, conversation, "Guide")

    assert link == "https://x/y?app=ID"
    db.refresh(conversation)
    assert conversation.resolved_affiliate_link == "https://x/y?app=ID"
    assert conversation.resolved_resource_name == "Guide"


def test_cached_link_survives_directory_change(db, make_conversation, resources):
    """Once shown, a link never changes for that conversation."""
    conversation = make_conversation("ecom_value")
    first = resolve_link(db, conversation, "Guide")

    guide = db.query(Resource).filter_by(name="Guide").one()
    guide.link = "https://x/new-guide"
    db.commit()

    assert resolve_link(db, conversation, "Guide") == first


def test_partner_tagged_link_used_verbatim(db, make_conversation, resources):
    conversation = make_conversation("trade_value")
    assert resolve_link(db, conversation, "Checklist") == "https://x/checklist?ref=partner"


def test_missing_resource_falls_back_without_caching(db, make_conversation, resources):
    conversation = make_conversation("ecom_value")

    link = resolve_link(db, conversation, "Nonexistent")

    assert link == "https://whop.com/apps/funnel-bot"
    db.refresh(conversation)
    assert conversation.resolved_affiliate_link is None


def test_fallback_then_real_resource_gets_cached(db, make_conversation):
    conversation = make_conversation("ecom_value")
    assert resolve_link(db, conversation, "Guide") == "https://whop.com/apps/funnel-bot"

    db.add(Resource(name="Guide", scope=conversation.scope, link="https://x/y"))
    db.commit()

    assert resolve_link(db, conversation, "Guide") == "https://x/y?app=ID"


def test_second_resource_does_not_replace_cached_link(db, make_conversation, resources):
    conversation = make_conversation("ecom_value")
    resolve_link(db, conversation, "Guide")

    other = resolve_link(db, conversation, "Playbook")

    assert other == "https://shop.example.com/playbook?app=ID"
    db.refresh(conversation)
    assert conversation.resolved_affiliate_link == "https://x/y?app=ID"


def test_resources_are_scoped(db, make_conversation, make_funnel, resources):
    funnel = make_funnel(scope="exp_other")
    conversation = make_conversation("ecom_value", funnel=funnel)

    assert resolve_link(db, conversation, "Guide") == "https://whop.com/apps/funnel-bot"

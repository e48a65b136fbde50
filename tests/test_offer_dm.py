"""
Tests for the one-time offer DM and its cron sweep.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from app.constants.event_types import EVENT_OFFER_DM_SENT
from app.constants.statuses import MESSAGE_TYPE_BOT
from app.db.models import Message, SystemEvent
from app.services.funnel.errors import ConversationNotFoundError
from app.services.offer_dm import build_offer_dm, send_offer_dm, sweep_offer_conversations
from app.services.side_effect_guard import STATUS_ALREADY_CLAIMED, STATUS_FAILED, STATUS_FIRED
from tests.helpers.funnel_flows import T0


def test_build_offer_dm_includes_links():
    text = build_offer_dm("https://shop.example.com/playbook?app=ID")

    assert "https://shop.example.com/playbook?app=ID" in text
    assert "https://whop.com/apps/funnel-bot" in text


@pytest.mark.asyncio
async def test_send_offer_dm_once(db, make_conversation, resources, sent_dms):
    conversation = make_conversation("offer", user_ref="buyer")
    at = T0 + timedelta(minutes=5)

    first = await send_offer_dm(db, conversation.id, now=at)
    second = await send_offer_dm(db, conversation.id, now=at)

    assert first.status == STATUS_FIRED
    assert second.status == STATUS_ALREADY_CLAIMED
    assert len(sent_dms) == 1
    to, text = sent_dms[0]
    assert to == "buyer"
    assert "https://shop.example.com/playbook?app=ID" in text

    db.refresh(conversation)
    assert conversation.one_time_action_claimed is True
    assert conversation.one_time_action_sent_at.replace(tzinfo=None) == at.replace(tzinfo=None)
    assert conversation.resolved_affiliate_link == "https://shop.example.com/playbook?app=ID"

    bot_messages = db.query(Message).filter_by(conversation_id=conversation.id, type=MESSAGE_TYPE_BOT).all()
    assert [m.content for m in bot_messages] == [text]
    assert db.query(SystemEvent).filter_by(event_type=EVENT_OFFER_DM_SENT).count() == 1


@pytest.mark.asyncio
async def test_offer_dm_reuses_cached_link(db, make_conversation, resources, sent_dms):
    conversation = make_conversation(
        "offer",
        resolved_affiliate_link="https://x/y?app=ID",
        resolved_resource_name="Playbook",
    )

    await send_offer_dm(db, conversation.id)

    assert "https://x/y?app=ID" in sent_dms[0][1]


@pytest.mark.asyncio
async def test_failed_offer_dm_can_be_retried(db, make_conversation, resources, sent_dms):
    conversation = make_conversation("offer")
    sent_dms.fail = True

    failed = await send_offer_dm(db, conversation.id)

    assert failed.status == STATUS_FAILED
    db.refresh(conversation)
    assert conversation.one_time_action_claimed is False
    assert conversation.one_time_action_sent_at is None

    sent_dms.fail = False
    retried = await send_offer_dm(db, conversation.id)
    assert retried.status == STATUS_FIRED
    assert len(sent_dms) == 1


@pytest.mark.asyncio
async def test_send_offer_dm_unknown_conversation(db):
    with pytest.raises(ConversationNotFoundError):
        await send_offer_dm(db, 999)


@pytest.mark.asyncio
async def test_sweep_sends_to_waiting_offer_conversations(db, make_funnel, make_conversation, resources, sent_dms):
    funnel = make_funnel()
    waiting = make_conversation("offer", user_ref="u1", funnel=funnel)
    make_conversation("welcome", user_ref="u2", funnel=funnel)
    fresh = make_conversation("offer", user_ref="u3", funnel=funnel, created_at=T0 + timedelta(minutes=10))

    report = await sweep_offer_conversations(
        db, now=T0 + timedelta(minutes=10, seconds=10), delay=timedelta(seconds=30)
    )

    assert report["checked"] == 1
    assert report["sent"] == 1
    assert report["errors"] == []
    assert [to for to, _ in sent_dms] == ["u1"]
    db.refresh(waiting)
    db.refresh(fresh)
    assert waiting.one_time_action_claimed is True
    assert fresh.one_time_action_claimed is False


@pytest.mark.asyncio
async def test_sweep_skips_already_claimed(db, make_conversation, resources, sent_dms):
    make_conversation("offer", one_time_action_claimed=True)

    report = await sweep_offer_conversations(db, now=T0 + timedelta(hours=1))

    assert report["checked"] == 0
    assert sent_dms == []


@pytest.mark.asyncio
async def test_sweep_reports_delivery_failures(db, make_conversation, resources, sent_dms):
    conversation = make_conversation("offer")
    sent_dms.fail = True

    report = await sweep_offer_conversations(db, now=T0 + timedelta(hours=1))

    assert report["failed"] == 1
    assert report["errors"][0]["conversation_id"] == conversation.id


@pytest.mark.asyncio
async def test_sweep_honours_stop_request(db, make_funnel, make_conversation, resources, sent_dms):
    funnel = make_funnel()
    make_conversation("offer", user_ref="u1", funnel=funnel)
    make_conversation("offer", user_ref="u2", funnel=funnel)

    report = await sweep_offer_conversations(
        db, now=T0 + timedelta(hours=1), should_stop=lambda: len(sent_dms) >= 1
    )

    assert report["cancelled"] is True
    assert report["sent"] == 1


@pytest.mark.asyncio
async def test_sweep_disabled_by_feature_flag(db, make_conversation, resources, sent_dms):
    make_conversation("offer")

    with patch("app.services.offer_dm.settings.feature_offer_dm_enabled", False):
        report = await sweep_offer_conversations(db, now=T0 + timedelta(hours=1))

    assert report["sent"] == 0
    assert sent_dms == []

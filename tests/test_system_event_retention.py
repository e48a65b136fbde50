"""
Tests for SystemEvent retention cleanup.
"""

from datetime import UTC, datetime, timedelta

from freezegun import freeze_time
from sqlalchemy import text

from app.db.models import SystemEvent
from app.services.system_event_service import cleanup_old_events, info


def test_cleanup_old_events_deletes_older_than_cutoff(db, make_conversation):
    """Cleanup deletes events older than the retention window (frozen time)."""
    conversation = make_conversation("welcome")

    with freeze_time("2026-06-01 12:00:00"):
        info(db, event_type="test.old1", conversation_id=conversation.id)
        info(db, event_type="test.old2", conversation_id=conversation.id)
        info(db, event_type="test.recent", conversation_id=conversation.id)

        events = db.query(SystemEvent).order_by(SystemEvent.id).all()
        assert len(events) == 3

        old_date = datetime(2026, 2, 1, tzinfo=UTC)
        for e in events[:2]:
            db.execute(
                text("UPDATE system_events SET created_at = :t WHERE id = :id"),
                {"t": old_date, "id": e.id},
            )
        db.commit()

        deleted = cleanup_old_events(db, retention_days=90)

    remaining = db.query(SystemEvent).all()
    assert len(remaining) == 1
    assert remaining[0].event_type == "test.recent"
    assert deleted == 2


def test_cleanup_with_explicit_now(db):
    """Cleanup measures retention from the given now."""
    info(db, event_type="test.event")
    db.execute(
        text("UPDATE system_events SET created_at = :t"),
        {"t": datetime(2026, 1, 1, tzinfo=UTC)},
    )
    db.commit()

    assert cleanup_old_events(db, retention_days=90, now=datetime(2026, 3, 1, tzinfo=UTC)) == 0
    assert cleanup_old_events(db, retention_days=30, now=datetime(2026, 3, 1, tzinfo=UTC)) == 1
    assert db.query(SystemEvent).count() == 0


def test_cleanup_keeps_events_inside_window(db):
    with freeze_time("2026-06-01 12:00:00"):
        info(db, event_type="test.event")
    with freeze_time("2026-06-01 12:00:00") as frozen:
        frozen.tick(timedelta(days=89))
        assert cleanup_old_events(db, retention_days=90) == 0


def test_cleanup_job_runs_in_own_session(db):
    from app.jobs.cleanup_system_events import run_cleanup

    info(db, event_type="test.event")
    assert run_cleanup(retention_days=90) == 0

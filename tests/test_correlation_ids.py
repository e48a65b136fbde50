"""
Tests for correlation IDs on requests, logs and system events.
"""

import logging
import uuid

from app.constants.event_types import EVENT_CONVERSATION_STARTED
from app.db.models import SystemEvent
from app.middleware.correlation_id import (
    HEADER_CORRELATION_ID,
    CorrelationIdFilter,
    set_correlation_id,
)
from tests.helpers.funnel_flows import SCOPE


def test_generated_correlation_id_is_uuid(client):
    response = client.get("/health")

    cid = response.headers[HEADER_CORRELATION_ID]
    uuid.UUID(cid)


def test_incoming_correlation_id_is_echoed(client):
    response = client.get("/health", headers={HEADER_CORRELATION_ID: "trace-abc"})
    assert response.headers[HEADER_CORRELATION_ID] == "trace-abc"


def test_oversized_correlation_id_is_replaced(client):
    response = client.get("/health", headers={HEADER_CORRELATION_ID: "x" * 500})
    assert response.headers[HEADER_CORRELATION_ID] != "x" * 500


def test_correlation_id_uniqueness(client):
    """Each request without a header gets its own ID."""
    ids = {client.get("/health").headers[HEADER_CORRELATION_ID] for _ in range(3)}
    assert len(ids) == 3


def test_correlation_id_in_system_events(client, db, make_funnel, sent_dms):
    """Events written while handling a webhook carry the request's correlation ID."""
    make_funnel()

    response = client.post(
        "/webhooks/join",
        json={"event_id": "evt_cid", "scope": SCOPE, "user_ref": "user_1"},
        headers={HEADER_CORRELATION_ID: "join-trace-1"},
    )

    assert response.status_code == 200
    event = db.query(SystemEvent).filter_by(event_type=EVENT_CONVERSATION_STARTED).one()
    assert event.payload["correlation_id"] == "join-trace-1"


def test_log_filter_stamps_records():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)

    set_correlation_id("job-run-7")
    try:
        CorrelationIdFilter().filter(record)
    finally:
        set_correlation_id(None)

    assert record.correlation_id == "job-run-7"


def test_log_filter_without_id_uses_dash():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)
    CorrelationIdFilter().filter(record)
    assert record.correlation_id == "-"

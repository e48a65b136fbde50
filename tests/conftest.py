import os
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("MESSAGING_DRY_RUN", "true")
os.environ.setdefault("AFFILIATE_APP_ID", "ID")
os.environ.setdefault("FALLBACK_INSTALL_URL", "https://whop.com/apps/funnel-bot")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")  # Disable rate limiting in tests
# Note: ADMIN_API_KEY and WEBHOOK_SECRET not set by default - admin/webhooks open in tests

from app.db.base import Base
from app.db.deps import get_db
import app.db.models as _models  # noqa: F401
from app.db.models import Conversation, Funnel, Resource
from app.main import app
from tests.helpers.funnel_flows import SCOPE, T0, standard_flow

SQLALCHEMY_DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///:memory:")


def is_sqlite() -> bool:
    return (SQLALCHEMY_DATABASE_URL or "").startswith("sqlite")


# SQLite needs check_same_thread=False and StaticPool; Postgres does not support check_same_thread
if is_sqlite():
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Jobs open their own SessionLocal(); point them at the test DB
import app.db.session as _db_session

_db_session.engine = engine
_db_session.SessionLocal = TestingSessionLocal


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with database dependency override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_module_caches():
    """Graph, copy and rate-limit caches are module-level; keep tests independent."""
    from app.middleware.rate_limit import reset_rate_limits
    from app.services import message_composer, reprompts
    from app.services.funnel.graph import clear_graph_cache

    clear_graph_cache()
    reprompts.reset_cache()
    message_composer.reset_cache()
    reset_rate_limits()
    yield
    clear_graph_cache()
    reprompts.reset_cache()
    message_composer.reset_cache()
    reset_rate_limits()


@pytest.fixture
def make_funnel(db):
    """Factory: persist a funnel (deployed by default) and return it."""

    def _make(flow: dict | None = None, scope: str = SCOPE, deployed: bool = True) -> Funnel:
        funnel = Funnel(
            name="Test funnel",
            scope=scope,
            version=1,
            flow=flow or standard_flow(),
            is_deployed=deployed,
            created_at=T0,
            updated_at=T0,
        )
        db.add(funnel)
        db.commit()
        db.refresh(funnel)
        return funnel

    return _make


@pytest.fixture
def make_conversation(db, make_funnel):
    """Factory: persist an active conversation positioned at block_id."""

    def _make(
        block_id: str = "welcome",
        user_ref: str = "user_1",
        funnel: Funnel | None = None,
        created_at: datetime = T0,
        **fields,
    ) -> Conversation:
        funnel = funnel or make_funnel()
        fields.setdefault("updated_at", created_at)
        fields.setdefault("status", "active")
        conversation = Conversation(
            funnel_id=funnel.id,
            scope=funnel.scope,
            user_ref=user_ref,
            current_block_id=block_id,
            user_path=[],
            created_at=created_at,
            **fields,
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
        return conversation

    return _make


@pytest.fixture
def resources(db):
    """Directory entries for the standard flow's resources."""
    rows = [
        Resource(name="Guide", scope=SCOPE, link="https://x/y"),
        Resource(name="Checklist", scope=SCOPE, link="https://x/checklist?ref=partner"),
        Resource(name="Playbook", scope=SCOPE, link="https://shop.example.com/playbook"),
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def sent_dms(monkeypatch):
    """
    Capture outbound DMs instead of sending them. Returns the list of
    (to, text) tuples; set .fail = True on the list to raise DeliveryFailure.
    """
    from app.services.funnel.errors import DeliveryFailure

    class Outbox(list):
        fail = False

    outbox = Outbox()

    async def fake_send(to, text, dry_run=None):
        if outbox.fail:
            raise DeliveryFailure(f"DM to {to} failed: simulated")
        outbox.append((to, text))
        return {"status": "sent", "message_id": f"msg_{len(outbox)}", "to": to}

    for target in (
        "app.services.conversation.send_direct_message",
        "app.services.offer_dm.send_direct_message",
        "app.services.reprompts.send_direct_message",
    ):
        monkeypatch.setattr(target, fake_send)
    return outbox

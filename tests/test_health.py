from unittest.mock import patch


def test_health_endpoint(client):
    """Test the health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["features"] == {"reprompts_enabled": True, "offer_dm_enabled": True}
    assert data["messaging_dry_run"] is True
    assert data["trigger_stages"] == ["OFFER"]


def test_health_reflects_feature_flags(client):
    with patch("app.main.settings.feature_reprompts_enabled", False):
        data = client.get("/health").json()
    assert data["features"]["reprompts_enabled"] is False


def test_ready_endpoint(client):
    """Readiness answers 200 when the database responds."""
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "database": "connected"}


def test_ready_endpoint_database_down(client, db):
    with patch.object(db, "execute", side_effect=RuntimeError("connection refused")):
        response = client.get("/ready")
    assert response.status_code == 503
    assert response.json()["database"] == "disconnected"

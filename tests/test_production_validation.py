"""
Tests for production environment validation.

Production mode requires:
- ADMIN_API_KEY
- WEBHOOK_SECRET
- MESSAGING_API_KEY when MESSAGING_DRY_RUN=false
"""

from contextlib import ExitStack
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.main import app

GOOD_PRODUCTION = {
    "app_env": "production",
    "admin_api_key": "admin-key",
    "webhook_secret": "hook-secret",
    "messaging_dry_run": False,
    "messaging_api_key": "live-key",
}


def production_settings(**overrides):
    stack = ExitStack()
    for name, value in {**GOOD_PRODUCTION, **overrides}.items():
        stack.enter_context(patch(f"app.main.settings.{name}", value))
    return stack


def test_production_validation_missing_admin_api_key():
    with production_settings(admin_api_key=None):
        with pytest.raises(RuntimeError) as exc_info, TestClient(app):
            pass

    error_message = str(exc_info.value)
    assert "ADMIN_API_KEY is required in production" in error_message
    assert "Production environment validation failed" in error_message


def test_production_validation_missing_webhook_secret():
    with production_settings(webhook_secret=None):
        with pytest.raises(RuntimeError) as exc_info, TestClient(app):
            pass

    assert "WEBHOOK_SECRET is required in production" in str(exc_info.value)


def test_production_validation_missing_messaging_key():
    with production_settings(messaging_api_key=None):
        with pytest.raises(RuntimeError) as exc_info, TestClient(app):
            pass

    assert "MESSAGING_API_KEY is required" in str(exc_info.value)


def test_production_validation_passes_when_configured():
    with production_settings():
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200


def test_startup_fails_on_incomplete_reprompt_table():
    from app.services.funnel.errors import RePromptConfigError

    with patch(
        "app.main.get_reprompt_messages",
        side_effect=RePromptConfigError("Missing re-prompt messages for: PHASE2/15"),
    ):
        with pytest.raises(RePromptConfigError), TestClient(app):
            pass

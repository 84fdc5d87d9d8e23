"""
Tests for hookgate/main.py - app factory, correlation middleware and startup warnings.
"""
import logging
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from hookgate.config import Settings
from hookgate.main import create_app, log_security_warnings


def _settings(**overrides):
    values = {
        "stripe_webhook_secret": "whsec",
        "github_webhook_secret": "gh",
        "clerk_webhook_secret": "clerk",
        "test_webhook_secret": "test",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        with patch("hookgate.main.configure_structured_logging"):
            app = create_app()
        assert isinstance(app, FastAPI)
        assert app.title == "Hookgate"

    def test_routes_registered(self):
        with patch("hookgate.main.configure_structured_logging"):
            app = create_app()
        paths = {getattr(route, "path", None) for route in app.routes}
        assert "/health" in paths
        assert "/health/ready" in paths
        assert "/api/v1/webhooks/{source}" in paths
        assert "/api/v1/webhooks/events/{event_id}/retry" in paths


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id(self):
        with patch("hookgate.main.configure_structured_logging"):
            app = create_app()
        with TestClient(app) as client:
            response = client.get("/health")
        assert len(response.headers["X-Correlation-ID"]) == 32

    def test_propagates_caller_correlation_id(self):
        with patch("hookgate.main.configure_structured_logging"):
            app = create_app()
        with TestClient(app) as client:
            response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestSecurityWarnings:
    def test_fully_configured_has_no_warnings(self):
        assert log_security_warnings(_settings()) == []

    def test_each_missing_secret_is_named(self):
        warnings = log_security_warnings(_settings(stripe_webhook_secret="", clerk_webhook_secret=""))
        assert len(warnings) == 2
        assert warnings[0].startswith("STRIPE_WEBHOOK_SECRET not set")
        assert warnings[1].startswith("CLERK_WEBHOOK_SECRET not set")

    def test_default_test_secret_in_production(self):
        settings = _settings(app_env="production", test_webhook_secret="test-secret-dev-only")
        assert any("TEST_WEBHOOK_SECRET" in w for w in log_security_warnings(settings))

    def test_bypass_logged_critical(self, caplog):
        settings = _settings(test_webhook_secret="", webhook_skip_verification_sources="test")
        with caplog.at_level(logging.WARNING, logger="hookgate"):
            warnings = log_security_warnings(settings)
        # A bypassed source is not also reported as missing its secret
        assert warnings == []
        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(critical) == 1
        assert "DISABLED for test" in critical[0].getMessage()

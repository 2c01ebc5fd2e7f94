"""Tests for the liveness and readiness endpoints."""

from contextlib import contextmanager
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

DB_CONTEXT = "orderflow.db.connection.get_db_context"


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["uptime_seconds"] >= 0


class TestReadiness:
    """Tests for GET /readyz."""

    def _working_db(self, db_session):
        @contextmanager
        def context():
            yield db_session

        return context

    def test_ready_when_db_and_secrets_present(self, client, db_session):
        with patch(DB_CONTEXT, self._working_db(db_session)):
            response = client.get("/readyz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["database"] == {"status": "ok"}
        assert data["checks"]["stripe_secret_key"]["status"] == "configured"
        assert data["checks"]["stripe_webhook_secret"]["status"] == "configured"

    def test_degraded_without_stripe_secrets(self, client, db_session, app_config):
        app_config.stripe.secret_key = ""
        app_config.stripe.webhook_secret = ""

        with patch(DB_CONTEXT, self._working_db(db_session)):
            response = client.get("/readyz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["stripe_secret_key"]["status"] == "degraded"
        assert data["checks"]["stripe_webhook_secret"]["status"] == "degraded"

    def test_not_ready_when_db_unreachable(self, client):
        @contextmanager
        def broken():
            raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))
            yield

        with patch(DB_CONTEXT, broken):
            response = client.get("/readyz")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not_ready"
        assert data["checks"]["database"]["status"] == "error"

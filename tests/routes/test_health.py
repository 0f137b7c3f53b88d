"""Tests for the health check endpoint."""

from unittest.mock import patch


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert "version" in data
        # Delivery thread is not started under test
        assert data["notifications"]["status"] == "stopped"

    def test_database_down_is_degraded(self, client):
        with patch(
            "org_assignments.routes.health.check_database_health",
            return_value=(False, "OperationalError: connection refused"),
        ):
            data = client.get("/health").get_json()

        assert data["status"] == "degraded"
        assert data["database"] == "disconnected"
        assert data["database_error"].startswith("OperationalError")

    def test_disabled_notifications(self, app, client):
        app.extensions["org_service"].notifier.enabled = False
        data = client.get("/health").get_json()
        assert data["notifications"]["status"] == "disabled"
        assert data["status"] == "healthy"

    def test_unknown_route_is_json(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Not found"}

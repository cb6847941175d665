"""
Smoke tests for the main blueprint routes.

These verify that the application starts up correctly and the health
check endpoint responds.
"""


class TestHealthCheck:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self, client):
        """The health check should report a reachable database."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "healthy", "database": "connected"}

    def test_health_check_needs_no_token(self, client):
        response = client.get("/health")
        assert response.status_code != 401


class TestErrorEnvelope:
    """Errors outside the API blueprints still use the JSON envelope."""

    def test_unknown_route_returns_json_404(self, client):
        response = client.get("/no-such-page")
        assert response.status_code == 404
        body = response.get_json()
        assert body["success"] is False
        assert body["data"] is None

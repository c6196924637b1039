"""Tests for health check endpoints."""

from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from agencycrm import __version__


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_basic_health_check(self, client: TestClient):
        """Test /health returns 200."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert "timestamp" in data

    def test_readiness_probe_healthy(self, client: TestClient):
        """Test /health/ready when the database answers."""
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["database"]["status"] == "healthy"

    def test_readiness_probe_database_down(self, client: TestClient):
        """Test /health/ready returns 503 when the database is unreachable."""
        error = OperationalError("SELECT 1", {}, Exception("connection refused"))
        with patch("agencycrm.api.routers.health.check_database") as check:
            check.return_value = {"status": "unhealthy", "error": str(error)}
            response = client.get("/health/ready")
        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not_ready"
        assert data["failed"] == ["database"]

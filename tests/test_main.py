"""
Tests for the application factory and its lifespan wiring.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from compute_gateway.core.config import get_settings
from compute_gateway.main import create_app
from compute_gateway.services.gateway import ComputeGateway


@pytest.fixture
def memory_env(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("ENVIRONMENT", "development")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestCreateApp:
    """Test create_app"""

    def test_lifespan_builds_gateway_with_handlers(self, memory_env):
        handler = AsyncMock(return_value={"text": "ok"})
        app = create_app(handlers={"llm": handler})

        with TestClient(app) as client:
            gateway = app.state.gateway
            assert isinstance(gateway, ComputeGateway)
            assert [s.value for s in gateway.available_services()] == ["llm"]

            health = client.get("/api/health").json()
            assert health["status"] == "ok"
            assert health["store"]["backend"] == "memory"

    def test_root(self, memory_env):
        with TestClient(create_app()) as client:
            response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "Compute Gateway API"

    def test_unknown_service_is_failed_response(self, memory_env):
        """Admission failures come back as failed responses, not HTTP errors"""
        with TestClient(create_app()) as client:
            response = client.post(
                "/api/compute/video",
                json={"payload": {}},
                headers={"X-Wallet-Address": "0xabc"},
            )

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["error"] == "Unknown service: video"

    def test_docs_only_in_development(self, monkeypatch, memory_env):
        monkeypatch.setenv("ENVIRONMENT", "test")
        get_settings.cache_clear()

        with TestClient(create_app()) as client:
            assert client.get("/docs").status_code == 404

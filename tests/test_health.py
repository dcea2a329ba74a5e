"""Tests for health endpoints and the request middleware."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from vetdesk.main import RateLimitMiddleware


class TestHealth:

    @pytest.mark.parametrize("path", ["/health", "/api/health"])
    def test_database_health(self, client, path):
        response = client.get(path)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["environment"] == "test"

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_response_time_header(self, client):
        assert client.get("/health/live").headers["x-response-time"].endswith("ms")


class TestRateLimit:

    @pytest.fixture
    def limited_client(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, requests_per_minute=2, webhook_requests_per_minute=3)

        @app.get("/api/cases")
        def cases():
            return {"ok": True}

        @app.post("/api/webhooks/vapi")
        def webhook():
            return {"ok": True}

        @app.get("/health")
        def health():
            return {"ok": True}

        return TestClient(app)

    def test_api_bucket(self, limited_client):
        assert limited_client.get("/api/cases").headers["x-ratelimit-remaining"] == "1"
        assert limited_client.get("/api/cases").status_code == 200
        response = limited_client.get("/api/cases")
        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert response.headers["retry-after"] == "60"

    def test_webhooks_have_their_own_bucket(self, limited_client):
        limited_client.get("/api/cases")
        limited_client.get("/api/cases")
        for _ in range(3):
            assert limited_client.post("/api/webhooks/vapi").status_code == 200
        assert limited_client.post("/api/webhooks/vapi").status_code == 429

    def test_health_is_exempt(self, limited_client):
        for _ in range(5):
            assert limited_client.get("/health").status_code == 200

"""Tests for CORS allow-list matching and the middleware wiring."""

import re

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.testclient import TestClient

from vetdesk.core.cors import build_origin_regex, is_origin_allowed, normalize_origin


ALLOWED = ["https://app.vetdesk.app", "http://localhost:3000"]
PATTERNS = ["https://*.vetdesk.app"]
EXTENSION_ID = "abcdefghijklmnopabcdefghijklmnop"


def allowed(origin):
    return is_origin_allowed(origin, ALLOWED, PATTERNS, [EXTENSION_ID])


class TestIsOriginAllowed:

    def test_exact_origins(self):
        assert allowed("https://app.vetdesk.app")
        assert allowed("http://localhost:3000")

    def test_trailing_slash_and_case_ignored(self):
        assert allowed("https://APP.vetdesk.app/")

    @pytest.mark.parametrize("origin", [
        "https://staging.vetdesk.app",
        "https://pr-42.preview.vetdesk.app",
    ])
    def test_wildcard_subdomains(self, origin):
        assert allowed(origin)

    @pytest.mark.parametrize("origin", [
        "https://vetdesk.app",
        "http://staging.vetdesk.app",
        "https://evilvetdesk.app",
        "https://staging.vetdesk.app.evil.com",
        "https://-bad.vetdesk.app",
    ])
    def test_wildcard_rejections(self, origin):
        assert not allowed(origin)

    def test_extension_ids(self):
        assert allowed(f"chrome-extension://{EXTENSION_ID}")
        assert not allowed("chrome-extension://ponmlkjihgfedcbaponmlkjihgfedcba")

    def test_any_extension(self):
        assert is_origin_allowed("chrome-extension://ponmlkjihgfedcbaponmlkjihgfedcba", extension_ids=["*"])

    @pytest.mark.parametrize("origin", [None, "", "null"])
    def test_missing_origin(self, origin):
        assert not allowed(origin)


class TestBuildOriginRegex:

    def test_nothing_configured(self):
        assert build_origin_regex([], []) is None

    def test_regex_agrees_with_matcher(self):
        regex = build_origin_regex(PATTERNS, [EXTENSION_ID])
        assert re.fullmatch(regex, "https://staging.vetdesk.app")
        assert not re.fullmatch(regex, "https://vetdesk.app")
        assert re.fullmatch(regex, f"chrome-extension://{EXTENSION_ID}")

    def test_unsupported_pattern(self):
        with pytest.raises(ValueError):
            build_origin_regex(["https://vetdesk.*"])

    def test_normalize_origin(self):
        assert normalize_origin(" https://A.com/ ") == "https://a.com"
        assert normalize_origin(None) == ""


class TestCorsMiddleware:

    @pytest.fixture
    def cors_client(self):
        app = FastAPI()
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED,
            allow_origin_regex=build_origin_regex(PATTERNS, [EXTENSION_ID]),
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @app.get("/ping")
        def ping():
            return {"ok": True}

        return TestClient(app)

    def test_preflight_allowed_for_wildcard_subdomain(self, cors_client):
        response = cors_client.options(
            "/ping",
            headers={"Origin": "https://staging.vetdesk.app", "Access-Control-Request-Method": "GET"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://staging.vetdesk.app"

    def test_preflight_rejected_for_apex(self, cors_client):
        response = cors_client.options(
            "/ping",
            headers={"Origin": "https://vetdesk.app", "Access-Control-Request-Method": "GET"},
        )
        assert response.status_code == 400

    def test_app_allows_configured_origin(self, client):
        response = client.get("/health/live", headers={"Origin": "http://localhost:3000"})
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_app_omits_header_for_unknown_origin(self, client):
        response = client.get("/health/live", headers={"Origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in response.headers

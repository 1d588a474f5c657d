"""Tests for the ``lapse serve`` API server."""

import pytest
from fastapi.testclient import TestClient

# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


@pytest.fixture
def api_app(database, issuer):
    """Create the full API app."""
    from lapse.api.serve import create_api_app

    return create_api_app()


@pytest.fixture
def client(api_app):
    with TestClient(api_app) as client:
        yield client


# ---------------------------------------------------------------------------
# Basic structure
# ---------------------------------------------------------------------------


class TestAPIAppStructure:
    def test_openapi_json(self, client):
        resp = client.get("/api/v1/openapi.json")
        assert resp.status_code == 200
        data = resp.json()
        assert data["info"]["title"] == "Lapse API"
        assert "/api/v1/oauth/token" in data["paths"]
        assert "/api/v1/rest/{router_name}/{procedure}" in data["paths"]

    def test_docs_page(self, client):
        assert client.get("/api/v1/docs").status_code == 200

    def test_redoc_page(self, client):
        assert client.get("/api/v1/redoc").status_code == 200

    def test_scopes_endpoint(self, client):
        assert client.get("/api/v1/oauth/scopes").status_code == 200

    def test_unknown_path(self, client):
        assert client.get("/api/v1/nope").status_code == 404


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


class TestCORS:
    def test_localhost_origin_allowed(self, client):
        resp = client.options(
            "/api/v1/oauth/scopes",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert resp.headers.get("access-control-allow-origin") == "http://localhost:3000"

    def test_configured_origin_allowed(self, settings, database, issuer):
        from lapse.api.serve import create_api_app

        settings.api_cors_allowed_origins = ["https://lapse.example"]
        with TestClient(create_api_app()) as client:
            resp = client.get("/api/v1/oauth/scopes", headers={"Origin": "https://lapse.example"})
        assert resp.headers.get("access-control-allow-origin") == "https://lapse.example"

    def test_foreign_origin_not_allowed(self, client):
        resp = client.get("/api/v1/oauth/scopes", headers={"Origin": "https://evil.example"})
        assert "access-control-allow-origin" not in resp.headers

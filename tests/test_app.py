"""
Tests for application wiring: health check, security headers, CORS and the
error envelope.
"""

from uuid import uuid4

import pytest

from tests.helpers import auth_headers


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "viotraix", "version": "0.1.0"}


class TestSecurityHeaders:

    @pytest.mark.asyncio
    async def test_headers_present(self, client):
        response = await client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
        assert "Strict-Transport-Security" not in response.headers

    @pytest.mark.asyncio
    async def test_hsts_in_production(self, client, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")

        response = await client.get("/health")

        assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")

    @pytest.mark.asyncio
    async def test_cors_preflight_for_known_origin(self, client):
        response = await client.options("/api/usage", headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "GET",
        })

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
        assert response.headers["Access-Control-Allow-Credentials"] == "true"

    @pytest.mark.asyncio
    async def test_cors_unknown_origin_not_echoed(self, client):
        response = await client.get("/health", headers={"Origin": "https://evil.example"})

        assert "Access-Control-Allow-Origin" not in response.headers


class TestErrorEnvelope:

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        response = await client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

    @pytest.mark.asyncio
    async def test_query_validation(self, client):
        response = await client.get("/api/audits?limit=0", headers=auth_headers(uuid4()))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request"
        assert body["fields"] == ["query.limit"]

    @pytest.mark.asyncio
    async def test_malformed_audit_id(self, client):
        response = await client.get("/api/audits/not-a-uuid", headers=auth_headers(uuid4()))

        assert response.status_code == 400
        assert response.json()["fields"] == ["path.audit_id"]

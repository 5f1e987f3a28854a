"""
Tests for the liveness and readiness endpoints.

Covers:
- Liveness answers without touching the database
- Readiness response structure
- Database and template engine checks
- Unhealthy database turns readiness into 503
"""

import pytest
from httpx import AsyncClient

from services import health


class TestLiveness:
    @pytest.mark.asyncio
    async def test_healthz(self, async_client: AsyncClient):
        response = await async_client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestReadiness:
    """GET /readyz."""

    @pytest.mark.asyncio
    async def test_readyz_healthy(self, async_client: AsyncClient):
        response = await async_client.get("/readyz")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["app"] == "Provisio"
        assert data["version"]
        assert isinstance(data["uptime_seconds"], (int, float))

    @pytest.mark.asyncio
    async def test_readyz_lists_components(self, async_client: AsyncClient):
        response = await async_client.get("/readyz")
        checks = {c["name"]: c for c in response.json()["checks"]}
        assert checks["database"]["status"] == "ok"
        assert checks["database"]["response_time_ms"] is not None
        assert checks["template_engine"]["status"] == "ok"

    @pytest.mark.asyncio
    async def test_database_failure_is_503(self, async_client: AsyncClient, monkeypatch):
        async def broken(db):
            return health.ComponentHealth(name="database", status="error", message="unreachable")

        monkeypatch.setattr(health, "check_database", broken)
        response = await async_client.get("/readyz")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_template_engine_failure_degrades(self, async_client: AsyncClient, monkeypatch):
        monkeypatch.setattr(
            health,
            "check_template_engine",
            lambda: health.ComponentHealth(name="template_engine", status="error"),
        )
        response = await async_client.get("/readyz")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


class TestRequestHeaders:
    @pytest.mark.asyncio
    async def test_request_id_echoed(self, async_client: AsyncClient):
        response = await async_client.get("/healthz", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_controller_marker_header(self, async_client: AsyncClient):
        response = await async_client.get("/controller/checksum/missing/", params={"key": "x"})
        assert response.headers.get("X-Openwisp-Controller") == "true"

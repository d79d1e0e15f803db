"""Tests for the admin API."""

import pytest
from httpx import ASGITransport, AsyncClient

from main import create_app


@pytest.mark.asyncio
async def test_admin_requires_authentication(client):
    response = await client.get("/api/v1/admin/dedup/stats")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHENTICATED"


@pytest.mark.asyncio
async def test_rate_limit_status(client, pipeline, auth_headers):
    for _ in range(3):
        await pipeline.rate_limiter.check_rate_limit("203.0.113.9", "tight")

    response = await client.get(
        "/api/v1/admin/rate-limits/tight", params={"client": "203.0.113.9"}, headers=auth_headers
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["bucket"] == "tight"
    assert data["count"] == 2
    assert data["remaining"] == 0
    assert data["blocked"] is True
    assert data["fingerprint"].startswith("hashed:")
    assert response.headers["X-RateLimit-Limit"] == "50"


@pytest.mark.asyncio
async def test_rate_limit_status_requires_client(client, auth_headers):
    response = await client.get("/api/v1/admin/rate-limits/tight", headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"]["details"].startswith("client:")


@pytest.mark.asyncio
async def test_unknown_bucket(client, auth_headers):
    response = await client.get(
        "/api/v1/admin/rate-limits/nope", params={"client": "203.0.113.9"}, headers=auth_headers
    )

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Bucket not found"


@pytest.mark.asyncio
async def test_reset_rate_limit(client, pipeline, auth_headers):
    for _ in range(3):
        await pipeline.rate_limiter.check_rate_limit("203.0.113.9", "tight")

    response = await client.delete(
        "/api/v1/admin/rate-limits/tight", params={"client": "203.0.113.9"}, headers=auth_headers
    )

    assert response.status_code == 200
    assert response.json()["data"] == {"reset": True, "bucket": "tight"}
    decision = await pipeline.rate_limiter.check_rate_limit("203.0.113.9", "tight")
    assert decision.allowed is True


@pytest.mark.asyncio
async def test_suspicious_activity(client, pipeline, auth_headers):
    for _ in range(3):
        await pipeline.rate_limiter.check_rate_limit("203.0.113.9", "tight")

    response = await client.get("/api/v1/admin/suspicious-activity", headers=auth_headers)

    assert response.status_code == 200
    clients = response.json()["data"]["clients"]
    assert len(clients) == 1
    assert clients[0]["bucket"] == "tight"
    assert "203.0.113.9" not in clients[0]["client"]


@pytest.mark.asyncio
async def test_dedup_stats(client, auth_headers):
    response = await client.get("/api/v1/admin/dedup/stats", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"pending": 0, "joiners": 0, "shared_hits": 0}


@pytest.mark.asyncio
async def test_admin_api_can_be_disabled(test_settings, pipeline, auth_headers):
    settings = test_settings.model_copy(update={"ADMIN_API_ENABLED": False})
    app = create_app(settings, pipeline=pipeline)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/admin/dedup/stats", headers=auth_headers)

    assert response.status_code == 404

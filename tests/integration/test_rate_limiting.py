"""Integration tests: request rate limiting middleware."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_strict_path_denies_21st_request(async_client: AsyncClient, api_base: str, db_session):
    # Unauthenticated cron calls still count against the strict budget
    for _ in range(20):
        resp = await async_client.post(f"{api_base}/cron/billing")
        assert resp.status_code == 401

    resp = await async_client.post(f"{api_base}/cron/billing")
    assert resp.status_code == 429
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "RATE_LIMITED"
    assert int(resp.headers["Retry-After"]) >= 1
    assert resp.headers["X-RateLimit-Limit"] == "20"
    assert resp.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_clients_are_counted_separately(async_client: AsyncClient, api_base: str, db_session):
    for _ in range(20):
        await async_client.post(f"{api_base}/cron/billing", headers={"X-Forwarded-For": "203.0.113.1"})

    blocked = await async_client.post(f"{api_base}/cron/billing", headers={"X-Forwarded-For": "203.0.113.1"})
    other = await async_client.post(f"{api_base}/cron/billing", headers={"X-Forwarded-For": "203.0.113.2"})
    assert blocked.status_code == 429
    assert other.status_code == 401


@pytest.mark.asyncio
async def test_allowed_response_carries_budget_headers(async_client: AsyncClient, api_base: str, db_session):
    resp = await async_client.get(f"{api_base}/cron/billing")
    assert resp.status_code == 401
    assert resp.headers["X-RateLimit-Limit"] == "100"
    assert resp.headers["X-RateLimit-Remaining"] == "99"


@pytest.mark.asyncio
async def test_health_is_exempt(async_client: AsyncClient):
    for _ in range(110):
        resp = await async_client.get("http://test/health")
    assert resp.status_code == 200

"""Integration tests: organisation status and billing day endpoints."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, patch
from uuid import uuid4
from httpx import AsyncClient

from app.models.enums import OrgStatus
from app.models.organisation import Organisation
from app.schemas.organisation import AutoDeactivateCheck
from app.services.org_status_service import InvalidStatusTransition, OrganisationNotFoundError

SERVICE = "app.api.v1.endpoints.organisations"


def _org(**overrides) -> Organisation:
    values = dict(
        id=uuid4(),
        name="Hillside Academy",
        status=OrgStatus.ACTIVE,
        payment_failure_count=0,
        billing_day=15,
        fee_due_day=15,
    )
    values.update(overrides)
    return Organisation(**values)


@pytest.mark.asyncio
async def test_requires_admin_key(async_client: AsyncClient, api_base: str, db_session):
    resp = await async_client.get(f"{api_base}/organisations/{uuid4()}/status")
    assert resp.status_code == 401

    resp = await async_client.get(
        f"{api_base}/organisations/{uuid4()}/status", headers={"Authorization": "Bearer nope"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_get_status(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    org = _org(
        status=OrgStatus.PAUSED,
        payment_failure_count=2,
        paused_at=datetime(2024, 3, 2, 8, 0),
        paused_reason="Account paused due to 2 consecutive payment failures. Last failure: declined",
    )
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = org
        resp = await async_client.get(f"{api_base}/organisations/{org.id}/status", headers=admin_headers)

    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["status"] == "PAUSED"
    assert data["payment_failure_count"] == 2
    assert data["billing_day"] == 15


@pytest.mark.asyncio
async def test_get_status_not_found(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = None
        resp = await async_client.get(f"{api_base}/organisations/{uuid4()}/status", headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_billing_day(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    org = _org(billing_day=20, fee_due_day=20)
    with patch(f"{SERVICE}.OrganisationService.update_billing_day", new_callable=AsyncMock) as mock_update:
        mock_update.return_value = org
        resp = await async_client.put(
            f"{api_base}/organisations/{org.id}/billing-day",
            headers=admin_headers,
            json={"billing_day": 20},
        )

    assert resp.status_code == 200, resp.text
    assert resp.json()["data"] == {"billing_day": 20, "fee_due_day": 20}


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [0, 29, "abc", None])
async def test_update_billing_day_invalid(async_client: AsyncClient, api_base: str, admin_headers, db_session, value):
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get:
        resp = await async_client.put(
            f"{api_base}/organisations/{uuid4()}/billing-day",
            headers=admin_headers,
            json={"billing_day": value},
        )
    assert resp.status_code == 400
    assert not mock_get.called


@pytest.mark.asyncio
async def test_auto_deactivate_check(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    check = AutoDeactivateCheck(should_deactivate=True, reason="3+ payment failures in the last 30 days (3 total)", failure_count=3)
    with patch(
        f"{SERVICE}.OrgStatusService.check_auto_deactivate_conditions", new_callable=AsyncMock
    ) as mock_check:
        mock_check.return_value = check
        resp = await async_client.get(
            f"{api_base}/organisations/{uuid4()}/auto-deactivate-check", headers=admin_headers
        )
    assert resp.status_code == 200
    assert resp.json()["data"]["should_deactivate"] is True


@pytest.mark.asyncio
async def test_reactivate(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    org = _org()
    with patch(f"{SERVICE}.OrgStatusService.reactivate", new_callable=AsyncMock) as mock_reactivate:
        mock_reactivate.return_value = org
        resp = await async_client.post(
            f"{api_base}/organisations/{org.id}/reactivate",
            headers=admin_headers,
            json={"actor": "ops@platform.example"},
        )

    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["status"] == "ACTIVE"
    assert mock_reactivate.await_args.kwargs["actor"] == "ops@platform.example"


@pytest.mark.asyncio
async def test_pause_without_body(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    org = _org(status=OrgStatus.PAUSED, paused_at=datetime(2024, 3, 2), paused_reason="Account paused by platform administrator")
    with patch(f"{SERVICE}.OrgStatusService.pause", new_callable=AsyncMock) as mock_pause:
        mock_pause.return_value = org
        resp = await async_client.post(f"{api_base}/organisations/{org.id}/pause", headers=admin_headers)

    assert resp.status_code == 200, resp.text
    assert mock_pause.await_args.kwargs == {"reason": None, "actor": "platform_admin"}


@pytest.mark.asyncio
async def test_invalid_transition_is_conflict(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    with patch(f"{SERVICE}.OrgStatusService.deactivate", new_callable=AsyncMock) as mock_deactivate:
        mock_deactivate.side_effect = InvalidStatusTransition("Organisation is already deactivated")
        resp = await async_client.post(
            f"{api_base}/organisations/{uuid4()}/deactivate", headers=admin_headers, json={"reason": "again"}
        )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_transition_unknown_org(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    with patch(f"{SERVICE}.OrgStatusService.reactivate", new_callable=AsyncMock) as mock_reactivate:
        mock_reactivate.side_effect = OrganisationNotFoundError("missing")
        resp = await async_client.post(f"{api_base}/organisations/{uuid4()}/reactivate", headers=admin_headers)
    assert resp.status_code == 404

"""Integration tests: monthly payment record endpoints."""

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, patch
from uuid import uuid4
from httpx import AsyncClient

from app.models.enums import OrgStatus, PaymentStatus, PaymentMethod
from app.models.organisation import Organisation
from app.schemas.billing import PaymentRecordResponse

SERVICE = "app.api.v1.endpoints.payments"


def _org() -> Organisation:
    return Organisation(id=uuid4(), name="Hillside Academy", status=OrgStatus.ACTIVE, billing_day=15)


def _record_response(status=PaymentStatus.LATE) -> PaymentRecordResponse:
    return PaymentRecordResponse(
        id=uuid4(),
        student_id=uuid4(),
        class_id=uuid4(),
        month="2024-03",
        amount_p=4500,
        stored_status=PaymentStatus.PENDING,
        status=status,
        due_date=date(2024, 3, 15),
    )


@pytest.mark.asyncio
async def test_list_payments(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    org = _org()
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get, \
            patch(f"{SERVICE}.PaymentRecordService.list_records", new_callable=AsyncMock) as mock_list:
        mock_get.return_value = org
        mock_list.return_value = ([_record_response()], 21)
        resp = await async_client.get(
            f"{api_base}/organisations/{org.id}/payments",
            headers=admin_headers,
            params={"month": "2024-03", "status": "LATE", "page_size": 10},
        )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["data"][0]["status"] == "LATE"
    assert body["meta"] == {"page": 1, "page_size": 10, "total": 21, "total_pages": 3}
    assert mock_list.await_args.kwargs["status"] == PaymentStatus.LATE
    assert mock_list.await_args.kwargs["month"] == "2024-03"


@pytest.mark.asyncio
async def test_list_payments_bad_month(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get, \
            patch(f"{SERVICE}.PaymentRecordService.list_records", new_callable=AsyncMock) as mock_list:
        mock_get.return_value = _org()
        mock_list.side_effect = ValueError("Invalid month '2024/03', expected YYYY-MM")
        resp = await async_client.get(
            f"{api_base}/organisations/{uuid4()}/payments", headers=admin_headers, params={"month": "2024/03"}
        )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_list_payments_invalid_status(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    resp = await async_client.get(
        f"{api_base}/organisations/{uuid4()}/payments", headers=admin_headers, params={"status": "LOST"}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_record_paid(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    org = _org()
    paid = _record_response(status=PaymentStatus.PAID)
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get, \
            patch(f"{SERVICE}.PaymentRecordService.record_manual_payment", new_callable=AsyncMock) as mock_record:
        mock_get.return_value = org
        mock_record.return_value = paid
        resp = await async_client.post(
            f"{api_base}/organisations/{org.id}/payments/{paid.id}/record-paid",
            headers=admin_headers,
            json={"method": "CASH", "reference": "RCPT-9", "paid_at": "2024-03-18T10:00:00"},
        )

    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["status"] == "PAID"
    payment_in = mock_record.await_args.args[3]
    assert payment_in.method == PaymentMethod.CASH
    assert payment_in.paid_at == datetime(2024, 3, 18, 10, 0)


@pytest.mark.asyncio
async def test_record_paid_unknown_record(async_client: AsyncClient, api_base: str, admin_headers, db_session):
    with patch(f"{SERVICE}.OrganisationService.get_org_by_id", new_callable=AsyncMock) as mock_get, \
            patch(f"{SERVICE}.PaymentRecordService.record_manual_payment", new_callable=AsyncMock) as mock_record:
        mock_get.return_value = _org()
        mock_record.return_value = None
        resp = await async_client.post(
            f"{api_base}/organisations/{uuid4()}/payments/{uuid4()}/record-paid",
            headers=admin_headers,
            json={"method": "BANK_TRANSFER"},
        )
    assert resp.status_code == 404

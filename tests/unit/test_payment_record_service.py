"""Unit tests for PaymentRecordService and OrganisationService."""

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog
from app.models.billing import MonthlyPaymentRecord
from app.models.enums import OrgStatus, PaymentStatus, PaymentMethod, AuditAction
from app.models.organisation import Organisation
from app.schemas.billing import RecordPaymentRequest
from app.services.organisation_service import OrganisationService, InvalidBillingDay
from app.services.payment_record_service import PaymentRecordService


def _org(billing_day=15, fee_due_day=None) -> Organisation:
    return Organisation(
        id=uuid4(),
        name="Hillside Academy",
        status=OrgStatus.ACTIVE,
        payment_failure_count=0,
        billing_day=billing_day,
        fee_due_day=fee_due_day,
    )


def _record(org, month="2024-03", status=PaymentStatus.PENDING, paid_at=None) -> MonthlyPaymentRecord:
    return MonthlyPaymentRecord(
        id=uuid4(),
        org_id=org.id,
        student_id=uuid4(),
        class_id=uuid4(),
        month=month,
        amount_p=4500,
        status=status,
        paid_at=paid_at,
    )


def _result_with(records):
    mock_result = MagicMock()
    mock_result.scalars.return_value.all.return_value = records
    return mock_result


@pytest.mark.asyncio
async def test_list_records_derives_status():
    db = AsyncMock(spec=AsyncSession)
    org = _org(billing_day=15)
    paid = _record(org, status=PaymentStatus.PAID, paid_at=datetime(2024, 3, 3))
    late = _record(org)
    overdue = _record(org, month="2024-02")
    db.execute.return_value = _result_with([paid, late, overdue])

    items, total = await PaymentRecordService.list_records(db, org, today=date(2024, 3, 20))

    assert total == 3
    assert [i.status for i in items] == [PaymentStatus.PAID, PaymentStatus.LATE, PaymentStatus.OVERDUE]
    assert items[1].stored_status == PaymentStatus.PENDING
    assert items[1].due_date == date(2024, 3, 15)


@pytest.mark.asyncio
async def test_list_records_filters_on_derived_status_and_paginates():
    db = AsyncMock(spec=AsyncSession)
    org = _org(billing_day=1)
    records = [_record(org) for _ in range(5)]
    db.execute.return_value = _result_with(records)

    items, total = await PaymentRecordService.list_records(
        db, org, status=PaymentStatus.OVERDUE, page=2, page_size=2, today=date(2024, 3, 20)
    )

    assert total == 5
    assert len(items) == 2
    assert all(i.status == PaymentStatus.OVERDUE for i in items)

    none_pending, total_pending = await PaymentRecordService.list_records(
        db, org, status=PaymentStatus.PENDING, today=date(2024, 3, 20)
    )
    assert none_pending == []
    assert total_pending == 0


@pytest.mark.asyncio
async def test_list_records_rejects_bad_month():
    db = AsyncMock(spec=AsyncSession)
    with pytest.raises(ValueError):
        await PaymentRecordService.list_records(db, _org(), month="2024/03")
    assert not db.execute.called


@pytest.mark.asyncio
async def test_list_records_uses_fee_due_day_fallback():
    db = AsyncMock(spec=AsyncSession)
    org = _org(billing_day=None, fee_due_day=25)
    db.execute.return_value = _result_with([_record(org)])

    items, _ = await PaymentRecordService.list_records(db, org, today=date(2024, 3, 20))
    assert items[0].status == PaymentStatus.PENDING
    assert items[0].due_date == date(2024, 3, 25)


@pytest.mark.asyncio
async def test_record_manual_payment():
    db = AsyncMock(spec=AsyncSession)
    org = _org()
    record = _record(org, month="2024-01")
    paid_at = datetime(2024, 3, 18, 10, 0)

    with patch(
        "app.services.payment_record_service.PaymentRecordService.get_record", new_callable=AsyncMock
    ) as mock_get:
        mock_get.return_value = record
        response = await PaymentRecordService.record_manual_payment(
            db,
            org,
            record.id,
            RecordPaymentRequest(method=PaymentMethod.CASH, reference="RCPT-001", paid_at=paid_at),
        )

    assert response.status == PaymentStatus.PAID
    assert response.paid_at == paid_at
    assert record.status == PaymentStatus.PAID
    assert record.method == PaymentMethod.CASH
    assert record.reference == "RCPT-001"

    entries = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], AuditLog)]
    assert len(entries) == 1
    assert entries[0].action == AuditAction.RECORD_MANUAL_PAYMENT.value
    assert entries[0].details["previous_status"] == "PENDING"
    assert db.commit.called


@pytest.mark.asyncio
async def test_record_manual_payment_unknown_record():
    db = AsyncMock(spec=AsyncSession)
    with patch(
        "app.services.payment_record_service.PaymentRecordService.get_record", new_callable=AsyncMock
    ) as mock_get:
        mock_get.return_value = None
        response = await PaymentRecordService.record_manual_payment(
            db, _org(), uuid4(), RecordPaymentRequest(method=PaymentMethod.BANK_TRANSFER)
        )

    assert response is None
    assert not db.commit.called


@pytest.mark.asyncio
async def test_update_billing_day_moves_both_fields():
    db = AsyncMock(spec=AsyncSession)
    org = _org(billing_day=1, fee_due_day=1)

    with patch(
        "app.services.organisation_service.OrganisationService.get_org_by_id", new_callable=AsyncMock
    ) as mock_get:
        mock_get.return_value = org
        result = await OrganisationService.update_billing_day(db, org.id, "15", actor="platform_admin")

    assert result.billing_day == 15
    assert result.fee_due_day == 15
    entries = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], AuditLog)]
    assert entries[0].action == AuditAction.BILLING_DAY_UPDATED.value
    assert entries[0].details["previous_billing_day"] == 1
    assert db.commit.called


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [0, 29, "abc", None, 15.5])
async def test_update_billing_day_rejects_invalid(value):
    db = AsyncMock(spec=AsyncSession)
    with pytest.raises(InvalidBillingDay):
        await OrganisationService.update_billing_day(db, uuid4(), value, actor="platform_admin")
    assert not db.execute.called


def test_status_response_resolves_billing_day():
    org = _org(billing_day=None, fee_due_day=None)
    response = OrganisationService.to_status_response(org)
    assert response.billing_day == 1
    assert response.fee_due_day == 1
    assert response.payment_failure_count == 0

"""Unit tests for PaymentRetryService."""

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, patch
from uuid import uuid4
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog
from app.models.billing import PlatformBilling
from app.models.enums import MemberRole, RetryRunStatus, SubscriptionStatus
from app.models.user import User
from app.schemas.billing import InvoiceRetryResult, RetryCandidate
from app.services.charge_processor import ChargeProcessorError
from app.services.payment_retry_service import (
    PaymentRetryService,
    days_since,
    retry_cutoff,
)

FIND_DUE = "app.services.payment_retry_service.PaymentRetryService.find_due_retries"
LOCK_BILLING = "app.services.payment_retry_service.PaymentRetryService.lock_billing"
HANDLE_SUCCESS = "app.services.payment_retry_service.OrgStatusService.handle_payment_success"
GET_USERS = "app.services.payment_retry_service.OrgStatusService.get_affected_users"
NOTIFY = "app.services.payment_retry_service.notification_service.notify_retry_warning"

TODAY = date(2024, 3, 14)
NOW = datetime(2024, 3, 14, 3, 0)


def _billing(retry_count=0, warned=False, last_retry=None) -> PlatformBilling:
    return PlatformBilling(
        id=uuid4(),
        org_id=uuid4(),
        subscription_status=SubscriptionStatus.PAST_DUE,
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        default_payment_method_id="pm_1",
        first_payment_failure_date=datetime(2024, 3, 1, 9, 0),
        last_payment_retry_date=last_retry,
        payment_retry_count=retry_count,
        warning_email_sent=warned,
    )


def _candidate(billing: PlatformBilling, name: str = "Hillside Academy") -> RetryCandidate:
    return RetryCandidate(
        billing_id=billing.id,
        org_id=billing.org_id,
        org_name=name,
        retry_count=billing.payment_retry_count,
        days_since_first_failure=days_since(billing.first_payment_failure_date, TODAY),
        days_since_last_retry=days_since(billing.last_payment_retry_date or billing.first_payment_failure_date, TODAY),
    )


def _audits(db):
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], AuditLog)]


def test_retry_cutoff_spaces_attempts_by_calendar_days():
    cutoff = retry_cutoff(TODAY)
    assert cutoff == datetime(2024, 3, 12)
    # Attempted late on the 11th: three days ago, due again
    assert datetime(2024, 3, 11, 23, 0) < cutoff
    # Attempted on the 12th: only two days ago
    assert not datetime(2024, 3, 12, 0, 30) < cutoff


def test_days_since():
    assert days_since(datetime(2024, 3, 1, 23, 59), TODAY) == 13
    assert days_since(None, TODAY) == 0


@pytest.mark.asyncio
async def test_declined_retry_is_counted_and_audited():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing()
    processor = AsyncMock()
    processor.retry_invoice_payment.side_effect = ChargeProcessorError(
        "Card error during invoice payment: declined", payment_method_failure=True
    )

    with patch(LOCK_BILLING, new_callable=AsyncMock) as mock_lock, \
            patch(NOTIFY) as mock_notify:
        mock_lock.return_value = billing
        result = await PaymentRetryService.retry_organisation(db, processor, _candidate(billing), TODAY, NOW)

    assert result.status == RetryRunStatus.FAILED
    assert result.retry_count == 1
    assert billing.payment_retry_count == 1
    assert billing.last_payment_retry_date == NOW
    assert billing.subscription_status == SubscriptionStatus.PAST_DUE
    assert billing.warning_email_sent is False
    assert not mock_notify.called

    audit = _audits(db)[0]
    assert audit.action == "PLATFORM_BILLING_RETRY"
    assert audit.details["retry_count"] == 1
    assert audit.details["days_since_first_failure"] == 13
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_third_failed_retry_warns_admins_once():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing(retry_count=2)
    owner = User(
        id=uuid4(), org_id=billing.org_id, email="owner@hillside.example", name="Olu",
        role=MemberRole.OWNER, is_active=True,
    )
    processor = AsyncMock()
    processor.retry_invoice_payment.return_value = InvoiceRetryResult(invoice_id="in_1", amount_due_p=2400, paid=False)

    with patch(LOCK_BILLING, new_callable=AsyncMock) as mock_lock, \
            patch(GET_USERS, new_callable=AsyncMock) as mock_users, \
            patch(NOTIFY) as mock_notify:
        mock_lock.return_value = billing
        mock_users.return_value = [owner]
        result = await PaymentRetryService.retry_organisation(db, processor, _candidate(billing), TODAY, NOW)

    assert result.retry_count == 3
    assert billing.warning_email_sent is True
    org_name, users, retry_count, amount_p, reason = mock_notify.call_args.args
    assert org_name == "Hillside Academy"
    assert [u.email for u in users] == ["owner@hillside.example"]
    assert (retry_count, amount_p) == (3, 2400)
    assert reason == "Payment could not be processed"

    # Already warned: later failures stay quiet
    billing.last_payment_retry_date = None
    with patch(LOCK_BILLING, new_callable=AsyncMock) as mock_lock, \
            patch(NOTIFY) as mock_notify:
        mock_lock.return_value = billing
        result = await PaymentRetryService.retry_organisation(db, processor, _candidate(billing), TODAY, NOW)

    assert result.retry_count == 4
    assert not mock_notify.called


@pytest.mark.asyncio
async def test_paid_retry_clears_dunning_state():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing(retry_count=2, warned=True, last_retry=datetime(2024, 3, 10, 3, 0))
    processor = AsyncMock()
    processor.retry_invoice_payment.return_value = InvoiceRetryResult(invoice_id="in_1", amount_due_p=2400, paid=True)

    with patch(LOCK_BILLING, new_callable=AsyncMock) as mock_lock, \
            patch(HANDLE_SUCCESS, new_callable=AsyncMock) as mock_success:
        mock_lock.return_value = billing
        result = await PaymentRetryService.retry_organisation(db, processor, _candidate(billing), TODAY, NOW)

    assert result.status == RetryRunStatus.SUCCEEDED
    assert billing.subscription_status == SubscriptionStatus.ACTIVE
    assert billing.first_payment_failure_date is None
    assert billing.last_payment_retry_date is None
    assert billing.payment_retry_count == 0
    assert billing.warning_email_sent is False
    assert billing.last_billed_at == NOW
    assert mock_success.await_args.args[1].amount_p == 2400


@pytest.mark.asyncio
async def test_nothing_to_retry_is_skipped():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing(retry_count=1)
    processor = AsyncMock()
    processor.retry_invoice_payment.return_value = None

    with patch(LOCK_BILLING, new_callable=AsyncMock) as mock_lock:
        mock_lock.return_value = billing
        result = await PaymentRetryService.retry_organisation(db, processor, _candidate(billing), TODAY, NOW)

    assert result.status == RetryRunStatus.SKIPPED
    assert billing.payment_retry_count == 1
    assert billing.last_payment_retry_date is None
    db.rollback.assert_awaited_once()
    assert not db.commit.called


@pytest.mark.asyncio
async def test_processor_outage_is_an_error_not_a_retry():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing()
    processor = AsyncMock()
    processor.retry_invoice_payment.side_effect = ChargeProcessorError("Stripe invoice lookup timed out after 30.0s")

    with patch(LOCK_BILLING, new_callable=AsyncMock) as mock_lock:
        mock_lock.return_value = billing
        result = await PaymentRetryService.retry_organisation(db, processor, _candidate(billing), TODAY, NOW)

    assert result.status == RetryRunStatus.ERROR
    assert "timed out" in result.error
    assert billing.payment_retry_count == 0
    db.rollback.assert_awaited_once()
    assert _audits(db) == []


@pytest.mark.asyncio
async def test_run_twice_in_a_day_retries_once():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing()
    processor = AsyncMock()
    processor.retry_invoice_payment.side_effect = ChargeProcessorError("declined", payment_method_failure=True)

    async def lock(_db, billing_id, run_date):
        last = billing.last_payment_retry_date or billing.first_payment_failure_date
        return billing if last < retry_cutoff(run_date) else None

    with patch(FIND_DUE, new_callable=AsyncMock) as mock_find, \
            patch(LOCK_BILLING, side_effect=lock):
        mock_find.return_value = [_candidate(billing)]
        first = await PaymentRetryService.run(db, processor, today=TODAY)
        second = await PaymentRetryService.run(db, processor, today=TODAY)

    assert first.retried == 1
    assert first.failed == 1
    assert second.checked == 1
    assert second.retried == 0
    assert processor.retry_invoice_payment.await_count == 1
    assert billing.payment_retry_count == 1


@pytest.mark.asyncio
async def test_preview_counts_past_due():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing()

    with patch(FIND_DUE, new_callable=AsyncMock) as mock_find, \
            patch(
                "app.services.payment_retry_service.PaymentRetryService.count_past_due",
                new_callable=AsyncMock,
            ) as mock_count:
        mock_find.return_value = [_candidate(billing)]
        mock_count.return_value = 4
        preview = await PaymentRetryService.preview(db, TODAY)

    assert preview.total_past_due == 4
    assert [c.org_name for c in preview.ready_for_retry] == ["Hillside Academy"]
    assert preview.ready_for_retry[0].days_since_first_failure == 13

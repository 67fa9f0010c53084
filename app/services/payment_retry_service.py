"""
Dunning for past-due platform subscriptions.

Once an invoice payment fails the subscription is past_due and the retry
clock starts. This job pays the open invoice again every
PAYMENT_RETRY_INTERVAL_DAYS, and warns the organisation's admins once the
retry count reaches PAYMENT_RETRY_WARNING_AT. Status changes stay with the
status manager: Stripe reports every failed retry as invoice.payment_failed.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.logging import get_logger
from app.models.organisation import Organisation
from app.models.billing import PlatformBilling
from app.models.enums import OrgStatus, SubscriptionStatus, RetryRunStatus, AuditAction
from app.schemas.billing import RetryCandidate, RetryRunResult, RetryRunReport, RetryPreview
from app.schemas.organisation import PaymentSuccessEvent
from app.services import notification_service
from app.services.audit_service import AuditService
from app.services.charge_processor import ChargeProcessor, ChargeProcessorError
from app.services.org_status_service import OrgStatusService, affected_user_details
from app.utils.time import get_utc_now, get_utc_today, start_of_day

logger = get_logger(__name__)

JOB_NAME = "payment_retry"


def retry_cutoff(today: date) -> datetime:
    """Attempts stamped before this instant are due again on `today`."""
    return start_of_day(today - timedelta(days=settings.PAYMENT_RETRY_INTERVAL_DAYS - 1))


def days_since(moment: Optional[datetime], today: date) -> int:
    return (today - moment.date()).days if moment else 0


def clear_retry_state(billing: PlatformBilling) -> None:
    billing.first_payment_failure_date = None
    billing.last_payment_retry_date = None
    billing.payment_retry_count = 0
    billing.warning_email_sent = False


def _last_attempt():
    return func.coalesce(PlatformBilling.last_payment_retry_date, PlatformBilling.first_payment_failure_date)


def _past_due_filters():
    return (
        PlatformBilling.subscription_status == SubscriptionStatus.PAST_DUE,
        PlatformBilling.first_payment_failure_date.isnot(None),
        PlatformBilling.default_payment_method_id.isnot(None),
        Organisation.status == OrgStatus.ACTIVE,
    )


class PaymentRetryService:
    """Service layer for the scheduled payment retry job"""

    @staticmethod
    async def find_due_retries(db: AsyncSession, today: date) -> List[RetryCandidate]:
        """Past-due ACTIVE organisations whose last attempt is at least the retry interval old."""
        result = await db.execute(
            select(PlatformBilling, Organisation.name)
            .join(Organisation, Organisation.id == PlatformBilling.org_id)
            .where(*_past_due_filters(), _last_attempt() < retry_cutoff(today))
            .order_by(Organisation.name)
        )
        return [
            RetryCandidate(
                billing_id=billing.id,
                org_id=billing.org_id,
                org_name=org_name,
                retry_count=billing.payment_retry_count or 0,
                days_since_first_failure=days_since(billing.first_payment_failure_date, today),
                days_since_last_retry=days_since(
                    billing.last_payment_retry_date or billing.first_payment_failure_date, today
                ),
            )
            for billing, org_name in result.all()
        ]

    @staticmethod
    async def count_past_due(db: AsyncSession) -> int:
        count = await db.scalar(
            select(func.count(PlatformBilling.id))
            .join(Organisation, Organisation.id == PlatformBilling.org_id)
            .where(*_past_due_filters())
        )
        return count or 0

    @staticmethod
    async def lock_billing(db: AsyncSession, billing_id: UUID, today: date) -> Optional[PlatformBilling]:
        """Claim a billing row; rows held by an overlapping run or retried recently come back as None."""
        result = await db.execute(
            select(PlatformBilling)
            .where(
                PlatformBilling.id == billing_id,
                PlatformBilling.subscription_status == SubscriptionStatus.PAST_DUE,
                _last_attempt() < retry_cutoff(today),
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def preview(db: AsyncSession, today: Optional[date] = None) -> RetryPreview:
        today = today or get_utc_today()
        return RetryPreview(
            run_date=today,
            total_past_due=await PaymentRetryService.count_past_due(db),
            ready_for_retry=await PaymentRetryService.find_due_retries(db, today),
        )

    @staticmethod
    async def run(
        db: AsyncSession,
        processor: ChargeProcessor,
        today: Optional[date] = None,
        notify: bool = True,
    ) -> RetryRunReport:
        """
        Retry every organisation that is due. Each one is isolated; an error
        is reported in its result and the batch continues.
        """
        today = today or get_utc_today()
        now = get_utc_now()

        candidates = await PaymentRetryService.find_due_retries(db, today)
        logger.info("Payment retry run started: %s organisations due", len(candidates), extra={"job": JOB_NAME})

        results: List[RetryRunResult] = []
        for candidate in candidates:
            result = await PaymentRetryService.retry_organisation(db, processor, candidate, today, now, notify)
            if result is not None:
                results.append(result)

        retried = [r for r in results if r.status != RetryRunStatus.SKIPPED]
        report = RetryRunReport(
            run_date=today,
            checked=len(candidates),
            retried=len(retried),
            succeeded=sum(1 for r in results if r.status == RetryRunStatus.SUCCEEDED),
            failed=sum(1 for r in results if r.status == RetryRunStatus.FAILED),
            results=results,
        )
        logger.info(
            "Payment retry run finished: %s retried, %s succeeded, %s failed",
            report.retried,
            report.succeeded,
            report.failed,
            extra={"job": JOB_NAME},
        )
        return report

    @staticmethod
    async def retry_organisation(
        db: AsyncSession,
        processor: ChargeProcessor,
        candidate: RetryCandidate,
        today: date,
        now: datetime,
        notify: bool = True,
    ) -> Optional[RetryRunResult]:
        """
        Retry one organisation's overdue invoice. Returns None when another
        run claimed the row first.
        """
        retry_count = candidate.retry_count
        warning = None
        try:
            billing = await PaymentRetryService.lock_billing(db, candidate.billing_id, today)
            if billing is None:
                return None
            retry_count = billing.payment_retry_count or 0

            declined: Optional[str] = None
            try:
                attempt = await processor.retry_invoice_payment(billing)
            except ChargeProcessorError as e:
                if not e.payment_method_failure:
                    raise
                attempt, declined = None, str(e)

            if attempt is None and declined is None:
                await db.rollback()
                logger.info("No open invoice to retry", extra={"org_id": candidate.org_id, "job": JOB_NAME})
                return RetryRunResult(
                    org_id=candidate.org_id,
                    org_name=candidate.org_name,
                    status=RetryRunStatus.SKIPPED,
                    retry_count=retry_count,
                )

            if attempt is not None and attempt.paid:
                clear_retry_state(billing)
                billing.subscription_status = SubscriptionStatus.ACTIVE
                billing.last_billed_at = now
                await db.commit()
                await PaymentRetryService._report_payment_success(db, candidate, attempt.amount_due_p, now)
                logger.info("Payment retry succeeded", extra={"org_id": candidate.org_id, "job": JOB_NAME})
                return RetryRunResult(
                    org_id=candidate.org_id,
                    org_name=candidate.org_name,
                    status=RetryRunStatus.SUCCEEDED,
                    retry_count=retry_count + 1,
                )

            reason = declined or "Payment could not be processed"
            amount_p = attempt.amount_due_p if attempt is not None else 0
            retry_count += 1
            billing.payment_retry_count = retry_count
            billing.last_payment_retry_date = now
            if retry_count >= settings.PAYMENT_RETRY_WARNING_AT and not billing.warning_email_sent:
                billing.warning_email_sent = True
                users = await OrgStatusService.get_affected_users(db, candidate.org_id)
                warning = (affected_user_details(users), amount_p, reason)

            AuditService.record(
                db,
                AuditAction.PLATFORM_BILLING_RETRY,
                org_id=candidate.org_id,
                entity_type="PLATFORM_BILLING",
                entity_id=billing.id,
                details={
                    "retry_count": retry_count,
                    "days_since_first_failure": days_since(billing.first_payment_failure_date, today),
                    "status": RetryRunStatus.FAILED.value,
                    "failure_reason": reason,
                },
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception(
                "Payment retry failed for organisation %s: %s",
                candidate.org_name,
                e,
                extra={"org_id": candidate.org_id, "job": JOB_NAME},
            )
            return RetryRunResult(
                org_id=candidate.org_id,
                org_name=candidate.org_name,
                status=RetryRunStatus.ERROR,
                retry_count=retry_count,
                error=str(e),
            )

        logger.info(
            "Payment retry %s failed: %s",
            retry_count,
            reason,
            extra={"org_id": candidate.org_id, "job": JOB_NAME},
        )
        if warning and notify:
            users, amount_p, reason = warning
            await asyncio.to_thread(
                notification_service.notify_retry_warning,
                candidate.org_name,
                users,
                retry_count,
                amount_p,
                reason,
            )
        return RetryRunResult(
            org_id=candidate.org_id,
            org_name=candidate.org_name,
            status=RetryRunStatus.FAILED,
            retry_count=retry_count,
        )

    @staticmethod
    async def _report_payment_success(db: AsyncSession, candidate: RetryCandidate, amount_p: int, now: datetime) -> None:
        try:
            await OrgStatusService.handle_payment_success(
                db,
                PaymentSuccessEvent(org_id=candidate.org_id, amount_p=amount_p, occurred_at=now),
            )
        except Exception as e:
            await db.rollback()
            logger.exception(
                "Could not record payment success: %s", e, extra={"org_id": candidate.org_id, "job": JOB_NAME}
            )

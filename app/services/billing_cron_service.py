"""
Daily platform billing run.

The day before each organisation's billing anniversary, count its billable
units and push that quantity to its platform subscription, creating the
subscription if it is missing. Each organisation is billed independently;
one failure never stops the batch, and nothing is retried within a run.
"""

import asyncio
import calendar
from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import UUID
from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.logging import get_logger
from app.models.organisation import Organisation
from app.models.billing import PlatformBilling, PlatformPayment
from app.models.enums import (
    OrgStatus,
    SubscriptionStatus,
    BillingRunStatus,
    PlatformPaymentStatus,
)
from app.schemas.billing import BillingRunResult, BillingRunReport, BillingPreview, DueBilling
from app.schemas.organisation import PaymentFailureEvent, PaymentSuccessEvent
from app.services import notification_service
from app.services.charge_processor import ChargeProcessor, ChargeProcessorError
from app.services.org_status_service import OrgStatusService
from app.utils.time import get_utc_now, get_utc_today, start_of_day

logger = get_logger(__name__)

BILLABLE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
JOB_NAME = "billing_cron"


def anniversary_days_for(billing_date: date) -> List[int]:
    """
    Anniversary days that fall due on `billing_date`.

    Anniversaries are clamped to the month length, so on the last day of a
    short month every later anniversary (e.g. 29-31 on 28 February) is due too.
    """
    last_day = calendar.monthrange(billing_date.year, billing_date.month)[1]
    if billing_date.day == last_day:
        return list(range(billing_date.day, 32))
    return [billing_date.day]


def not_processed_today(today: date):
    """Neither billed nor attempted since the start of `today`."""
    cutoff = start_of_day(today)
    return and_(
        or_(PlatformBilling.last_billed_at.is_(None), PlatformBilling.last_billed_at < cutoff),
        or_(PlatformBilling.last_attempted_at.is_(None), PlatformBilling.last_attempted_at < cutoff),
    )


def expected_charge(unit_count: int) -> int:
    """Monthly charge in minor currency units for `unit_count` billable units."""
    return unit_count * settings.PRICE_PER_UNIT_P


class BillingCronService:
    """Service layer for the scheduled platform billing job"""

    @staticmethod
    async def find_due_billings(db: AsyncSession, billing_date: date, today: date) -> List[DueBilling]:
        """
        Billable organisations whose anniversary falls on `billing_date` and
        that have not already been billed or attempted today. Only ACTIVE organisations
        qualify; paused or deactivated tenants wait for manual reactivation.
        """
        stmt = (
            select(PlatformBilling, Organisation.name)
            .join(Organisation, Organisation.id == PlatformBilling.org_id)
            .where(
                PlatformBilling.billing_anniversary_date.in_(anniversary_days_for(billing_date)),
                PlatformBilling.subscription_status.in_(BILLABLE_SUBSCRIPTION_STATUSES),
                PlatformBilling.default_payment_method_id.isnot(None),
                Organisation.status == OrgStatus.ACTIVE,
                not_processed_today(today),
            )
            .order_by(Organisation.name)
        )
        result = await db.execute(stmt)
        return [
            DueBilling(
                billing_id=billing.id,
                org_id=billing.org_id,
                org_name=org_name,
                billing_anniversary_date=billing.billing_anniversary_date,
                subscription_status=billing.subscription_status,
                has_subscription=bool(billing.stripe_subscription_id),
            )
            for billing, org_name in result.all()
        ]

    @staticmethod
    async def lock_billing(db: AsyncSession, billing_id: UUID, today: date) -> Optional[PlatformBilling]:
        """
        Claim a billing row for this run. Rows locked by an overlapping run,
        or already billed or attempted today, come back as None.
        """
        result = await db.execute(
            select(PlatformBilling)
            .where(
                PlatformBilling.id == billing_id,
                not_processed_today(today),
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def preview(db: AsyncSession, today: Optional[date] = None) -> BillingPreview:
        today = today or get_utc_today()
        billing_date = today + timedelta(days=1)
        due = await BillingCronService.find_due_billings(db, billing_date, today)
        return BillingPreview(
            billing_date=billing_date,
            anniversary_days=anniversary_days_for(billing_date),
            organisations=due,
        )

    @staticmethod
    async def run(
        db: AsyncSession,
        processor: ChargeProcessor,
        today: Optional[date] = None,
        notify: bool = True,
    ) -> BillingRunReport:
        """
        Bill every organisation due tomorrow.

        Args:
            db: Database session
            processor: Payment processor used for subscription changes
            today: Run date, defaults to the current UTC date
            notify: Email organisation admins about payment-method failures

        Returns:
            Aggregate report with one result per organisation processed
        """
        today = today or get_utc_today()
        billing_date = today + timedelta(days=1)
        now = get_utc_now()

        due_billings = await BillingCronService.find_due_billings(db, billing_date, today)
        logger.info(
            "Billing run started: %s organisations due on %s",
            len(due_billings),
            billing_date.isoformat(),
            extra={"job": JOB_NAME},
        )

        results: List[BillingRunResult] = []
        for due in due_billings:
            result = await BillingCronService.bill_organisation(db, processor, due, today, now, notify)
            if result is not None:
                results.append(result)

        failed = sum(1 for r in results if r.status == BillingRunStatus.ERROR)
        report = BillingRunReport(
            run_date=today,
            billing_date=billing_date,
            anniversary_days=anniversary_days_for(billing_date),
            processed=len(results),
            succeeded=len(results) - failed,
            failed=failed,
            results=results,
        )
        logger.info(
            "Billing run finished: %s processed, %s failed",
            report.processed,
            report.failed,
            extra={"job": JOB_NAME},
        )
        return report

    @staticmethod
    async def bill_organisation(
        db: AsyncSession,
        processor: ChargeProcessor,
        due: DueBilling,
        today: date,
        now: datetime,
        notify: bool = True,
    ) -> Optional[BillingRunResult]:
        """
        Bill one organisation. Returns None when the row was claimed by
        another run in the meantime; every other outcome, including
        errors, is returned as a result.
        """
        billing: Optional[PlatformBilling] = None
        unit_count: Optional[int] = None
        charge: Optional[int] = None
        try:
            billing = await BillingCronService.lock_billing(db, due.billing_id, today)
            if billing is None:
                logger.info("Billing row already claimed, skipping", extra={"org_id": due.org_id, "job": JOB_NAME})
                return None

            unit_count = await processor.count_active_billable_units(due.org_id)
            charge = expected_charge(unit_count)

            if billing.stripe_subscription_id:
                subscription = await processor.update_subscription_quantity(billing, unit_count)
                run_status = BillingRunStatus.UPDATED
            else:
                subscription = await processor.create_subscription(billing, unit_count)
                run_status = BillingRunStatus.CREATED

            billing.stripe_subscription_id = subscription.subscription_id
            if subscription.subscription_item_id:
                billing.stripe_subscription_item_id = subscription.subscription_item_id
            billing.subscription_status = subscription.status
            billing.last_billed_at = now
            billing.last_billed_unit_count = unit_count
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception(
                "Billing failed for organisation %s: %s",
                due.org_name,
                e,
                extra={"org_id": due.org_id, "job": JOB_NAME},
            )
            marked = billing is not None and await BillingCronService.mark_attempted(db, due, now)
            if marked and isinstance(e, ChargeProcessorError) and e.payment_method_failure:
                await BillingCronService._report_payment_failure(db, due, charge or 0, str(e), now, notify)
            return BillingRunResult(
                org_id=due.org_id,
                org_name=due.org_name,
                unit_count=unit_count,
                status=BillingRunStatus.ERROR,
                expected_charge_p=charge,
                error=str(e),
            )

        await BillingCronService._report_payment_success(db, due, charge, now)
        logger.info(
            "Subscription %s with %s units",
            run_status.value,
            unit_count,
            extra={"org_id": due.org_id, "job": JOB_NAME},
        )
        return BillingRunResult(
            org_id=due.org_id,
            org_name=due.org_name,
            unit_count=unit_count,
            status=run_status,
            expected_charge_p=charge,
        )

    @staticmethod
    async def mark_attempted(db: AsyncSession, due: DueBilling, now: datetime) -> bool:
        """
        Stamp a failed attempt in its own transaction so later runs today skip
        the organisation. Failures are only reported once the stamp is stored.
        """
        try:
            await db.execute(
                update(PlatformBilling)
                .where(PlatformBilling.id == due.billing_id)
                .values(last_attempted_at=now)
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception(
                "Could not record billing attempt: %s", e, extra={"org_id": due.org_id, "job": JOB_NAME}
            )
            return False
        return True

    @staticmethod
    async def _report_payment_failure(
        db: AsyncSession,
        due: DueBilling,
        amount_p: int,
        reason: str,
        now: datetime,
        notify: bool,
    ) -> None:
        """Record the failed charge and hand it to the status manager. Errors here are logged, not raised."""
        try:
            db.add(PlatformPayment(
                org_id=due.org_id,
                amount_p=amount_p,
                status=PlatformPaymentStatus.FAILED,
                failure_reason=reason,
            ))
            outcome = await OrgStatusService.handle_payment_failure(
                db,
                PaymentFailureEvent(org_id=due.org_id, failure_reason=reason, amount_p=amount_p, occurred_at=now),
            )
        except Exception as e:
            await db.rollback()
            logger.exception(
                "Could not record payment failure: %s", e, extra={"org_id": due.org_id, "job": JOB_NAME}
            )
            return

        if notify:
            await asyncio.to_thread(notification_service.notify_payment_failure, due.org_name, outcome)

    @staticmethod
    async def _report_payment_success(db: AsyncSession, due: DueBilling, amount_p: int, now: datetime) -> None:
        try:
            await OrgStatusService.handle_payment_success(
                db,
                PaymentSuccessEvent(org_id=due.org_id, amount_p=amount_p, occurred_at=now),
            )
        except Exception as e:
            await db.rollback()
            logger.exception(
                "Could not record payment success: %s", e, extra={"org_id": due.org_id, "job": JOB_NAME}
            )

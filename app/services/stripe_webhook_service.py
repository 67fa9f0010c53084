"""
Stripe webhook events for platform subscriptions.

Invoice outcomes are recorded as PlatformPayment rows and forwarded to the
organisation status manager; subscription changes are mirrored onto the
billing row.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.billing import PlatformBilling, PlatformPayment
from app.models.enums import PlatformPaymentStatus, SubscriptionStatus
from app.schemas.organisation import PaymentFailureEvent, PaymentSuccessEvent, PaymentFailureOutcome
from app.services.charge_processor import map_subscription_status
from app.services.org_status_service import OrgStatusService
from app.services.payment_retry_service import clear_retry_state
from app.utils.time import get_utc_now

logger = get_logger(__name__)

INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

HANDLED_EVENTS = (
    INVOICE_PAYMENT_FAILED,
    INVOICE_PAYMENT_SUCCEEDED,
    SUBSCRIPTION_UPDATED,
    SUBSCRIPTION_DELETED,
)
INVOICE_EVENTS = (INVOICE_PAYMENT_FAILED, INVOICE_PAYMENT_SUCCEEDED)


@dataclass
class WebhookResult:
    event_type: str
    handled: bool
    duplicate: bool = False
    org_name: Optional[str] = None
    failure_outcome: Optional[PaymentFailureOutcome] = None


def _failure_reason(invoice: Mapping[str, Any]) -> str:
    error = invoice.get("last_finalization_error") or {}
    message = error.get("message") if isinstance(error, Mapping) else None
    return message or "Invoice payment failed"


class StripeWebhookService:
    """Applies verified Stripe events to local billing state"""

    @staticmethod
    async def get_billing_by_customer(db: AsyncSession, customer_id: Optional[str]) -> Optional[PlatformBilling]:
        if not customer_id:
            return None
        result = await db.execute(
            select(PlatformBilling).where(PlatformBilling.stripe_customer_id == customer_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def is_duplicate_event(db: AsyncSession, event_id: Optional[str]) -> bool:
        """Stripe delivers at least once; invoice events are recorded against their event id."""
        if not event_id:
            return False
        result = await db.execute(
            select(PlatformPayment.id).where(PlatformPayment.stripe_event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def handle_event(db: AsyncSession, event: Mapping[str, Any]) -> WebhookResult:
        """
        Dispatch one event. Events for unknown customers, event types we do
        not track and redelivered invoice events are acknowledged without
        changes.
        """
        event_type = event["type"]
        if event_type not in HANDLED_EVENTS:
            return WebhookResult(event_type=event_type, handled=False)

        obj = event["data"]["object"]
        billing = await StripeWebhookService.get_billing_by_customer(db, obj.get("customer"))
        if not billing:
            logger.warning("Stripe event %s for unknown customer %s", event_type, obj.get("customer"))
            return WebhookResult(event_type=event_type, handled=False)

        if event_type in INVOICE_EVENTS:
            event_id = event.get("id")
            if await StripeWebhookService.is_duplicate_event(db, event_id):
                logger.info("Stripe event %s already processed", event_id, extra={"org_id": billing.org_id})
                return WebhookResult(event_type=event_type, handled=False, duplicate=True)
            try:
                if event_type == INVOICE_PAYMENT_FAILED:
                    return await StripeWebhookService._invoice_failed(db, billing, obj, event_id)
                return await StripeWebhookService._invoice_succeeded(db, billing, obj, event_id)
            except IntegrityError:
                # A concurrent delivery of the same event committed first
                await db.rollback()
                logger.info("Stripe event %s already processed", event_id, extra={"org_id": billing.org_id})
                return WebhookResult(event_type=event_type, handled=False, duplicate=True)

        if event_type == SUBSCRIPTION_DELETED:
            billing.subscription_status = SubscriptionStatus.CANCELED
        else:
            billing.subscription_status = map_subscription_status(obj.get("status"))
        await db.commit()
        logger.info(
            "Subscription status mirrored: %s",
            SubscriptionStatus(billing.subscription_status).value,
            extra={"org_id": billing.org_id},
        )
        return WebhookResult(event_type=event_type, handled=True)

    @staticmethod
    async def _invoice_failed(
        db: AsyncSession,
        billing: PlatformBilling,
        invoice: Mapping[str, Any],
        event_id: Optional[str],
    ) -> WebhookResult:
        reason = _failure_reason(invoice)
        amount_p = invoice.get("amount_due") or 0
        now = get_utc_now()
        # Starts the retry clock; later failures leave it where it is
        billing.subscription_status = SubscriptionStatus.PAST_DUE
        if billing.first_payment_failure_date is None:
            billing.first_payment_failure_date = now
        db.add(PlatformPayment(
            org_id=billing.org_id,
            amount_p=amount_p,
            status=PlatformPaymentStatus.FAILED,
            failure_reason=reason,
            stripe_invoice_id=invoice.get("id"),
            stripe_event_id=event_id,
        ))
        outcome = await OrgStatusService.handle_payment_failure(
            db,
            PaymentFailureEvent(
                org_id=billing.org_id,
                failure_reason=reason,
                amount_p=amount_p,
                occurred_at=now,
            ),
        )
        org = await OrgStatusService.get_org(db, billing.org_id)
        return WebhookResult(
            event_type=INVOICE_PAYMENT_FAILED,
            handled=True,
            org_name=org.name if org else None,
            failure_outcome=outcome,
        )

    @staticmethod
    async def _invoice_succeeded(
        db: AsyncSession,
        billing: PlatformBilling,
        invoice: Mapping[str, Any],
        event_id: Optional[str],
    ) -> WebhookResult:
        amount_p = invoice.get("amount_paid") or 0
        clear_retry_state(billing)
        db.add(PlatformPayment(
            org_id=billing.org_id,
            amount_p=amount_p,
            status=PlatformPaymentStatus.SUCCEEDED,
            stripe_invoice_id=invoice.get("id"),
            stripe_event_id=event_id,
        ))
        await OrgStatusService.handle_payment_success(
            db,
            PaymentSuccessEvent(org_id=billing.org_id, amount_p=amount_p, occurred_at=get_utc_now()),
        )
        return WebhookResult(event_type=INVOICE_PAYMENT_SUCCEEDED, handled=True)

"""
Payment processor integration for platform subscriptions.

The billing cron talks to the processor through the ChargeProcessor
protocol; StripeChargeProcessor is the production implementation. Every
Stripe call is bounded by STRIPE_TIMEOUT_SECONDS and surfaces failures as
ChargeProcessorError so callers can isolate them per organisation.
"""

import asyncio
from datetime import timezone
from typing import Any, Awaitable, Optional, Protocol
from uuid import UUID

import stripe
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.logging import get_logger
from app.models.academic import Student
from app.models.billing import PlatformBilling
from app.models.enums import SubscriptionStatus
from app.schemas.billing import SubscriptionResult, InvoiceRetryResult
from app.utils.time import get_utc_now

logger = get_logger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


class ChargeProcessorError(Exception):
    """
    A processor call failed.

    `payment_method_failure` is True when the organisation's card or payment
    method caused it (declined, expired...), as opposed to network, timeout
    or configuration problems.
    """

    def __init__(self, message: str, payment_method_failure: bool = False):
        super().__init__(message)
        self.payment_method_failure = payment_method_failure


class ChargeProcessor(Protocol):
    async def update_subscription_quantity(self, billing: PlatformBilling, unit_count: int) -> SubscriptionResult:
        ...

    async def create_subscription(self, billing: PlatformBilling, unit_count: int) -> SubscriptionResult:
        ...

    async def count_active_billable_units(self, org_id: UUID) -> int:
        ...

    async def retry_invoice_payment(self, billing: PlatformBilling) -> Optional[InvoiceRetryResult]:
        ...


def map_subscription_status(value: Optional[str]) -> SubscriptionStatus:
    """Map Stripe's wider status vocabulary onto the one we store."""
    try:
        return SubscriptionStatus(value)
    except ValueError:
        if value in ("unpaid", "incomplete"):
            return SubscriptionStatus.PAST_DUE
        if value == "incomplete_expired":
            return SubscriptionStatus.CANCELED
        return SubscriptionStatus.ACTIVE


class StripeChargeProcessor:
    """Stripe-backed ChargeProcessor; unit counts come from the local database."""

    def __init__(self, db: AsyncSession, timeout: Optional[float] = None):
        self.db = db
        self.timeout = timeout if timeout is not None else settings.STRIPE_TIMEOUT_SECONDS

    @staticmethod
    def _ensure_configured() -> None:
        if not settings.STRIPE_SECRET_KEY:
            raise ChargeProcessorError("Stripe is not configured (STRIPE_SECRET_KEY missing)")

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ChargeProcessorError(f"Stripe {operation} timed out after {self.timeout}s")
        except stripe.CardError as e:
            raise ChargeProcessorError(
                f"Card error during {operation}: {e.user_message or e}",
                payment_method_failure=True,
            ) from e
        except stripe.StripeError as e:
            raise ChargeProcessorError(f"Stripe {operation} failed: {e.user_message or e}") from e

    async def update_subscription_quantity(self, billing: PlatformBilling, unit_count: int) -> SubscriptionResult:
        self._ensure_configured()
        if not billing.stripe_subscription_id:
            raise ChargeProcessorError("Subscription not found")

        item_id = billing.stripe_subscription_item_id
        if not item_id:
            subscription = await self._call(
                "subscription lookup",
                stripe.Subscription.retrieve_async(billing.stripe_subscription_id),
            )
            items = subscription["items"]["data"]
            if not items:
                raise ChargeProcessorError("Subscription has no items")
            item_id = items[0]["id"]

        await self._call(
            "quantity update",
            stripe.SubscriptionItem.modify_async(
                item_id,
                quantity=unit_count,
                proration_behavior="none",
            ),
        )
        subscription = await self._call(
            "subscription lookup",
            stripe.Subscription.retrieve_async(billing.stripe_subscription_id),
        )
        return SubscriptionResult(
            subscription_id=billing.stripe_subscription_id,
            subscription_item_id=item_id,
            status=map_subscription_status(subscription.get("status")),
        )

    async def create_subscription(self, billing: PlatformBilling, unit_count: int) -> SubscriptionResult:
        self._ensure_configured()
        if not billing.stripe_customer_id:
            raise ChargeProcessorError("Stripe customer not found")
        if not billing.default_payment_method_id:
            raise ChargeProcessorError("Payment method not set", payment_method_failure=True)

        params = {
            "customer": billing.stripe_customer_id,
            "items": [{"price": settings.STRIPE_PRICE_ID, "quantity": unit_count}],
            "default_payment_method": billing.default_payment_method_id,
            "metadata": {"org_id": str(billing.org_id), "type": "platform"},
        }
        if billing.trial_end_date and billing.trial_end_date > get_utc_now():
            params["trial_end"] = int(billing.trial_end_date.replace(tzinfo=timezone.utc).timestamp())

        subscription = await self._call(
            "subscription create",
            stripe.Subscription.create_async(
                **params,
                idempotency_key=f"platform-sub-{billing.org_id}-{get_utc_now():%Y-%m-%d}",
            ),
        )
        items = subscription["items"]["data"]
        return SubscriptionResult(
            subscription_id=subscription["id"],
            subscription_item_id=items[0]["id"] if items else None,
            status=map_subscription_status(subscription.get("status")),
        )

    async def retry_invoice_payment(self, billing: PlatformBilling) -> Optional[InvoiceRetryResult]:
        """
        Pay the customer's open invoice again with the default payment method.
        Without an open invoice, one is raised against the subscription. Returns
        None when there is neither; a declined card raises ChargeProcessorError.
        """
        self._ensure_configured()
        if not billing.stripe_customer_id:
            raise ChargeProcessorError("Stripe customer not found")
        if not billing.default_payment_method_id:
            raise ChargeProcessorError("Payment method not set", payment_method_failure=True)

        invoices = await self._call(
            "invoice lookup",
            stripe.Invoice.list_async(customer=billing.stripe_customer_id, status="open", limit=1),
        )
        if invoices["data"]:
            invoice_id = invoices["data"][0]["id"]
        elif billing.stripe_subscription_id:
            invoice = await self._call(
                "invoice create",
                stripe.Invoice.create_async(
                    customer=billing.stripe_customer_id,
                    subscription=billing.stripe_subscription_id,
                    auto_advance=False,
                ),
            )
            invoice_id = invoice["id"]
            await self._call("invoice finalize", stripe.Invoice.finalize_invoice_async(invoice_id))
        else:
            return None

        paid = await self._call(
            "invoice payment",
            stripe.Invoice.pay_async(invoice_id, payment_method=billing.default_payment_method_id),
        )
        return InvoiceRetryResult(
            invoice_id=invoice_id,
            amount_due_p=paid.get("amount_due") or 0,
            paid=paid.get("status") == "paid",
        )

    async def count_active_billable_units(self, org_id: UUID) -> int:
        """Un-archived students are the billable units."""
        count = await self.db.scalar(
            select(func.count(Student.id)).where(
                Student.org_id == org_id,
                Student.is_archived == False,
            )
        )
        return count or 0

import asyncio
from typing import Any
import stripe
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.config import settings
from app.core.logging import get_logger
from app.services.notification_service import notify_payment_failure
from app.services.stripe_webhook_service import StripeWebhookService
from app.schemas.responses import SuccessResponse

logger = get_logger(__name__)

router = APIRouter()


@router.post("/stripe", response_model=SuccessResponse)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """
    Stripe events for platform subscriptions. The signature is checked
    against STRIPE_WEBHOOK_SECRET before anything is read.
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Webhook secret not configured")

    payload = await request.body()
    try:
        event = await asyncio.to_thread(
            stripe.Webhook.construct_event,
            payload,
            request.headers.get("stripe-signature"),
            settings.STRIPE_WEBHOOK_SECRET,
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    logger.info("Stripe webhook event received: %s", event["type"])
    result = await StripeWebhookService.handle_event(db, event)

    if result.failure_outcome is not None:
        background_tasks.add_task(
            notify_payment_failure,
            result.org_name or "your organisation",
            result.failure_outcome,
        )

    return SuccessResponse(data={"type": result.event_type, "handled": result.handled})

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.services.billing_cron_service import BillingCronService
from app.services.payment_retry_service import PaymentRetryService
from app.services.charge_processor import ChargeProcessor
from app.schemas.billing import BillingRunReport, BillingPreview, RetryRunReport, RetryPreview
from app.schemas.responses import SuccessResponse

router = APIRouter()


@router.post("/billing", response_model=SuccessResponse[BillingRunReport])
async def run_billing(
    _: None = Depends(deps.require_cron_secret),
    db: AsyncSession = Depends(deps.get_db),
    processor: ChargeProcessor = Depends(deps.get_charge_processor),
) -> Any:
    """
    Daily billing run. Bills every organisation whose anniversary is
    tomorrow; safe to call more than once a day.
    """
    report = await BillingCronService.run(db, processor)
    return SuccessResponse(
        data=report,
        message=f"Processed {report.processed} organisations ({report.failed} failed)",
    )


@router.get("/billing", response_model=SuccessResponse[BillingPreview])
async def preview_billing(
    _: None = Depends(deps.require_cron_secret),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """
    Organisations that the next run would bill, without touching Stripe.
    """
    preview = await BillingCronService.preview(db)
    return SuccessResponse(data=preview)


@router.post("/retry-payments", response_model=SuccessResponse[RetryRunReport])
async def retry_payments(
    _: None = Depends(deps.require_cron_secret),
    db: AsyncSession = Depends(deps.get_db),
    processor: ChargeProcessor = Depends(deps.get_charge_processor),
) -> Any:
    """
    Daily dunning run. Pays the open invoice of every past-due organisation
    whose last attempt is at least the retry interval old.
    """
    report = await PaymentRetryService.run(db, processor)
    return SuccessResponse(
        data=report,
        message=f"Retried {report.retried} organisations ({report.succeeded} succeeded, {report.failed} failed)",
    )


@router.get("/retry-payments", response_model=SuccessResponse[RetryPreview])
async def preview_retries(
    _: None = Depends(deps.require_cron_secret),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    preview = await PaymentRetryService.preview(db)
    return SuccessResponse(
        data=preview,
        message=f"Found {len(preview.ready_for_retry)} organisations ready for payment retry",
    )

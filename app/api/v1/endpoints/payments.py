import math
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.models.enums import PaymentStatus
from app.services.organisation_service import OrganisationService
from app.services.payment_record_service import PaymentRecordService
from app.schemas.billing import PaymentRecordResponse, RecordPaymentRequest
from app.schemas.responses import SuccessResponse, PaginatedResponse

router = APIRouter(dependencies=[Depends(deps.require_platform_admin)])


@router.get("/{org_id}/payments", response_model=PaginatedResponse[PaymentRecordResponse])
async def list_payments(
    org_id: UUID,
    month: Optional[str] = Query(None, description="Fee month, YYYY-MM"),
    status: Optional[PaymentStatus] = Query(None, description="Filter on the derived status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """
    Monthly payment records with their current status
    (PENDING, LATE or OVERDUE is worked out from today's date).
    """
    org = await OrganisationService.get_org_by_id(db, org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organisation not found")

    try:
        records, total = await PaymentRecordService.list_records(
            db, org, month=month, status=status, page=page, page_size=page_size
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PaginatedResponse(
        data=records,
        meta={
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size) if total else 0,
        }
    )


@router.post(
    "/{org_id}/payments/{record_id}/record-paid",
    response_model=SuccessResponse[PaymentRecordResponse],
)
async def record_manual_payment(
    org_id: UUID,
    record_id: UUID,
    payment_in: RecordPaymentRequest,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """
    Record a fee paid outside the card flow (cash, bank transfer...).
    """
    org = await OrganisationService.get_org_by_id(db, org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organisation not found")

    record = await PaymentRecordService.record_manual_payment(db, org, record_id, payment_in)
    if not record:
        raise HTTPException(status_code=404, detail="Payment record not found")

    return SuccessResponse(data=record, message="Payment recorded")

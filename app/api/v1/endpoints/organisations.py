from typing import Any, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.services.organisation_service import OrganisationService, InvalidBillingDay
from app.services.org_status_service import (
    OrgStatusService,
    OrganisationNotFoundError,
    InvalidStatusTransition,
)
from app.schemas.organisation import (
    OrgStatusResponse,
    BillingDayUpdate,
    BillingDayResponse,
    AdminStatusChange,
    AutoDeactivateCheck,
)
from app.schemas.responses import SuccessResponse

router = APIRouter(dependencies=[Depends(deps.require_platform_admin)])


@router.get("/{org_id}/status", response_model=SuccessResponse[OrgStatusResponse])
async def get_org_status(
    org_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    org = await OrganisationService.get_org_by_id(db, org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organisation not found")
    return SuccessResponse(data=OrganisationService.to_status_response(org))


@router.put("/{org_id}/billing-day", response_model=SuccessResponse[BillingDayResponse])
async def update_billing_day(
    org_id: UUID,
    body: BillingDayUpdate,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """
    Change the day of the month fees fall due (1-28).
    Billing day and fee due day always move together.
    """
    try:
        org = await OrganisationService.update_billing_day(db, org_id, body.billing_day, actor="platform_admin")
    except InvalidBillingDay as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not org:
        raise HTTPException(status_code=404, detail="Organisation not found")

    return SuccessResponse(
        data=BillingDayResponse(billing_day=org.billing_day, fee_due_day=org.fee_due_day),
        message="Billing day updated",
    )


@router.get("/{org_id}/auto-deactivate-check", response_model=SuccessResponse[AutoDeactivateCheck])
async def auto_deactivate_check(
    org_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """
    Whether the organisation failed 3 or more platform payments in the
    last 30 days. Informational only; nothing is changed.
    """
    check = await OrgStatusService.check_auto_deactivate_conditions(db, org_id)
    return SuccessResponse(data=check)


async def _change_status(action, db: AsyncSession, org_id: UUID, **kwargs) -> OrgStatusResponse:
    try:
        org = await action(db, org_id, **kwargs)
    except OrganisationNotFoundError:
        raise HTTPException(status_code=404, detail="Organisation not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return OrganisationService.to_status_response(org)


@router.post("/{org_id}/pause", response_model=SuccessResponse[OrgStatusResponse])
async def pause_organisation(
    org_id: UUID,
    body: Optional[AdminStatusChange] = Body(None),
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    body = body or AdminStatusChange()
    data = await _change_status(OrgStatusService.pause, db, org_id, reason=body.reason, actor=body.actor)
    return SuccessResponse(data=data, message="Organisation paused")


@router.post("/{org_id}/deactivate", response_model=SuccessResponse[OrgStatusResponse])
async def deactivate_organisation(
    org_id: UUID,
    body: Optional[AdminStatusChange] = Body(None),
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    body = body or AdminStatusChange()
    data = await _change_status(OrgStatusService.deactivate, db, org_id, reason=body.reason, actor=body.actor)
    return SuccessResponse(data=data, message="Organisation deactivated")


@router.post("/{org_id}/reactivate", response_model=SuccessResponse[OrgStatusResponse])
async def reactivate_organisation(
    org_id: UUID,
    body: Optional[AdminStatusChange] = Body(None),
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """
    Bring a paused or deactivated organisation back to ACTIVE and reset
    its payment failure count. Payments never do this on their own.
    """
    body = body or AdminStatusChange()
    data = await _change_status(OrgStatusService.reactivate, db, org_id, actor=body.actor)
    return SuccessResponse(data=data, message="Organisation reactivated")

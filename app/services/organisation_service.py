from typing import Any, Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.organisation import Organisation
from app.models.enums import AuditAction
from app.schemas.organisation import OrgStatusResponse
from app.services.audit_service import AuditService
from app.services.billing_anchor import prepare_billing_day_update, resolve_billing_day


class InvalidBillingDay(ValueError):
    """Billing day outside 1-28 or not a whole number."""


class OrganisationService:
    """Service layer for organisation settings"""

    @staticmethod
    async def get_org_by_id(db: AsyncSession, org_id: UUID) -> Optional[Organisation]:
        result = await db.execute(
            select(Organisation).where(Organisation.id == org_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def to_status_response(org: Organisation) -> OrgStatusResponse:
        billing_day = resolve_billing_day(org)
        return OrgStatusResponse(
            id=org.id,
            name=org.name,
            status=org.status,
            payment_failure_count=org.payment_failure_count or 0,
            last_payment_date=org.last_payment_date,
            paused_at=org.paused_at,
            paused_reason=org.paused_reason,
            deactivated_at=org.deactivated_at,
            deactivated_reason=org.deactivated_reason,
            billing_day=billing_day,
            fee_due_day=org.fee_due_day or billing_day,
        )

    @staticmethod
    async def update_billing_day(
        db: AsyncSession,
        org_id: UUID,
        new_day: Any,
        actor: str,
    ) -> Optional[Organisation]:
        """
        Move the billing day and fee due day together.

        Returns None if the organisation does not exist.

        Raises:
            InvalidBillingDay: If `new_day` is not a whole number in 1-28
        """
        update = prepare_billing_day_update(new_day)
        if update is None:
            raise InvalidBillingDay("Billing day must be a whole number between 1 and 28")

        org = await OrganisationService.get_org_by_id(db, org_id)
        if not org:
            return None

        previous_day = resolve_billing_day(org)
        for field, value in update.items():
            setattr(org, field, value)

        AuditService.record(
            db,
            AuditAction.BILLING_DAY_UPDATED,
            org_id=org.id,
            entity_type="ORG",
            entity_id=org.id,
            actor=actor,
            details={"previous_billing_day": previous_day, **update},
        )
        await db.commit()
        await db.refresh(org)
        return org

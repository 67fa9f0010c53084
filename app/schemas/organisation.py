from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime

from app.models.enums import OrgStatus, MemberRole
from app.utils.time import get_utc_now


class PaymentFailureEvent(BaseModel):
    """A platform charge for an organisation failed."""
    org_id: UUID
    failure_reason: str = Field(..., min_length=1)
    amount_p: int = Field(0, ge=0)
    occurred_at: datetime = Field(default_factory=get_utc_now)


class PaymentSuccessEvent(BaseModel):
    """A platform charge for an organisation succeeded."""
    org_id: UUID
    amount_p: int = Field(0, ge=0)
    occurred_at: datetime = Field(default_factory=get_utc_now)


class AffectedUser(BaseModel):
    user_id: UUID
    name: Optional[str] = None
    email: str
    role: MemberRole

    model_config = ConfigDict(from_attributes=True)


class PaymentFailureOutcome(BaseModel):
    """Result of applying a failure event: what (if anything) happened to the organisation."""
    org_id: UUID
    action: str  # none | pause | deactivate
    reason: str = ""
    failure_reason: str = ""
    failure_count: int
    previous_status: OrgStatus
    org_status: OrgStatus
    affected_users: List[AffectedUser] = []

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.org_status


class PaymentSuccessOutcome(BaseModel):
    org_id: UUID
    org_status: OrgStatus
    failure_count_reset: bool = True
    last_payment_date: datetime


class AutoDeactivateCheck(BaseModel):
    should_deactivate: bool
    reason: str
    failure_count: int = 0


class OrgStatusResponse(BaseModel):
    id: UUID
    name: str
    status: OrgStatus
    payment_failure_count: int
    last_payment_date: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    paused_reason: Optional[str] = None
    deactivated_at: Optional[datetime] = None
    deactivated_reason: Optional[str] = None
    billing_day: int
    fee_due_day: int

    model_config = ConfigDict(from_attributes=True)


class BillingDayUpdate(BaseModel):
    # Validated by the anchor resolver so bad input becomes a 400, not a 422
    billing_day: Any


class BillingDayResponse(BaseModel):
    billing_day: int
    fee_due_day: int


class AdminStatusChange(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    actor: str = Field("platform_admin", max_length=255)

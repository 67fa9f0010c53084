"""Domain 1: Organisation (tenant) Model"""

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, CheckConstraint
from sqlalchemy.dialects.postgresql import ENUM
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import OrgStatus


class Organisation(BaseModel):
    """
    Tenant model - the multi-tenant anchor.

    Lifecycle fields (status, failure count, pause/deactivation stamps) are
    written by the organisation status service and platform administrators only.
    A non-ACTIVE organisation always carries the matching *_at / *_reason pair.
    """
    __tablename__ = "organisations"
    __table_args__ = (
        CheckConstraint("payment_failure_count >= 0", name="ck_organisations_failure_count"),
        CheckConstraint("billing_day BETWEEN 1 AND 28", name="ck_organisations_billing_day"),
        CheckConstraint("fee_due_day BETWEEN 1 AND 28", name="ck_organisations_fee_due_day"),
    )

    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True, unique=True)
    email = Column(String(255), nullable=True)

    # Lifecycle
    status = Column(
        ENUM(OrgStatus, name="org_status", values_callable=lambda x: [e.value for e in x]),
        default=OrgStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    payment_failure_count = Column(Integer, default=0, nullable=False)
    last_payment_date = Column(DateTime, nullable=True)
    auto_suspend_enabled = Column(Boolean, default=True, nullable=False)
    paused_at = Column(DateTime, nullable=True)
    paused_reason = Column(Text, nullable=True)
    deactivated_at = Column(DateTime, nullable=True)
    deactivated_reason = Column(Text, nullable=True)

    # Billing anchor: fee due day is kept equal to billing_day on every update
    billing_day = Column(Integer, nullable=True)
    fee_due_day = Column(Integer, nullable=True)

    # Relationships
    users = relationship("User", back_populates="organisation", cascade="all, delete-orphan")
    students = relationship("Student", back_populates="organisation", cascade="all, delete-orphan")
    classes = relationship("SchoolClass", back_populates="organisation", cascade="all, delete-orphan")
    platform_billing = relationship(
        "PlatformBilling",
        back_populates="organisation",
        uselist=False,
        cascade="all, delete-orphan",
    )
    platform_payments = relationship("PlatformPayment", back_populates="organisation", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == OrgStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Organisation {self.name} ({self.status})>"

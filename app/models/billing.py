"""Domain 3: Billing Models"""

from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, ENUM
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, OrgScopedMixin
from app.models.enums import (
    SubscriptionStatus,
    PlatformPaymentStatus,
    PaymentStatus,
    PaymentMethod,
)


class PlatformBilling(BaseModel):
    """
    Platform subscription state for one organisation.
    Created when the organisation first links a payment method; refreshed
    by the billing cron after every run and by processor webhooks.
    """
    __tablename__ = "platform_billing"
    __table_args__ = (
        CheckConstraint(
            "billing_anniversary_date BETWEEN 1 AND 31",
            name="ck_platform_billing_anniversary",
        ),
    )

    org_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    billing_anniversary_date = Column(Integer, nullable=True, index=True)
    subscription_status = Column(
        ENUM(SubscriptionStatus, name="subscription_status", values_callable=lambda x: [e.value for e in x]),
        default=SubscriptionStatus.TRIALING,
        nullable=False,
        index=True,
    )
    stripe_customer_id = Column(String(255), nullable=True, unique=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    stripe_subscription_item_id = Column(String(255), nullable=True)
    default_payment_method_id = Column(String(255), nullable=True)
    trial_end_date = Column(DateTime, nullable=True)
    last_billed_at = Column(DateTime, nullable=True)
    last_billed_unit_count = Column(Integer, nullable=True)
    # Set on every failed billing attempt so a second run the same day skips the row
    last_attempted_at = Column(DateTime, nullable=True)

    # Dunning: failed invoices are retried every few days while the subscription is past_due
    first_payment_failure_date = Column(DateTime, nullable=True)
    last_payment_retry_date = Column(DateTime, nullable=True)
    payment_retry_count = Column(Integer, default=0, nullable=False)
    warning_email_sent = Column(Boolean, default=False, nullable=False)

    organisation = relationship("Organisation", back_populates="platform_billing")

    def __repr__(self) -> str:
        return f"<PlatformBilling org={self.org_id} day={self.billing_anniversary_date} {self.subscription_status}>"


class PlatformPayment(BaseModel, OrgScopedMixin):
    """
    History of platform subscription charges.
    Failed rows feed the trailing-window auto-deactivation check.
    """
    __tablename__ = "platform_payments"

    amount_p = Column(Integer, nullable=False, default=0)
    status = Column(
        ENUM(PlatformPaymentStatus, name="platform_payment_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    failure_reason = Column(Text, nullable=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_event_id = Column(String(255), nullable=True, unique=True)

    organisation = relationship("Organisation", back_populates="platform_payments")

    def __repr__(self) -> str:
        return f"<PlatformPayment {self.amount_p}p - {self.status}>"


class MonthlyPaymentRecord(BaseModel, OrgScopedMixin):
    """
    One fee obligation per (student, class, month).

    `status` is a cache: write paths may set PAID, reads re-derive
    PENDING/LATE/OVERDUE from the due date via the payment status calculator.
    """
    __tablename__ = "monthly_payment_records"
    __table_args__ = (
        UniqueConstraint("student_id", "class_id", "month", name="uq_monthly_payment_student_class_month"),
        CheckConstraint("amount_p >= 0", name="ck_monthly_payment_amount"),
    )

    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(String(7), nullable=False, index=True)  # YYYY-MM
    amount_p = Column(Integer, nullable=False)
    status = Column(
        ENUM(PaymentStatus, name="payment_status", values_callable=lambda x: [e.value for e in x]),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    paid_at = Column(DateTime, nullable=True)
    method = Column(
        ENUM(PaymentMethod, name="payment_method", values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    reference = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    student = relationship("Student", back_populates="payment_records")
    school_class = relationship("SchoolClass", back_populates="payment_records")

    def __repr__(self) -> str:
        return f"<MonthlyPaymentRecord {self.month} {self.amount_p}p - {self.status}>"

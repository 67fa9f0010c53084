from typing import List, Optional
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import date, datetime

from app.models.enums import BillingRunStatus, RetryRunStatus, PaymentStatus, PaymentMethod, SubscriptionStatus


class BillingRunResult(BaseModel):
    """Outcome of one organisation's billing attempt within a cron run"""
    org_id: UUID
    org_name: str
    unit_count: Optional[int] = None
    status: BillingRunStatus
    expected_charge_p: Optional[int] = None
    error: Optional[str] = None


class BillingRunReport(BaseModel):
    run_date: date
    billing_date: date
    anniversary_days: List[int]
    processed: int
    succeeded: int
    failed: int
    results: List[BillingRunResult]


class DueBilling(BaseModel):
    """Organisation whose subscription renews tomorrow"""
    billing_id: UUID
    org_id: UUID
    org_name: str
    billing_anniversary_date: int
    subscription_status: SubscriptionStatus
    has_subscription: bool


class BillingPreview(BaseModel):
    billing_date: date
    anniversary_days: List[int]
    organisations: List[DueBilling]


class SubscriptionResult(BaseModel):
    """What the payment processor reported back after a subscription change"""
    subscription_id: str
    subscription_item_id: Optional[str] = None
    status: SubscriptionStatus


class InvoiceRetryResult(BaseModel):
    """Result of paying an open invoice again"""
    invoice_id: str
    amount_due_p: int = 0
    paid: bool


class RetryCandidate(BaseModel):
    """Past-due organisation whose last attempt is old enough to retry"""
    billing_id: UUID
    org_id: UUID
    org_name: str
    retry_count: int
    days_since_first_failure: int
    days_since_last_retry: int


class RetryRunResult(BaseModel):
    org_id: UUID
    org_name: str
    status: RetryRunStatus
    retry_count: int
    error: Optional[str] = None


class RetryRunReport(BaseModel):
    run_date: date
    checked: int
    retried: int
    succeeded: int
    failed: int
    results: List[RetryRunResult]


class RetryPreview(BaseModel):
    run_date: date
    total_past_due: int
    ready_for_retry: List[RetryCandidate]


class PaymentRecordResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    month: str
    amount_p: int
    stored_status: PaymentStatus
    status: PaymentStatus
    due_date: date
    paid_at: Optional[datetime] = None
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None


class RecordPaymentRequest(BaseModel):
    method: PaymentMethod
    reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)
    paid_at: Optional[datetime] = None
    actor: str = Field("org_admin", max_length=255)


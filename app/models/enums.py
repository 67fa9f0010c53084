"""Centralized Enum Definitions"""

import enum


# Domain 1: Organisation lifecycle
class OrgStatus(str, enum.Enum):
    """Tenant lifecycle status"""
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DEACTIVATED = "DEACTIVATED"


class MemberRole(str, enum.Enum):
    """Staff roles within an organisation"""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    TEACHER = "TEACHER"


# Domain 2: Platform billing (mirrors the payment processor's vocabulary)
class SubscriptionStatus(str, enum.Enum):
    """Platform subscription status"""
    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class PlatformPaymentStatus(str, enum.Enum):
    """Outcome of a platform subscription charge"""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class BillingRunStatus(str, enum.Enum):
    """Per-organisation outcome of a billing cron run"""
    UPDATED = "updated"
    CREATED = "created"
    ERROR = "error"


class RetryRunStatus(str, enum.Enum):
    """Per-organisation outcome of a payment retry run"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


# Domain 3: Fees
class PaymentStatus(str, enum.Enum):
    """Monthly fee obligation status"""
    PENDING = "PENDING"
    PAID = "PAID"
    LATE = "LATE"
    OVERDUE = "OVERDUE"


class PaymentMethod(str, enum.Enum):
    """How a monthly fee was settled"""
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    DIRECT_DEBIT = "DIRECT_DEBIT"


# Domain 4: Audit
class AuditAction(str, enum.Enum):
    """Audit log actions written by the billing subsystem"""
    ORG_AUTO_PAUSED = "ORG_AUTO_PAUSED"
    ORG_AUTO_DEACTIVATED = "ORG_AUTO_DEACTIVATED"
    ORG_PAUSED = "ORG_PAUSED"
    ORG_DEACTIVATED = "ORG_DEACTIVATED"
    ORG_REACTIVATED = "ORG_REACTIVATED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    RECORD_MANUAL_PAYMENT = "RECORD_MANUAL_PAYMENT"
    BILLING_DAY_UPDATED = "BILLING_DAY_UPDATED"
    PLATFORM_BILLING_RETRY = "PLATFORM_BILLING_RETRY"

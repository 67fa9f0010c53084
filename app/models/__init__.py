"""Models Package - Export all models for easy imports"""

from app.models.base import BaseModel, OrgScopedMixin, StatusMixin
from app.models.enums import *
from app.models.organisation import Organisation
from app.models.user import User
from app.models.academic import Student, SchoolClass
from app.models.billing import PlatformBilling, PlatformPayment, MonthlyPaymentRecord
from app.models.audit import AuditLog, SYSTEM_ACTOR


__all__ = [
    # Base classes
    "BaseModel",
    "OrgScopedMixin",
    "StatusMixin",

    # Organisation
    "Organisation",
    "User",

    # Academic
    "Student",
    "SchoolClass",

    # Billing
    "PlatformBilling",
    "PlatformPayment",
    "MonthlyPaymentRecord",

    # Audit
    "AuditLog",
    "SYSTEM_ACTOR",
]

"""
Payment status calculator.

Derives the effective status of a monthly fee obligation from its due date.
The stored status on a record is only trusted when it is an explicit PAID
with a payment timestamp; everything else is recomputed from dates on read.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

from app.models.enums import PaymentStatus
from app.services.billing_anchor import DEFAULT_BILLING_DAY, validate_billing_day
from app.utils.time import get_utc_now

# Days after the due date during which an unpaid fee shows as LATE before it turns OVERDUE
GRACE_PERIOD_DAYS = 7


def parse_month(month: str) -> Tuple[int, int]:
    """
    Parse a YYYY-MM month key.

    Raises:
        ValueError: If the string is not a valid YYYY-MM month
    """
    try:
        year_text, month_text = month.split("-")
        if len(year_text) != 4 or len(month_text) != 2:
            raise ValueError
        year, month_num = int(year_text), int(month_text)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")
    if not 1 <= month_num <= 12:
        raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")
    return year, month_num


def get_payment_due_date(month: str, billing_day: Optional[int]) -> date:
    """
    Due date for a fee month: the billing day of that month, clamped to the
    month's last day. A missing or invalid billing day uses the default anchor.
    """
    year, month_num = parse_month(month)
    day = validate_billing_day(billing_day) or DEFAULT_BILLING_DAY
    last_day = calendar.monthrange(year, month_num)[1]
    return date(year, month_num, min(day, last_day))


def calculate_status(
    stored_status: Union[PaymentStatus, str],
    month: str,
    org_billing_day: Optional[int],
    paid_at: Optional[datetime],
    now: Optional[Union[date, datetime]] = None,
    grace_days: int = GRACE_PERIOD_DAYS,
) -> PaymentStatus:
    """
    Effective status of a monthly payment record.

    Args:
        stored_status: Status currently stored on the record
        month: Fee month in YYYY-MM format
        org_billing_day: Organisation billing day (1-28), usually from resolve_billing_day
        paid_at: When the fee was paid, if recorded
        now: Reference time, defaults to the current UTC time
        grace_days: Length of the LATE window after the due date

    Returns:
        PAID when a payment is recorded, otherwise PENDING, LATE or OVERDUE
    """
    if PaymentStatus(stored_status) == PaymentStatus.PAID and paid_at is not None:
        return PaymentStatus.PAID

    due_date = get_payment_due_date(month, org_billing_day)
    grace_end = due_date + timedelta(days=grace_days)

    if now is None:
        now = get_utc_now()
    today = now.date() if isinstance(now, datetime) else now

    if today <= due_date:
        return PaymentStatus.PENDING
    if today <= grace_end:
        return PaymentStatus.LATE
    return PaymentStatus.OVERDUE

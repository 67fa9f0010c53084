"""Billing anchor (billing day / fee due day) resolution and validation."""

from typing import Any, Dict, Optional

MIN_BILLING_DAY = 1
# Capped at 28 so the anchor exists in every month, February included
MAX_BILLING_DAY = 28
DEFAULT_BILLING_DAY = 1


def validate_billing_day(value: Any) -> Optional[int]:
    """
    Validate a billing day coming from user input or storage.

    Accepts an int or a string of digits in [1, 28]. Anything else
    (0, 29+, negatives, floats, booleans, non-numeric strings, None)
    yields None. Never raises.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        day = value
    elif isinstance(value, str):
        text = value.strip()
        if not text.isdecimal() or not text.isascii():
            return None
        day = int(text)
    else:
        return None

    if MIN_BILLING_DAY <= day <= MAX_BILLING_DAY:
        return day
    return None


def resolve_billing_day(org: Any) -> int:
    """
    Effective billing day for an organisation.

    Falls back from billing_day to the legacy fee_due_day, then to day 1.
    Out-of-range stored values are skipped rather than trusted.
    """
    for candidate in (getattr(org, "billing_day", None), getattr(org, "fee_due_day", None)):
        day = validate_billing_day(candidate)
        if day is not None:
            return day
    return DEFAULT_BILLING_DAY


def prepare_billing_day_update(new_day: Any) -> Optional[Dict[str, int]]:
    """
    Build the column update for a billing day change.

    Fee due day and billing day always move together, so both keys carry
    the same validated value. Returns None when the input is invalid.
    """
    day = validate_billing_day(new_day)
    if day is None:
        return None
    return {"billing_day": day, "fee_due_day": day}

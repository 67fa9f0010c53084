"""Time Utilities for UTC management"""

from datetime import date, datetime, timezone


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime. 
    Matches the DB schema (TIMESTAMP WITHOUT TIME ZONE).
    Avoids 'datetime.utcnow()' deprecation warnings.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_utc_today() -> date:
    """Current calendar date in UTC."""
    return get_utc_now().date()


def start_of_day(day: date) -> datetime:
    """Naive UTC midnight at the start of ``day``."""
    return datetime(day.year, day.month, day.day)

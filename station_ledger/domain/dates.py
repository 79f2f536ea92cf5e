"""
Date parsing at the ledger boundary.

Callers pass either ``date`` objects or ISO ``YYYY-MM-DD`` strings.  The
calendar day is what matters; any time-of-day part is dropped so that
invoice and payment dates do not shift between time zones.
"""

import re
from datetime import date, datetime, timedelta

from station_ledger.exceptions import ValidationError

_ISO_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?")


def parse_date(value, field: str = "date") -> date:
    """
    Convert caller input to a calendar date.

    Raises:
        ValidationError: If the value is missing or not a valid date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        match = _ISO_DATE.fullmatch(value.strip())
        if match:
            try:
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            except ValueError as exc:
                raise ValidationError(f"{field} is not a valid date: {value!r}", field=field) from exc
    raise ValidationError(f"{field} is not a valid date: {value!r}", field=field)


def derive_due_date(invoice_date: date, offset_days: int) -> date:
    return invoice_date + timedelta(days=offset_days)


def month_bounds(month: str) -> tuple[date, date]:
    """
    First day of a ``YYYY-MM`` month and first day of the next one.

    Raises:
        ValidationError: If month is not ``YYYY-MM``.
    """
    match = re.fullmatch(r"(\d{4})-(\d{2})", (month or "").strip())
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationError(f"month must be YYYY-MM, got {month!r}", field="month")
    year, mon = int(match.group(1)), int(match.group(2))
    start = date(year, mon, 1)
    end = date(year + 1, 1, 1) if mon == 12 else date(year, mon + 1, 1)
    return start, end

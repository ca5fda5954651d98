"""
Period Arithmetic Module

Pure date math for loan cadences: calendar-correct month steps, due dates per
period and the 1-indexed "current period" of a loan as time advances.
"""

import calendar
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Union

from .errors import ValidationError


class Cadence(Enum):
    """Repayment rhythm of a loan"""
    MONTHLY = "Monthly"
    WEEKLY = "Weekly"


DateLike = Union[date, datetime, str]


def to_date(value: DateLike) -> date:
    """
    Normalize a date-like value to a calendar date (time of day stripped)

    Raises:
        ValidationError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_date(value)
    raise ValidationError(f"Invalid date: {value!r}")


def parse_date(value: str) -> date:
    """Parse an ISO date or datetime string"""
    if not value or not isinstance(value, str):
        raise ValidationError("Date must be a non-empty string")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        if "T" in text or " " in text:
            return datetime.fromisoformat(text).date()
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for_period(disbursement_date: DateLike, period: int, cadence: Cadence) -> date:
    """
    Due date of a 1-indexed period

    Always computed from the disbursement date so that month-end clamping in
    one period never shifts the following ones.
    """
    if period < 1:
        raise ValidationError(f"Period must be at least 1, got {period}")
    start = to_date(disbursement_date)
    if cadence == Cadence.WEEKLY:
        return start + timedelta(weeks=period)
    return add_months(start, period)


def current_period(disbursement_date: DateLike, as_of: DateLike,
                   cadence: Cadence, duration: int) -> int:
    """
    Current 1-indexed period of a loan, clamped to [0, duration]

    Returns 0 before the disbursement date. Monthly loans advance on the
    disbursement day-of-month; weekly loans advance the day after each
    seven-day anniversary, which still belongs to the week it completes.
    """
    start = to_date(disbursement_date)
    today = to_date(as_of)

    if today < start:
        return 0
    if duration < 1:
        return 0

    if cadence == Cadence.WEEKLY:
        days = (today - start).days
        weeks, remainder = divmod(days, 7)
        period = weeks if remainder == 0 else weeks + 1
    else:
        period = (today.year - start.year) * 12 + (today.month - start.month) + 1
        if today.day < start.day:
            period -= 1

    return max(1, min(period, duration))


def loan_current_period(loan, as_of: DateLike) -> int:
    """current_period for a loan record"""
    return current_period(loan.disbursement_date, as_of, loan.cadence, loan.duration)


def chit_fund_current_month(start_date: DateLike, as_of: DateLike, duration: int) -> int:
    """Current month of a chit fund, clamped to [1, duration]"""
    start = to_date(start_date)
    today = to_date(as_of)
    month = (today.year - start.year) * 12 + (today.month - start.month) + 1
    if today.day < start.day:
        month -= 1
    return max(1, min(month, max(duration, 1)))

"""
recurrence.py
--------------
Calendar-aligned due date generation for explicit recurrence rules.

Pure functions, no state. A series advances by whole months (1/3/6/12 for
MONTHLY/QUARTERLY/BIANNUALLY/YEARLY) and every generated date is pinned to the
rule's day-of-month, clamped to the length of the month it lands in:

    day 31, MONTHLY from 2024-01-31  →  01-31, 02-29, 03-31, 04-30, ...

Step sizes and the period caps used by calculate_max_periods are read
from config.yaml.
"""

import calendar
import math
from datetime import date
from itertools import islice
from typing import Iterator, Optional

from dateutil.relativedelta import relativedelta

from core.models import Frequency, ValidationResult
from config.config_loader import get_recurrence_config


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_to_day(value: date, day_of_month: int) -> date:
    """Moves value to day_of_month within its own month, clamped to the month length."""
    return value.replace(day=min(day_of_month, days_in_month(value.year, value.month)))


def frequency_months(frequency: Frequency) -> int:
    """Number of calendar months one period of frequency spans."""
    return get_recurrence_config()["frequency_months"][Frequency(frequency).value]


def shift_due_date(value: date, months: int, day_of_month: int) -> date:
    """Shifts value by a (possibly negative) number of months, then pins the day."""
    return clamp_to_day(value + relativedelta(months=months), day_of_month)


# -------------------------------------------------------------------------
# PUBLIC INTERFACE
# -------------------------------------------------------------------------

def next_due_date(
    last_date: date,
    frequency: Frequency,
    day_of_month: int,
    end_date: Optional[date] = None,
) -> Optional[date]:
    """
    Advance last_date by one period of frequency.

    Returns:
        The next due date, or None if it falls after end_date.
    """
    next_date = shift_due_date(last_date, frequency_months(frequency), day_of_month)

    if end_date is not None and next_date > end_date:
        return None

    return next_date


def iter_due_dates(
    start_date: date,
    frequency: Frequency,
    day_of_month: int,
    end_date: Optional[date] = None,
) -> Iterator[date]:
    """
    Lazily yield due dates of a series, starting with the first aligned
    date on or after start_date and stopping after end_date.

    Without an end_date the iterator is unbounded; callers must slice it.
    """
    current: Optional[date] = clamp_to_day(start_date, day_of_month)

    if current < start_date:
        current = next_due_date(current, frequency, day_of_month, end_date)
    elif end_date is not None and current > end_date:
        current = None

    while current is not None:
        yield current
        current = next_due_date(current, frequency, day_of_month, end_date)


def upcoming_due_dates(
    start_date: date,
    frequency: Frequency,
    day_of_month: int,
    end_date: Optional[date] = None,
    count: Optional[int] = None,
) -> list[date]:
    """
    Materialize up to count due dates of a series (see iter_due_dates).

    Args:
        count: Maximum number of dates. Defaults to
            recurrence.default_upcoming_count from config.

    Returns:
        Ordered list of dates, never before start_date nor after end_date.
    """
    if count is None:
        count = get_recurrence_config()["default_upcoming_count"]
    if count <= 0:
        return []
    return list(islice(iter_due_dates(start_date, frequency, day_of_month, end_date), count))


def validate_rule(
    frequency: Frequency,
    day_of_month: int,
    start_date: date,
    end_date: Optional[date] = None,
) -> ValidationResult:
    """
    Validate a recurrence rule. Failures are reported, never raised.
    """
    try:
        Frequency(frequency)
    except ValueError:
        return ValidationResult(False, f"Unknown frequency: {frequency}")

    if day_of_month < 1 or day_of_month > 31:
        return ValidationResult(False, "Day of month must be between 1 and 31")

    if end_date is not None and end_date < start_date:
        return ValidationResult(False, "End date must be after start date")

    days_in_start_month = days_in_month(start_date.year, start_date.month)
    if day_of_month > days_in_start_month:
        return ValidationResult(
            False,
            f"Day of month ({day_of_month}) is invalid for the start date's month "
            f"(max: {days_in_start_month})",
        )

    return ValidationResult(True)


def calculate_max_periods(start_date: date, end_date: date, frequency: Frequency) -> int:
    """
    Upper bound on the number of occurrences of frequency between two dates.
    Used to cap generation per rule.
    """
    period_days = get_recurrence_config()["max_period_days"][Frequency(frequency).value]
    diff_days = (end_date - start_date).days
    return max(math.ceil(diff_days / period_days) + 1, 0)

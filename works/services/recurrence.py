"""
Recurrence arithmetic for recurring works.

Pure functions: a recurrence pattern plus an anchor day map to concrete
period boundaries and due dates. Nothing here touches the database.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from ..models import RecurrencePattern
from ..validation.errors import FieldError, UnknownPatternError, ValidationError

PATTERN_MONTHS = {
    RecurrencePattern.MONTHLY: 1,
    RecurrencePattern.QUARTERLY: 3,
    RecurrencePattern.HALF_YEARLY: 6,
    RecurrencePattern.YEARLY: 12,
}


def coerce_pattern(pattern: Union[RecurrencePattern, str, None]) -> RecurrencePattern:
    if isinstance(pattern, RecurrencePattern):
        return pattern
    if isinstance(pattern, str):
        normalized = pattern.strip().lower().replace("-", "_")
        if normalized in RecurrencePattern.values:
            return RecurrencePattern(normalized)
    raise UnknownPatternError(pattern)


def _with_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def _check_recurrence_day(recurrence_day: Optional[int]) -> None:
    if recurrence_day is not None and not 1 <= recurrence_day <= 31:
        raise ValidationError(
            message="Recurrence day must be between 1 and 31",
            fields=[FieldError(field="recurrence_day", code="FIELD_OUT_OF_RANGE", message=f"Got {recurrence_day}")],
        )


def next_due_date(
    current_due_date: date,
    pattern: Union[RecurrencePattern, str],
    recurrence_day: Optional[int] = None,
) -> date:
    """
    Advance ``current_due_date`` by one pattern unit, then move it to the
    anchor day, clamped to the last day of the resulting month.
    """
    months = PATTERN_MONTHS[coerce_pattern(pattern)]
    _check_recurrence_day(recurrence_day)

    advanced = current_due_date + relativedelta(months=months)
    if recurrence_day is None:
        return advanced
    return _with_day(advanced.year, advanced.month, recurrence_day)


def period_bounds_for(
    due_date: date,
    pattern: Union[RecurrencePattern, str],
) -> Tuple[date, date, str]:
    """Calendar span containing ``due_date`` and its display label."""
    pattern = coerce_pattern(pattern)
    year, month = due_date.year, due_date.month

    if pattern == RecurrencePattern.MONTHLY:
        start = date(year, month, 1)
        name = start.strftime("%B %Y")
    elif pattern == RecurrencePattern.QUARTERLY:
        quarter = (month - 1) // 3 + 1
        start = date(year, 3 * (quarter - 1) + 1, 1)
        name = f"Q{quarter} {year}"
    elif pattern == RecurrencePattern.HALF_YEARLY:
        half = 1 if month <= 6 else 2
        start = date(year, 1 if half == 1 else 7, 1)
        name = f"H{half} {year}"
    else:
        start = date(year, 1, 1)
        name = f"FY {year}"

    end = start + relativedelta(months=PATTERN_MONTHS[pattern]) - timedelta(days=1)
    return start, end, name


def initial_due_date(
    start_date: date,
    pattern: Union[RecurrencePattern, str],
    recurrence_day: Optional[int] = None,
) -> date:
    """
    Due date of the first period of a work starting on ``start_date``.

    The anchor day is placed in the first month of the calendar span that
    contains ``start_date``; if that falls before ``start_date`` the next
    span is used instead.
    """
    pattern = coerce_pattern(pattern)
    _check_recurrence_day(recurrence_day)
    if recurrence_day is None:
        return start_date

    span_start, _, _ = period_bounds_for(start_date, pattern)
    candidate = _with_day(span_start.year, span_start.month, recurrence_day)
    if candidate < start_date:
        candidate = next_due_date(candidate, pattern, recurrence_day)
    return candidate


def task_due_date(period_end_date: date, offset_days: int) -> date:
    return period_end_date + timedelta(days=offset_days or 0)

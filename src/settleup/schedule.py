"""Recurring rule schedule: which dates a rule fires on within a period.

A rule is anchored on the month of its start_date and fires every
interval_months months from there, until the month of its end_date.
"""

import calendar
from datetime import date

from .models import RecurringRule


def _month_index(year: int, month: int) -> int:
    return year * 12 + (month - 1)


def should_rule_fire_in_month(
    rule_start_date: date,
    interval_months: int,
    target_year: int,
    target_month: int,
    rule_end_date: date | None = None,
) -> bool:
    """
    Tell whether a rule fires in the given month.

    Conditions:
    1. target month is not before the start_date month
    2. end_date is None or target month is not after the end_date month
    3. (target month - start month) % interval_months == 0

    Invalid interval (< 1) or month (outside 1-12) never fires.
    """
    if interval_months < 1:
        return False
    if target_month < 1 or target_month > 12:
        return False

    months_diff = _month_index(target_year, target_month) - _month_index(
        rule_start_date.year, rule_start_date.month
    )
    if months_diff < 0:
        return False

    if rule_end_date is not None:
        months_after_end = _month_index(target_year, target_month) - _month_index(
            rule_end_date.year, rule_end_date.month
        )
        if months_after_end > 0:
            return False

    return months_diff % interval_months == 0


def get_actual_day_of_month(day_of_month: int, year: int, month: int) -> int:
    """Clamp a day of month to the month's length (31 in February -> 28/29)."""
    last_day = calendar.monthrange(year, month)[1]
    return min(day_of_month, last_day)


def compute_rule_dates_in_period(
    rule: RecurringRule, period_start: date, period_end: date
) -> list[date]:
    """
    List the dates a rule fires on between period_start and period_end inclusive.

    Each month of the period is visited once, so a date can appear at most
    once and the result is sorted ascending.
    """
    dates = []
    if period_end < period_start:
        return dates

    year, month = period_start.year, period_start.month
    while (year, month) <= (period_end.year, period_end.month):
        if should_rule_fire_in_month(
            rule.start_date, rule.interval_months, year, month, rule.end_date
        ):
            day = get_actual_day_of_month(rule.day_of_month, year, month)
            fire_date = date(year, month, day)
            if period_start <= fire_date <= period_end:
                dates.append(fire_date)

        month += 1
        if month > 12:
            month = 1
            year += 1

    return dates

from __future__ import annotations

"""
Policy-year calendar helpers.

Week 1 runs from 1 January to the first Saturday of the year; every later
week is a full Sunday-Saturday week.
"""

from datetime import date, timedelta
import calendar

_SATURDAY = 5


def first_week_end(year: int) -> date:
    jan1 = date(int(year), 1, 1)
    return jan1 + timedelta(days=(_SATURDAY - jan1.weekday()) % 7)


def week_end_date(year: int, week_number: int) -> date:
    return first_week_end(year) + timedelta(days=7 * (int(week_number) - 1))


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(int(year)) else 365


def time_progress(year: int, week_number: int) -> float:
    """
    Share of the year elapsed at the end of ``week_number`` (0.0 to 1.0).

    The week-end day itself counts as elapsed. Weeks past the year end clamp
    to 1.0; week numbers below 1 give 0.0.
    """
    if int(week_number) < 1:
        return 0.0
    jan1 = date(int(year), 1, 1)
    elapsed = (week_end_date(year, week_number) - jan1).days + 1
    return min(1.0, max(0.0, elapsed / days_in_year(year)))

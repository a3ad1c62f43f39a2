"""
Module: practice_engines.periods
Responsibility:
    Period boundary calculator.  Given a reference date, a cadence, a
    fiscal-year start month and a week-start day, returns the enclosing
    period window with its display name.  Also walks windows forward and
    backward and splits a coarse window into finer sub-windows (e.g. the
    three months of a quarter).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Never reads the clock.

Invariants enforced:
    - Determinism: identical inputs always produce identical windows.
    - Containment: ``period_bounds(d, ...)`` always contains ``d``.
    - Tiling: the window after ``w`` starts the day after ``w.end``.
    - Quarterly, half-yearly and yearly windows are anchored to the
      fiscal-year start month, not to January.

Naming:
    daily        2025-09-05
    weekly       Week 2 (Sep 08 - Sep 14)
    monthly      September 2025
    quarterly    Q1 2025          (fiscal year starting in 2025)
    half-yearly  H2 2025
    yearly       FY 2025-26

Usage:
    from datetime import date
    from practice_engines.periods import period_bounds
    from practice_kernel.domain.types import Cadence

    window = period_bounds(date(2025, 5, 15), Cadence.QUARTERLY, fy_start_month=4)
    # PeriodWindow(start=2025-04-01, end=2025-06-30, name="Q1 2025", ...)
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterator

from practice_kernel.domain.types import (
    Cadence,
    PeriodCalculationType,
    PeriodWindow,
    validate_month,
    weekday_index,
)

MONTH_NAMES: tuple[str, ...] = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
MONTH_ABBR: tuple[str, ...] = tuple(name[:3] for name in MONTH_NAMES)

_ONE_DAY = timedelta(days=1)


# ============================================================================
# Calendar helpers
# ============================================================================


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """Day ``day`` of the month, clamped into [1, last day]."""
    return date(year, month, max(1, min(day, last_day_of_month(year, month))))


def add_months(day: date, months: int, keep_month_end: bool = False) -> date:
    """
    Shift ``day`` by ``months`` calendar months, clamping the day.

    With ``keep_month_end`` a month-end input stays a month-end
    (Sep 30 + 1 month == Oct 31).
    """
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    if keep_month_end and day.day == last_day_of_month(day.year, day.month):
        return date(year, month, last_day_of_month(year, month))
    return clamp_day(year, month, day.day)


def short_date(day: date) -> str:
    """``Sep 08`` style label."""
    return f"{MONTH_ABBR[day.month - 1]} {day.day:02d}"


def fiscal_year_start(day: date, fy_start_month: int) -> date:
    """First day of the fiscal year containing ``day``."""
    year = day.year if day.month >= fy_start_month else day.year - 1
    return date(year, fy_start_month, 1)


# ============================================================================
# Boundary calculator
# ============================================================================


def period_bounds(
    reference: date,
    cadence: Cadence | str,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
) -> PeriodWindow:
    """
    Return the window of ``cadence`` that contains ``reference``.

    Args:
        reference: Any date inside the wanted period.
        cadence: Recurrence cadence.
        fy_start_month: Month (1-12) in which fiscal quarter 1 begins.
        week_start_day: Weekday name on which weekly periods begin.

    Raises:
        InvalidScheduleError: Unknown cadence, weekday or month.
    """
    cadence = Cadence.parse(cadence)
    fy_start_month = validate_month("fy_start_month", fy_start_month)

    if cadence is Cadence.DAILY:
        return PeriodWindow(reference, reference, reference.isoformat(), cadence)

    if cadence is Cadence.WEEKLY:
        first_weekday = weekday_index(week_start_day)
        start = reference - timedelta(days=(reference.weekday() - first_weekday) % 7)
        end = start + timedelta(days=6)
        week_of_month = (end.day - 1) // 7 + 1
        name = f"Week {week_of_month} ({short_date(start)} - {short_date(end)})"
        return PeriodWindow(start, end, name, cadence)

    if cadence is Cadence.MONTHLY:
        start = reference.replace(day=1)
        end = reference.replace(day=last_day_of_month(reference.year, reference.month))
        return PeriodWindow(start, end, f"{MONTH_NAMES[start.month - 1]} {start.year}", cadence)

    fy_start = fiscal_year_start(reference, fy_start_month)
    months_into_year = (reference.month - fy_start_month) % 12
    span = cadence.months
    index = months_into_year // span
    start = add_months(fy_start, index * span)
    end = add_months(start, span) - _ONE_DAY

    if cadence is Cadence.QUARTERLY:
        name = f"Q{index + 1} {fy_start.year}"
    elif cadence is Cadence.HALF_YEARLY:
        name = f"H{index + 1} {fy_start.year}"
    else:
        name = f"FY {fy_start.year}-{(fy_start.year + 1) % 100:02d}"

    return PeriodWindow(start, end, name, cadence)


def next_window(
    window: PeriodWindow,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
) -> PeriodWindow:
    return period_bounds(window.end + _ONE_DAY, window.cadence, fy_start_month, week_start_day)


def previous_window(
    window: PeriodWindow,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
) -> PeriodWindow:
    return period_bounds(window.start - _ONE_DAY, window.cadence, fy_start_month, week_start_day)


def first_window(
    start_date: date,
    cadence: Cadence | str,
    calculation_type: PeriodCalculationType | str = PeriodCalculationType.PREVIOUS_PERIOD,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
) -> PeriodWindow:
    """
    The first period a work generates, relative to its start date.

    ``previous_period`` is the period before the one containing the start
    date, ``current_period`` the containing one and ``next_period`` the
    one after it.
    """
    calculation_type = PeriodCalculationType(calculation_type)
    containing = period_bounds(start_date, cadence, fy_start_month, week_start_day)
    if calculation_type is PeriodCalculationType.PREVIOUS_PERIOD:
        return previous_window(containing, fy_start_month, week_start_day)
    if calculation_type is PeriodCalculationType.NEXT_PERIOD:
        return next_window(containing, fy_start_month, week_start_day)
    return containing


def iter_windows(
    first: PeriodWindow,
    until: date,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
) -> Iterator[PeriodWindow]:
    """Yield consecutive windows from ``first`` while they end before ``until``."""
    window = first
    while window.end < until:
        yield window
        window = next_window(window, fy_start_month, week_start_day)


# ============================================================================
# Sub-windows for nested recurrence
# ============================================================================


def sub_windows(
    outer: PeriodWindow,
    cadence: Cadence,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
) -> tuple[PeriodWindow, ...]:
    """
    Split ``outer`` into windows of a finer ``cadence``.

    Returns ``(outer,)`` for the same cadence and ``()`` when ``cadence``
    is coarser than the outer window, since such a template does not
    apply.  Weekly sub-windows are the full weeks whose first day falls
    inside ``outer``.
    """
    if cadence is outer.cadence:
        return (outer,)
    if cadence.rank > outer.cadence.rank:
        return ()

    windows: list[PeriodWindow] = []
    if cadence is Cadence.WEEKLY:
        first_weekday = weekday_index(week_start_day)
        cursor = outer.start + timedelta(days=(first_weekday - outer.start.weekday()) % 7)
        while cursor <= outer.end:
            windows.append(period_bounds(cursor, cadence, fy_start_month, week_start_day))
            cursor += timedelta(days=7)
        return tuple(windows)

    cursor = outer.start
    while cursor <= outer.end:
        window = period_bounds(cursor, cadence, fy_start_month, week_start_day)
        windows.append(window)
        cursor = window.end + _ONE_DAY
    return tuple(windows)


def sub_window_suffix(window: PeriodWindow, outer: PeriodWindow) -> str:
    """Title suffix that tells sibling task instances of one template apart."""
    if window == outer:
        return ""
    if window.cadence is Cadence.MONTHLY:
        return f" - {MONTH_NAMES[window.start.month - 1]}"
    if window.cadence is Cadence.WEEKLY:
        return f" ({short_date(window.start)} - {short_date(window.end)})"
    if window.cadence is Cadence.DAILY:
        return f" - {window.start.day:02d} {MONTH_ABBR[window.start.month - 1]}"
    return f" - {window.name}"

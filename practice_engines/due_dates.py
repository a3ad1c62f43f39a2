"""
Module: practice_engines.due_dates
Responsibility:
    Task due-date resolver.  Given a task rule and one period window,
    returns the concrete due date of that task in that window, or None
    when the rule does not apply to the window.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Resolution priority (first match wins):
    1. Per-period-end override map entry for ``window.end``.
    2. Exact due date, when it falls inside the window.
    3. Anchor: day N of month M (the window's start year is tried first,
       then its end year), day N of the window's first month, or the
       first named weekday on/after the window start.
    4. Offset from the window END: +N days, +N weeks, +N months, or day N
       of the month ``offset_months`` after the window end.
    5. Fallback: window end + ``fallback_offset_days`` (10 by default).

Usage:
    rule = TaskRule(template_id=tid, title="GSTR-1",
                    offset_type=OffsetType.DAYS, offset_value=10)
    window = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
    resolve_due_date(rule, window)   # date(2025, 10, 10)
"""

from __future__ import annotations

from datetime import date, timedelta

from practice_kernel.domain.types import OffsetType, PeriodWindow, TaskRule, weekday_index
from practice_engines.periods import add_months, clamp_day

DEFAULT_FALLBACK_OFFSET_DAYS = 10


def resolve_due_date(
    rule: TaskRule,
    window: PeriodWindow,
    fallback_offset_days: int = DEFAULT_FALLBACK_OFFSET_DAYS,
) -> date | None:
    """
    Resolve the due date of ``rule`` inside ``window``.

    Returns None when the rule's cadence differs from the window's, when an
    exact date lies outside the window, or when a month anchor falls in
    neither of the window's years.
    """
    if rule.cadence is not None and rule.cadence is not window.cadence:
        return None

    override = rule.due_date_overrides.get(window.end)
    if override is not None:
        return override

    if rule.exact_due_date is not None:
        return rule.exact_due_date if window.contains(rule.exact_due_date) else None

    if rule.anchor_day is not None:
        return _resolve_anchor(rule, window)

    if rule.offset_type is not None and rule.offset_value is not None:
        return _resolve_offset(rule, window.end)

    return window.end + timedelta(days=fallback_offset_days)


def _resolve_anchor(rule: TaskRule, window: PeriodWindow) -> date | None:
    anchor = str(rule.anchor_day).strip()

    if anchor.isdigit():
        day = int(anchor)
        if rule.anchor_month is None:
            return clamp_day(window.start.year, window.start.month, day)
        for year in dict.fromkeys((window.start.year, window.end.year)):
            candidate = clamp_day(year, rule.anchor_month, day)
            if window.contains(candidate):
                return candidate
        return None

    target = weekday_index(anchor)
    return window.start + timedelta(days=(target - window.start.weekday()) % 7)


def _resolve_offset(rule: TaskRule, period_end: date) -> date:
    value = int(rule.offset_value)
    offset_type = OffsetType(rule.offset_type)

    if offset_type is OffsetType.DAYS:
        return period_end + timedelta(days=value)
    if offset_type is OffsetType.WEEKS:
        return period_end + timedelta(weeks=value)
    if offset_type is OffsetType.MONTHS:
        return add_months(period_end, value, keep_month_end=True)

    # DAY_OF_MONTH: day N of the month starting offset_months after the period end
    target_month = add_months(period_end.replace(day=1), rule.offset_months)
    return clamp_day(target_month.year, target_month.month, value)

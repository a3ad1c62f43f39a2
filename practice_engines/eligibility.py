"""
Module: practice_engines.eligibility
Responsibility:
    Eligibility gate and period planner.  Walks candidate windows of a
    work from its first period up to "today" and decides which periods,
    and which of their tasks, are actionable now.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  "Today" is always an
    explicit argument supplied by the calling service's Clock.

Invariants enforced:
    - A period is planned only once it has closed (end < today).
    - A task is planned only when its due date has been reached
      (due <= today) and is on/after the work's start date.
    - A period is planned only when at least one task is planned; later
      runs add the tasks that become eligible afterwards.
    - Candidates are unique per (template, due date) within a period.
    - ``expected_tasks`` lists the full candidate set of a window without
      the due-date gate; billing waits until all of them exist.

Failure modes:
    - InvalidScheduleError propagated from the boundary calculator.
"""

from __future__ import annotations

from datetime import date
from typing import Callable, Iterable, Sequence

from practice_kernel.domain.types import (
    Cadence,
    PeriodPlan,
    PeriodWindow,
    TaskCandidate,
    TaskRule,
)
from practice_kernel.logging_config import get_logger
from practice_engines.due_dates import DEFAULT_FALLBACK_OFFSET_DAYS, resolve_due_date
from practice_engines.periods import iter_windows, sub_window_suffix, sub_windows
from practice_engines.tracer import traced_engine

logger = get_logger("engines.eligibility")


def is_task_eligible(
    due_date: date,
    period_end: date,
    today: date,
    work_start: date | None,
) -> bool:
    """True when the period has closed and the task's due date is actionable."""
    if period_end >= today:
        return False
    if due_date > today:
        return False
    return work_start is None or due_date >= work_start


def plan_period(
    window: PeriodWindow,
    rules: Sequence[TaskRule],
    work_cadence: Cadence,
    today: date,
    work_start: date | None = None,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
    fallback_offset_days: int = DEFAULT_FALLBACK_OFFSET_DAYS,
) -> PeriodPlan | None:
    """
    Plan one candidate window.

    Each active rule is evaluated against every sub-window of its own
    cadence inside ``window`` (one for a same-cadence rule, three for a
    monthly rule in a quarter, none for a coarser rule).

    Returns:
        A PeriodPlan with the currently eligible tasks, or None when no
        task is eligible yet.
    """
    if window.end >= today:
        return None

    candidates = _candidates(
        window,
        rules,
        work_cadence,
        lambda due: is_task_eligible(due, window.end, today, work_start),
        fy_start_month,
        week_start_day,
        fallback_offset_days,
    )
    if not candidates:
        return None
    return PeriodPlan(window=window, tasks=candidates)


def expected_tasks(
    window: PeriodWindow,
    rules: Sequence[TaskRule],
    work_cadence: Cadence,
    work_start: date | None = None,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
    fallback_offset_days: int = DEFAULT_FALLBACK_OFFSET_DAYS,
) -> tuple[TaskCandidate, ...]:
    """
    Every task ``window`` will eventually hold, whether due yet or not.

    Same candidates as ``plan_period`` without the due-date gate, so a
    quarter with monthly rules lists all three months even while the
    last one is still in the future.
    """
    return _candidates(
        window,
        rules,
        work_cadence,
        lambda due: work_start is None or due >= work_start,
        fy_start_month,
        week_start_day,
        fallback_offset_days,
    )


def _candidates(
    window: PeriodWindow,
    rules: Sequence[TaskRule],
    work_cadence: Cadence,
    accept: Callable[[date], bool],
    fy_start_month: int,
    week_start_day: str,
    fallback_offset_days: int,
) -> tuple[TaskCandidate, ...]:
    candidates: dict[tuple, TaskCandidate] = {}
    for rule in sorted(rules, key=lambda r: (r.sort_order, r.title)):
        if not rule.is_active:
            continue
        if rule.start_date is not None and window.end < rule.start_date:
            continue

        cadence = rule.effective_cadence(work_cadence)
        for sub in sub_windows(window, cadence, fy_start_month, week_start_day):
            if rule.start_date is not None and sub.end < rule.start_date:
                continue
            due = resolve_due_date(rule, sub, fallback_offset_days)
            if due is None or not accept(due):
                continue
            key = (rule.template_id, due)
            if key in candidates:
                continue
            candidates[key] = TaskCandidate(
                template_id=rule.template_id,
                title=f"{rule.title}{sub_window_suffix(sub, window)}",
                due_date=due,
                window=sub,
                sort_order=rule.sort_order,
                description=rule.description,
                priority=rule.priority,
                estimated_hours=rule.estimated_hours,
            )
    return tuple(candidates.values())


@traced_engine(
    "period_planner",
    "1.0",
    fingerprint_fields=("first", "work_cadence", "today", "work_start", "work_end"),
)
def plan_periods(
    *,
    first: PeriodWindow,
    rules: Iterable[TaskRule],
    work_cadence: Cadence,
    today: date,
    work_start: date | None = None,
    work_end: date | None = None,
    fy_start_month: int = 4,
    week_start_day: str = "monday",
    fallback_offset_days: int = DEFAULT_FALLBACK_OFFSET_DAYS,
) -> tuple[PeriodPlan, ...]:
    """
    Plan every eligible period from ``first`` forward to ``today``.

    Args:
        first: Window to start from (the work's first period, or the
            window to resume from for ongoing generation).
        rules: Effective task rules of the work.
        work_cadence: The work's cadence; rules without one inherit it.
        today: Current date from the caller's clock.
        work_start: Tasks due before this date are ignored.
        work_end: Windows starting after this date are not generated.

    Returns:
        Eligible plans in chronological order.
    """
    rules = tuple(rules)
    plans: list[PeriodPlan] = []
    for window in iter_windows(first, today, fy_start_month, week_start_day):
        if work_end is not None and window.start > work_end:
            break
        plan = plan_period(
            window,
            rules,
            work_cadence,
            today,
            work_start=work_start,
            fy_start_month=fy_start_month,
            week_start_day=week_start_day,
            fallback_offset_days=fallback_offset_days,
        )
        if plan is not None:
            plans.append(plan)

    logger.debug(
        "periods_planned",
        extra={
            "first_start": first.start,
            "today": today,
            "plan_count": len(plans),
            "task_count": sum(len(p.tasks) for p in plans),
        },
    )
    return tuple(plans)

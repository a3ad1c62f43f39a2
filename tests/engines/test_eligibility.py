"""
Tests for the eligibility gate and the period planner.

Scenario dates follow a "today" of 2025-10-20 unless stated otherwise.
"""

from datetime import date
from uuid import uuid4

import pytest

from practice_engines.eligibility import expected_tasks, is_task_eligible, plan_period, plan_periods
from practice_engines.periods import first_window, period_bounds
from practice_kernel.domain.types import Cadence, OffsetType, PeriodCalculationType, TaskRule

TODAY = date(2025, 10, 20)


def monthly_rule(title="GSTR-1", days=10, **fields) -> TaskRule:
    return TaskRule(
        template_id=uuid4(),
        title=title,
        offset_type=OffsetType.DAYS,
        offset_value=days,
        **fields,
    )


# =============================================================================
# Gate
# =============================================================================


class TestTaskEligibility:

    def test_closed_period_due_task(self):
        assert is_task_eligible(date(2025, 10, 10), date(2025, 9, 30), TODAY, date(2025, 7, 1))

    def test_due_today_is_eligible(self):
        assert is_task_eligible(TODAY, date(2025, 9, 30), TODAY, None)

    def test_future_due_date_not_eligible(self):
        assert not is_task_eligible(date(2025, 10, 25), date(2025, 9, 30), TODAY, None)

    def test_open_period_not_eligible(self):
        assert not is_task_eligible(date(2025, 10, 5), date(2025, 10, 31), TODAY, None)

    def test_period_ending_today_not_eligible(self):
        assert not is_task_eligible(date(2025, 10, 20), TODAY, TODAY, None)

    def test_due_before_work_start_not_eligible(self):
        assert not is_task_eligible(date(2025, 7, 10), date(2025, 6, 30), TODAY, date(2025, 7, 15))


# =============================================================================
# Single period
# =============================================================================


class TestPlanPeriod:

    def test_plan_with_eligible_task(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        plan = plan_period(september, [monthly_rule()], Cadence.MONTHLY, TODAY)
        assert plan is not None
        assert [t.due_date for t in plan.tasks] == [date(2025, 10, 10)]
        assert plan.tasks[0].title == "GSTR-1"

    def test_no_plan_until_a_task_is_due(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        assert plan_period(september, [monthly_rule(days=25)], Cadence.MONTHLY, TODAY) is None

    def test_inactive_rule_skipped(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        rules = [monthly_rule(is_active=False)]
        assert plan_period(september, rules, Cadence.MONTHLY, TODAY) is None

    def test_rule_starting_later_skipped(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        rules = [monthly_rule(start_date=date(2025, 10, 1))]
        assert plan_period(september, rules, Cadence.MONTHLY, TODAY) is None

    def test_partial_plan_only_due_tasks(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        rules = [monthly_rule("GSTR-1", days=10), monthly_rule("GSTR-3B", days=25)]
        plan = plan_period(september, rules, Cadence.MONTHLY, TODAY)
        assert [t.title for t in plan.tasks] == ["GSTR-1"]

    def test_monthly_rule_inside_quarter(self):
        quarter = period_bounds(date(2025, 7, 1), Cadence.QUARTERLY, fy_start_month=4)
        rule = monthly_rule("Payroll", cadence=Cadence.MONTHLY)
        plan = plan_period(quarter, [rule], Cadence.QUARTERLY, TODAY, work_start=date(2025, 7, 1))
        assert [(t.title, t.due_date) for t in plan.tasks] == [
            ("Payroll - July", date(2025, 8, 10)),
            ("Payroll - August", date(2025, 9, 10)),
            ("Payroll - September", date(2025, 10, 10)),
        ]

    def test_coarser_rule_ignored_in_finer_period(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        rule = monthly_rule("Annual return", cadence=Cadence.YEARLY)
        assert plan_period(september, [rule], Cadence.MONTHLY, TODAY) is None

    def test_candidates_unique_per_template_and_due_date(self):
        quarter = period_bounds(date(2025, 7, 1), Cadence.QUARTERLY, fy_start_month=4)
        rule = TaskRule(
            template_id=uuid4(),
            title="Board pack",
            cadence=Cadence.MONTHLY,
            due_date_overrides={
                date(2025, 7, 31): date(2025, 9, 15),
                date(2025, 8, 31): date(2025, 9, 15),
            },
        )
        plan = plan_period(quarter, [rule], Cadence.QUARTERLY, TODAY)
        due_dates = [t.due_date for t in plan.tasks]
        assert len(due_dates) == len(set(due_dates))
        assert due_dates == [date(2025, 9, 15), date(2025, 10, 10)]


class TestExpectedTasks:

    def test_lists_tasks_not_yet_due(self):
        quarter = period_bounds(date(2025, 7, 1), Cadence.QUARTERLY, fy_start_month=4)
        rules = [monthly_rule("Payroll", cadence=Cadence.MONTHLY)]
        today = date(2025, 10, 5)

        plan = plan_period(quarter, rules, Cadence.QUARTERLY, today, fy_start_month=4)
        expected = expected_tasks(quarter, rules, Cadence.QUARTERLY, fy_start_month=4)

        assert [t.due_date for t in plan.tasks] == [date(2025, 8, 10), date(2025, 9, 10)]
        assert [t.due_date for t in expected] == [
            date(2025, 8, 10),
            date(2025, 9, 10),
            date(2025, 10, 10),
        ]
        assert expected[-1].title == "Payroll - September"

    def test_respects_work_start_and_inactive_rules(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        rules = [monthly_rule(), monthly_rule("Old return", is_active=False)]
        assert expected_tasks(september, rules, Cadence.MONTHLY, work_start=date(2025, 10, 15)) == ()
        assert len(expected_tasks(september, rules, Cadence.MONTHLY)) == 1


# =============================================================================
# Planner walk
# =============================================================================


class TestPlanPeriods:

    def _plan(self, start, calc_type=PeriodCalculationType.PREVIOUS_PERIOD, today=TODAY, **kwargs):
        rules = kwargs.pop("rules", [monthly_rule()])
        return plan_periods(
            first=first_window(start, Cadence.MONTHLY, calc_type),
            rules=rules,
            work_cadence=Cadence.MONTHLY,
            today=today,
            work_start=start,
            **kwargs,
        )

    def test_backfill_from_previous_period(self):
        plans = self._plan(date(2025, 7, 1))
        assert [p.window.name for p in plans] == [
            "June 2025",
            "July 2025",
            "August 2025",
            "September 2025",
        ]

    def test_task_due_before_start_excludes_period(self):
        plans = self._plan(date(2025, 7, 15))
        assert [p.window.name for p in plans] == ["July 2025", "August 2025", "September 2025"]

    @pytest.mark.parametrize(
        "today, expected",
        [
            (date(2025, 10, 20), []),
            (date(2025, 10, 25), ["September 2025"]),
        ],
    )
    def test_period_appears_once_first_task_is_due(self, today, expected):
        plans = self._plan(
            date(2025, 9, 1),
            calc_type=PeriodCalculationType.CURRENT_PERIOD,
            today=today,
            rules=[monthly_rule(days=25)],
        )
        assert [p.window.name for p in plans] == expected

    def test_work_end_stops_generation(self):
        plans = self._plan(date(2025, 7, 1), work_end=date(2025, 7, 31))
        assert [p.window.name for p in plans] == ["June 2025", "July 2025"]

    def test_same_inputs_same_plan(self):
        rules = [monthly_rule(), monthly_rule("GSTR-3B", days=20)]
        assert self._plan(date(2025, 7, 1), rules=rules) == self._plan(date(2025, 7, 1), rules=rules)

    def test_emits_engine_trace(self, captured_logs):
        self._plan(date(2025, 7, 1))
        traces = [r for r in captured_logs() if r["message"] == "PRACTICE_ENGINE_TRACE"]
        assert traces
        assert traces[0]["engine_name"] == "period_planner"
        assert len(traces[0]["input_fingerprint"]) == 16

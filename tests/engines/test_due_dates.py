"""Tests for the task due-date resolver."""

from datetime import date
from uuid import uuid4

import pytest

from practice_engines.due_dates import resolve_due_date
from practice_engines.periods import period_bounds
from practice_kernel.domain.types import Cadence, OffsetType, TaskRule
from practice_kernel.exceptions import InvalidScheduleError

SEPTEMBER = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
OCTOBER = period_bounds(date(2025, 10, 1), Cadence.MONTHLY)
FEBRUARY = period_bounds(date(2025, 2, 1), Cadence.MONTHLY)
FY_2025 = period_bounds(date(2025, 4, 1), Cadence.YEARLY, fy_start_month=4)
Q1_2025 = period_bounds(date(2025, 4, 1), Cadence.QUARTERLY, fy_start_month=4)


def rule(**fields) -> TaskRule:
    return TaskRule(template_id=uuid4(), title="GSTR-3B", **fields)


# =============================================================================
# Offsets from the period end
# =============================================================================


class TestOffsets:

    @pytest.mark.parametrize(
        "offset_type, value, expected",
        [
            (OffsetType.DAYS, 10, date(2025, 10, 10)),
            (OffsetType.WEEKS, 2, date(2025, 10, 14)),
            (OffsetType.MONTHS, 1, date(2025, 10, 31)),
            (OffsetType.DAY_OF_MONTH, 20, date(2025, 10, 20)),
        ],
    )
    def test_offset_types(self, offset_type, value, expected):
        assert resolve_due_date(rule(offset_type=offset_type, offset_value=value), SEPTEMBER) == expected

    def test_day_of_month_in_same_month(self):
        r = rule(offset_type=OffsetType.DAY_OF_MONTH, offset_value=20, offset_months=0)
        assert resolve_due_date(r, SEPTEMBER) == date(2025, 9, 20)

    def test_day_of_month_clamped_to_month_end(self):
        r = rule(offset_type=OffsetType.DAY_OF_MONTH, offset_value=31)
        assert resolve_due_date(r, OCTOBER) == date(2025, 11, 30)

    def test_fallback_when_no_rule(self):
        assert resolve_due_date(rule(), SEPTEMBER) == date(2025, 10, 10)
        assert resolve_due_date(rule(), SEPTEMBER, fallback_offset_days=5) == date(2025, 10, 5)


# =============================================================================
# Overrides, exact dates and anchors
# =============================================================================


class TestPriority:

    def test_period_override_beats_everything(self):
        r = rule(
            due_date_overrides={date(2025, 9, 30): date(2025, 10, 3)},
            exact_due_date=date(2025, 9, 25),
            offset_type=OffsetType.DAYS,
            offset_value=10,
        )
        assert resolve_due_date(r, SEPTEMBER) == date(2025, 10, 3)

    def test_override_only_applies_to_its_period(self):
        r = rule(
            due_date_overrides={date(2025, 9, 30): date(2025, 10, 3)},
            offset_type=OffsetType.DAYS,
            offset_value=10,
        )
        assert resolve_due_date(r, OCTOBER) == date(2025, 11, 10)

    def test_exact_date_inside_window(self):
        assert resolve_due_date(rule(exact_due_date=date(2025, 9, 25)), SEPTEMBER) == date(2025, 9, 25)

    def test_exact_date_outside_window_does_not_apply(self):
        assert resolve_due_date(rule(exact_due_date=date(2025, 9, 25)), OCTOBER) is None

    def test_anchor_wins_over_offset(self):
        r = rule(anchor_day="15", offset_type=OffsetType.DAYS, offset_value=10)
        assert resolve_due_date(r, SEPTEMBER) == date(2025, 9, 15)


class TestAnchors:

    def test_day_of_first_month(self):
        assert resolve_due_date(rule(anchor_day="15"), SEPTEMBER) == date(2025, 9, 15)

    def test_day_clamped(self):
        assert resolve_due_date(rule(anchor_day="31"), FEBRUARY) == date(2025, 2, 28)

    def test_month_in_start_year(self):
        r = rule(anchor_day="31", anchor_month=7)
        assert resolve_due_date(r, FY_2025) == date(2025, 7, 31)

    def test_month_in_end_year(self):
        r = rule(anchor_day="15", anchor_month=1)
        assert resolve_due_date(r, FY_2025) == date(2026, 1, 15)

    def test_month_outside_window(self):
        assert resolve_due_date(rule(anchor_day="15", anchor_month=9), Q1_2025) is None

    def test_weekday_on_or_after_start(self):
        assert resolve_due_date(rule(anchor_day="friday"), SEPTEMBER) == date(2025, 9, 5)
        assert resolve_due_date(rule(anchor_day="Monday"), SEPTEMBER) == date(2025, 9, 1)

    def test_unknown_weekday(self):
        with pytest.raises(InvalidScheduleError):
            resolve_due_date(rule(anchor_day="payday"), SEPTEMBER)

    def test_invalid_anchor_month(self):
        with pytest.raises(InvalidScheduleError):
            rule(anchor_day="1", anchor_month=0)


class TestCadenceMatch:

    def test_rule_of_other_cadence_does_not_apply(self):
        assert resolve_due_date(rule(cadence=Cadence.QUARTERLY), SEPTEMBER) is None

    def test_rule_of_same_cadence_applies(self):
        r = rule(cadence=Cadence.MONTHLY, offset_type=OffsetType.DAYS, offset_value=7)
        assert resolve_due_date(r, SEPTEMBER) == date(2025, 10, 7)

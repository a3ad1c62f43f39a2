"""
Tests for the period boundary calculator.

Fixed examples per cadence plus property tests for containment, tiling
and determinism across cadences, fiscal-year start months and week
start days.
"""

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from practice_engines.periods import (
    add_months,
    first_window,
    iter_windows,
    next_window,
    period_bounds,
    previous_window,
    sub_window_suffix,
    sub_windows,
)
from practice_kernel.domain.types import WEEKDAYS, Cadence, PeriodCalculationType
from practice_kernel.exceptions import InvalidScheduleError


# =============================================================================
# Fixed boundaries
# =============================================================================


class TestPeriodBounds:

    def test_daily(self):
        window = period_bounds(date(2025, 9, 5), Cadence.DAILY)
        assert (window.start, window.end) == (date(2025, 9, 5), date(2025, 9, 5))
        assert window.name == "2025-09-05"

    def test_weekly_monday_start(self):
        window = period_bounds(date(2025, 9, 10), Cadence.WEEKLY)
        assert window.start == date(2025, 9, 8)
        assert window.end == date(2025, 9, 14)
        assert window.name == "Week 2 (Sep 08 - Sep 14)"

    def test_weekly_sunday_start(self):
        window = period_bounds(date(2025, 9, 10), Cadence.WEEKLY, week_start_day="sunday")
        assert window.start == date(2025, 9, 7)
        assert window.end == date(2025, 9, 13)

    def test_monthly(self):
        window = period_bounds(date(2025, 9, 15), "monthly")
        assert (window.start, window.end) == (date(2025, 9, 1), date(2025, 9, 30))
        assert window.name == "September 2025"

    def test_monthly_leap_february(self):
        window = period_bounds(date(2024, 2, 10), Cadence.MONTHLY)
        assert window.end == date(2024, 2, 29)

    def test_quarterly_follows_fiscal_year(self):
        window = period_bounds(date(2025, 5, 15), Cadence.QUARTERLY, fy_start_month=4)
        assert (window.start, window.end) == (date(2025, 4, 1), date(2025, 6, 30))
        assert window.name == "Q1 2025"

    def test_quarterly_after_new_year_stays_in_fiscal_year(self):
        window = period_bounds(date(2026, 2, 10), Cadence.QUARTERLY, fy_start_month=4)
        assert (window.start, window.end) == (date(2026, 1, 1), date(2026, 3, 31))
        assert window.name == "Q4 2025"

    def test_quarterly_calendar_fiscal_year(self):
        window = period_bounds(date(2025, 5, 15), Cadence.QUARTERLY, fy_start_month=1)
        assert (window.start, window.end) == (date(2025, 4, 1), date(2025, 6, 30))
        assert window.name == "Q2 2025"

    def test_half_yearly_spans_year_end(self):
        window = period_bounds(date(2025, 11, 1), "half-yearly", fy_start_month=4)
        assert (window.start, window.end) == (date(2025, 10, 1), date(2026, 3, 31))
        assert window.name == "H2 2025"

    def test_yearly(self):
        window = period_bounds(date(2025, 3, 31), Cadence.YEARLY, fy_start_month=4)
        assert (window.start, window.end) == (date(2024, 4, 1), date(2025, 3, 31))
        assert window.name == "FY 2024-25"

    def test_unknown_cadence_rejected(self):
        with pytest.raises(InvalidScheduleError):
            period_bounds(date(2025, 1, 1), "fortnightly")

    def test_invalid_fiscal_month_rejected(self):
        with pytest.raises(InvalidScheduleError):
            period_bounds(date(2025, 1, 1), Cadence.QUARTERLY, fy_start_month=13)

    def test_unknown_weekday_rejected(self):
        with pytest.raises(InvalidScheduleError):
            period_bounds(date(2025, 1, 1), Cadence.WEEKLY, week_start_day="someday")


# =============================================================================
# Walking windows
# =============================================================================


class TestWindowNavigation:

    def test_next_and_previous_window(self):
        september = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        assert next_window(september).name == "October 2025"
        assert previous_window(september).name == "August 2025"

    @pytest.mark.parametrize(
        "calc_type, expected",
        [
            (PeriodCalculationType.PREVIOUS_PERIOD, "June 2025"),
            (PeriodCalculationType.CURRENT_PERIOD, "July 2025"),
            (PeriodCalculationType.NEXT_PERIOD, "August 2025"),
        ],
    )
    def test_first_window_by_calculation_type(self, calc_type, expected):
        assert first_window(date(2025, 7, 1), Cadence.MONTHLY, calc_type).name == expected

    def test_iter_windows_stops_before_open_period(self):
        first = period_bounds(date(2025, 6, 1), Cadence.MONTHLY)
        names = [w.name for w in iter_windows(first, date(2025, 10, 20))]
        assert names == ["June 2025", "July 2025", "August 2025", "September 2025"]

    def test_add_months_clamps_and_keeps_month_end(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2025, 9, 30), 1, keep_month_end=True) == date(2025, 10, 31)
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)


class TestSubWindows:

    def test_quarter_splits_into_months(self):
        quarter = period_bounds(date(2025, 7, 1), Cadence.QUARTERLY, fy_start_month=4)
        months = sub_windows(quarter, Cadence.MONTHLY)
        assert [m.name for m in months] == ["July 2025", "August 2025", "September 2025"]
        assert [sub_window_suffix(m, quarter) for m in months] == [
            " - July",
            " - August",
            " - September",
        ]

    def test_same_cadence_is_the_outer_window(self):
        month = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        assert sub_windows(month, Cadence.MONTHLY) == (month,)
        assert sub_window_suffix(month, month) == ""

    def test_coarser_cadence_does_not_apply(self):
        month = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        assert sub_windows(month, Cadence.QUARTERLY) == ()

    def test_weeks_starting_inside_month(self):
        month = period_bounds(date(2025, 9, 1), Cadence.MONTHLY)
        weeks = sub_windows(month, Cadence.WEEKLY)
        assert [w.start for w in weeks] == [
            date(2025, 9, 1),
            date(2025, 9, 8),
            date(2025, 9, 15),
            date(2025, 9, 22),
            date(2025, 9, 29),
        ]
        assert weeks[-1].end == date(2025, 10, 5)


# =============================================================================
# Properties
# =============================================================================

dates = st.dates(min_value=date(1990, 1, 1), max_value=date(2100, 12, 31))
cadences = st.sampled_from(list(Cadence))
fy_months = st.integers(min_value=1, max_value=12)
weekdays = st.sampled_from(WEEKDAYS)


class TestPeriodProperties:

    @given(reference=dates, cadence=cadences, fy=fy_months, wsd=weekdays)
    @settings(max_examples=300)
    def test_window_contains_reference(self, reference, cadence, fy, wsd):
        window = period_bounds(reference, cadence, fy, wsd)
        assert window.start <= reference <= window.end
        assert window.cadence is cadence

    @given(reference=dates, cadence=cadences, fy=fy_months, wsd=weekdays)
    @settings(max_examples=300)
    def test_windows_tile_without_gaps(self, reference, cadence, fy, wsd):
        window = period_bounds(reference, cadence, fy, wsd)
        following = next_window(window, fy, wsd)
        assert following.start == window.end + timedelta(days=1)
        assert previous_window(following, fy, wsd) == window

    @given(reference=dates, cadence=cadences, fy=fy_months, wsd=weekdays)
    def test_every_day_of_window_maps_to_same_window(self, reference, cadence, fy, wsd):
        window = period_bounds(reference, cadence, fy, wsd)
        assert period_bounds(window.start, cadence, fy, wsd) == window
        assert period_bounds(window.end, cadence, fy, wsd) == window

    @given(reference=dates, cadence=cadences, fy=fy_months, wsd=weekdays)
    def test_deterministic(self, reference, cadence, fy, wsd):
        assert period_bounds(reference, cadence, fy, wsd) == period_bounds(
            reference, cadence.value, fy, wsd
        )

    @given(reference=st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31)), fy=fy_months)
    def test_quarter_months_cover_quarter(self, reference, fy):
        quarter = period_bounds(reference, Cadence.QUARTERLY, fy)
        months = sub_windows(quarter, Cadence.MONTHLY, fy)
        assert len(months) == 3
        assert months[0].start == quarter.start
        assert months[-1].end == quarter.end

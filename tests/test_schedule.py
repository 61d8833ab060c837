"""Tests for recurring rule schedule evaluation."""

from datetime import date

import pytest

from settleup.models import RecurringRule
from settleup.schedule import (
    compute_rule_dates_in_period,
    get_actual_day_of_month,
    should_rule_fire_in_month,
)


def make_rule(
    day_of_month: int = 25,
    interval_months: int = 1,
    start_date: date = date(2026, 1, 1),
    end_date: date | None = None,
) -> RecurringRule:
    """Create a RecurringRule for testing."""
    return RecurringRule(
        id="rule-1",
        group_id="g1",
        description="Rent",
        day_of_month=day_of_month,
        default_payer_id="alice",
        default_amount=80000,
        interval_months=interval_months,
        start_date=start_date,
        end_date=end_date,
    )


class TestShouldRuleFireInMonth:
    """Tests for should_rule_fire_in_month."""

    @pytest.mark.parametrize("year,month", [(2026, 1), (2026, 2), (2027, 1)])
    def test_monthly_fires_every_month(self, year, month):
        assert should_rule_fire_in_month(date(2026, 1, 15), 1, year, month)

    @pytest.mark.parametrize("month,expected", [(1, True), (2, False), (3, True), (4, False)])
    def test_bimonthly(self, month, expected):
        assert should_rule_fire_in_month(date(2026, 1, 15), 2, 2026, month) is expected

    @pytest.mark.parametrize("month,expected", [(1, True), (3, False), (4, True), (7, True)])
    def test_quarterly(self, month, expected):
        assert should_rule_fire_in_month(date(2026, 1, 1), 3, 2026, month) is expected

    def test_interval_crosses_year(self):
        assert should_rule_fire_in_month(date(2025, 12, 1), 2, 2026, 2)

    def test_yearly(self):
        assert should_rule_fire_in_month(date(2025, 4, 1), 12, 2026, 4)
        assert not should_rule_fire_in_month(date(2025, 4, 1), 12, 2026, 5)

    def test_not_before_start_month(self):
        assert not should_rule_fire_in_month(date(2026, 2, 1), 1, 2026, 1)

    def test_fires_in_end_month(self):
        assert should_rule_fire_in_month(date(2026, 1, 1), 1, 2026, 3, date(2026, 3, 1))

    def test_not_after_end_month(self):
        assert not should_rule_fire_in_month(date(2026, 1, 1), 1, 2026, 4, date(2026, 3, 31))

    @pytest.mark.parametrize("interval", [0, -1])
    def test_invalid_interval(self, interval):
        assert not should_rule_fire_in_month(date(2026, 1, 1), interval, 2026, 1)

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month(self, month):
        assert not should_rule_fire_in_month(date(2026, 1, 1), 1, 2026, month)


class TestGetActualDayOfMonth:
    """Tests for day clamping."""

    def test_regular_day(self):
        assert get_actual_day_of_month(15, 2026, 6) == 15

    def test_31_in_february(self):
        assert get_actual_day_of_month(31, 2026, 2) == 28

    def test_31_in_leap_february(self):
        assert get_actual_day_of_month(31, 2024, 2) == 29

    def test_31_in_april(self):
        assert get_actual_day_of_month(31, 2026, 4) == 30

    def test_31_in_january(self):
        assert get_actual_day_of_month(31, 2026, 1) == 31


class TestComputeRuleDatesInPeriod:
    """Tests for compute_rule_dates_in_period."""

    def test_three_month_period(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=10), date(2026, 1, 1), date(2026, 3, 31)
        )

        assert dates == [date(2026, 1, 10), date(2026, 2, 10), date(2026, 3, 10)]

    def test_bimonthly_over_four_months(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=5, interval_months=2),
            date(2026, 1, 1),
            date(2026, 4, 30),
        )

        assert dates == [date(2026, 1, 5), date(2026, 3, 5)]

    def test_day_31_clamped_in_february(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=31), date(2026, 1, 1), date(2026, 3, 31)
        )

        assert dates == [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31)]

    def test_excludes_dates_before_period_start(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=5), date(2026, 1, 10), date(2026, 2, 28)
        )

        assert dates == [date(2026, 2, 5)]

    def test_excludes_dates_after_period_end(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=25), date(2026, 1, 1), date(2026, 2, 20)
        )

        assert dates == [date(2026, 1, 25)]

    def test_before_start_month_excluded(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=1, start_date=date(2026, 2, 15)),
            date(2026, 1, 1),
            date(2026, 3, 31),
        )

        assert dates == [date(2026, 2, 1), date(2026, 3, 1)]

    def test_after_end_month_excluded(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=1, end_date=date(2026, 2, 10)),
            date(2026, 1, 1),
            date(2026, 4, 30),
        )

        assert dates == [date(2026, 1, 1), date(2026, 2, 1)]

    def test_no_match_is_empty(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=20), date(2026, 1, 1), date(2026, 1, 15)
        )

        assert dates == []

    def test_inverted_period_is_empty(self):
        assert (
            compute_rule_dates_in_period(make_rule(), date(2026, 3, 1), date(2026, 1, 1))
            == []
        )

    def test_single_day_period(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=25), date(2026, 1, 25), date(2026, 1, 25)
        )

        assert dates == [date(2026, 1, 25)]

    def test_long_period_sorted_and_unique(self):
        dates = compute_rule_dates_in_period(
            make_rule(day_of_month=31, interval_months=1),
            date(2026, 1, 1),
            date(2027, 12, 31),
        )

        assert dates == sorted(set(dates))
        assert len(dates) == 24
        assert len({(d.year, d.month) for d in dates}) == 24

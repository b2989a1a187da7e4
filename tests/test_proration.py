"""
Tests for proration of monthly rates into daily earnings.
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from constants import AnomalyCode
from services.proration import build_daily_ledger, daily_rate, prorate, to_money


def weekdays_in_march(count: int):
    """The first `count` non-Sunday dates from 2026-03-02."""
    days, current = [], date(2026, 3, 2)
    while len(days) < count:
        if current.weekday() != 6:
            days.append(current)
        current += timedelta(days=1)
    return days


class TestProrate:

    def test_three_thousand_over_thirty_days(self):
        """3000 / 30 working days, 20 days taught -> 100.00/day, 2000.00 total."""
        result = prorate(Decimal("3000"), weekdays_in_march(20), 30)
        assert result.daily_rate == Decimal("100.00")
        assert result.total_earned == Decimal("2000.00")
        assert result.days_worked == 20
        assert result.anomaly is None

    def test_daily_rate_rounds_half_up(self):
        assert daily_rate(Decimal("1000"), 24) == Decimal("41.67")
        assert to_money(Decimal("0.125")) == Decimal("0.13")

    def test_duplicate_dates_counted_once(self):
        day = date(2026, 3, 2)
        result = prorate(Decimal("3000"), [day, day], 30)
        assert result.days_worked == 1

    @pytest.mark.parametrize("working_days", [0, -3])
    def test_no_working_days_yields_zero_with_anomaly(self, working_days):
        result = prorate(Decimal("3000"), weekdays_in_march(3), working_days)
        assert result.total_earned == Decimal("0.00")
        assert result.daily_amounts == {}
        assert result.anomaly.code == AnomalyCode.INVALID_WINDOW

    @pytest.mark.parametrize("monthly, working_days, taught", [
        (Decimal("1000"), 26, 13),
        (Decimal("2750"), 23, 23),
        (Decimal("999.99"), 7, 3),
    ])
    def test_daily_amounts_sum_to_total(self, monthly, working_days, taught):
        result = prorate(monthly, weekdays_in_march(taught), working_days)
        expected = to_money(daily_rate(monthly, working_days) * taught)
        assert abs(sum(result.daily_amounts.values()) - expected) <= Decimal("0.01")


class TestDailyLedger:

    def test_rates_summed_per_date_across_students(self):
        days = weekdays_in_march(2)
        ledger = build_daily_ledger([
            prorate(Decimal("3000"), days, 30),
            prorate(Decimal("1500"), days[:1], 30),
        ])
        assert [(e.date, e.amount) for e in ledger] == [
            (days[0], Decimal("150.00")),
            (days[1], Decimal("100.00")),
        ]

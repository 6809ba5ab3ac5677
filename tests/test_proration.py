"""Tests for loss-of-pay proration."""

from datetime import date
from decimal import Decimal

import pytest

from salary_engine.calculators.proration import ProrationCalculator
from salary_engine.calculators.types import ComponentKind, ComponentValue, PayPeriod

from .factories import JUNE


def _value(component_id: str, amount: str, kind=ComponentKind.EARNING) -> ComponentValue:
    return ComponentValue(component_id, component_id, kind, Decimal(amount))


def _june(*days: int) -> list[date]:
    return [date(2024, 6, d) for d in days]


VALUES = [
    _value("Basic", "5000.00"),
    _value("HRA", "2000.00"),
    _value("PF", "600.00", ComponentKind.DEDUCTION),
]


class TestProrationApply:
    """Test scaling of component values."""

    def test_three_lop_days_of_thirty(self):
        """5000 over 30 working days with 3 LOP days pays 4500.00."""
        result = ProrationCalculator().apply([_value("Basic", "5000.00")], 30, 3)

        assert result.values[0].amount == Decimal("4500.00")
        assert result.working_days == 30
        assert result.lop_days == 3
        assert result.factor == Decimal("0.9")

    def test_zero_lop_leaves_values_unchanged(self):
        result = ProrationCalculator().apply(VALUES, 30, 0)
        assert list(result.values) == VALUES
        assert result.factor == Decimal("1")

    def test_deductions_are_not_prorated(self):
        result = ProrationCalculator().apply(VALUES, 30, 3)
        amounts = {v.component_id: v.amount for v in result.values}
        assert amounts == {
            "Basic": Decimal("4500.00"),
            "HRA": Decimal("1800.00"),
            "PF": Decimal("600.00"),
        }

    def test_rounds_half_up(self):
        """1000.00 * 29/31 = 935.4838... rounds to 935.48."""
        result = ProrationCalculator().apply([_value("Basic", "1000.00")], 31, 2)
        assert result.values[0].amount == Decimal("935.48")

    def test_lop_clamped_to_working_days(self):
        result = ProrationCalculator().apply([_value("Basic", "5000.00")], 30, 45)
        assert result.lop_days == 30
        assert result.values[0].amount == Decimal("0.00")

    def test_negative_lop_treated_as_zero(self):
        result = ProrationCalculator().apply([_value("Basic", "5000.00")], 30, -2)
        assert result.lop_days == 0
        assert result.values[0].amount == Decimal("5000.00")

    def test_zero_working_days_skips_proration(self, caplog):
        with caplog.at_level("WARNING"):
            result = ProrationCalculator().apply(VALUES, 0, 3)

        assert list(result.values) == VALUES
        assert result.factor == Decimal("1")
        assert result.lop_days == 0
        assert "no working days" in caplog.text


class TestProrationDayCounting:
    """Test working day and LOP day derivation."""

    def test_calendar_days_by_default(self):
        assert ProrationCalculator().working_days(JUNE) == 30

    def test_non_working_weekdays_excluded(self):
        # June 2024: 5 Saturdays and 5 Sundays
        calc = ProrationCalculator(non_working_weekdays={6, 7})
        assert calc.working_days(JUNE) == 20

    def test_holidays_reduce_working_days(self):
        calc = ProrationCalculator()
        assert calc.working_days(JUNE, holidays=_june(17, 18)) == 28

    def test_absence_and_leave_on_same_day_counted_once(self):
        lop = ProrationCalculator().lop_days(
            JUNE, absences=_june(3, 4), unpaid_leave_days=_june(4, 5)
        )
        assert lop == 3

    def test_days_outside_period_ignored(self):
        lop = ProrationCalculator().lop_days(
            JUNE,
            absences=[date(2024, 5, 31), date(2024, 7, 1)],
            unpaid_leave_days=_june(10),
        )
        assert lop == 1

    def test_absence_on_weekend_or_holiday_not_counted(self):
        calc = ProrationCalculator(non_working_weekdays={6, 7})
        # June 1 2024 is a Saturday
        lop = calc.lop_days(
            JUNE, absences=_june(1, 3), unpaid_leave_days=_june(17), holidays=_june(17)
        )
        assert lop == 1

    def test_prorate_end_to_end(self):
        result = ProrationCalculator().prorate(
            [_value("Basic", "5000.00")],
            JUNE,
            absences=_june(3, 4),
            unpaid_leave_days=_june(20),
        )
        assert result.working_days == 30
        assert result.lop_days == 3
        assert result.values[0].amount == Decimal("4500.00")

    def test_period_with_only_off_days(self):
        weekend = PayPeriod(date(2024, 6, 1), date(2024, 6, 2))
        result = ProrationCalculator(non_working_weekdays={6, 7}).prorate(
            [_value("Basic", "100.00")], weekend, absences=[date(2024, 6, 1)]
        )
        assert result.working_days == 0
        assert result.values[0].amount == Decimal("100.00")


class TestPayPeriod:
    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            PayPeriod(date(2024, 6, 30), date(2024, 6, 1))

    def test_length_is_inclusive(self):
        assert JUNE.length == 30
        assert PayPeriod(date(2024, 6, 1), date(2024, 6, 1)).length == 1

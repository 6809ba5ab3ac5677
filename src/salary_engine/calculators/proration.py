"""Loss-of-pay proration."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from salary_engine.calculators.line_builder import LineItemBuilder
from salary_engine.calculators.types import (
    ComponentKind,
    ComponentValue,
    PayPeriod,
    ProrationResult,
)

logger = logging.getLogger(__name__)


class ProrationCalculator:
    """Scales earnings by the share of working days actually paid.

    factor = (working_days - lop_days) / working_days

    Only EARNING components are prorated; deductions pass through unchanged.
    """

    def __init__(self, non_working_weekdays: Iterable[int] = ()):
        self.non_working_weekdays = frozenset(non_working_weekdays)

    def working_dates(
        self, period: PayPeriod, holidays: Iterable[date] = ()
    ) -> set[date]:
        """Days in the period that are neither weekly off-days nor holidays."""
        holiday_set = set(holidays)
        return {
            day
            for day in period.days()
            if day.isoweekday() not in self.non_working_weekdays
            and day not in holiday_set
        }

    def working_days(self, period: PayPeriod, holidays: Iterable[date] = ()) -> int:
        return len(self.working_dates(period, holidays))

    def lop_days(
        self,
        period: PayPeriod,
        absences: Iterable[date],
        unpaid_leave_days: Iterable[date],
        holidays: Iterable[date] = (),
    ) -> int:
        """Count unpaid absence days, one per calendar day.

        An absence recorded on the same day as unpaid leave counts once.
        Days outside the period or on non-working days do not count.
        """
        working = self.working_dates(period, holidays)
        unpaid = (set(absences) | set(unpaid_leave_days)) & working
        return self._clamp(len(unpaid), len(working))

    @staticmethod
    def _clamp(lop_days: int, working_days: int) -> int:
        return max(0, min(lop_days, working_days))

    @staticmethod
    def factor(working_days: int, lop_days: int) -> Decimal:
        """Proration factor; 1 when the period has no working days."""
        if working_days <= 0:
            return Decimal("1")
        lop_days = ProrationCalculator._clamp(lop_days, working_days)
        return Decimal(working_days - lop_days) / Decimal(working_days)

    def apply(
        self,
        values: Sequence[ComponentValue],
        working_days: int,
        lop_days: int,
    ) -> ProrationResult:
        """Prorate earnings for the given day counts."""
        if working_days <= 0:
            logger.warning(
                "Pay period has no working days; skipping proration (lop_days=%s)",
                lop_days,
            )
            return ProrationResult(
                working_days=0,
                lop_days=0,
                factor=Decimal("1"),
                values=tuple(values),
            )

        lop_days = self._clamp(lop_days, working_days)
        paid_days = Decimal(working_days - lop_days)
        total_days = Decimal(working_days)

        prorated: list[ComponentValue] = []
        for value in values:
            if value.kind is ComponentKind.EARNING and lop_days:
                # Multiply before dividing so whole-day fractions stay exact
                amount = LineItemBuilder.round_to_cents(value.amount * paid_days / total_days)
                value = replace(value, amount=amount)
            prorated.append(value)

        return ProrationResult(
            working_days=working_days,
            lop_days=lop_days,
            factor=self.factor(working_days, lop_days),
            values=tuple(prorated),
        )

    def prorate(
        self,
        values: Sequence[ComponentValue],
        period: PayPeriod,
        absences: Iterable[date] = (),
        unpaid_leave_days: Iterable[date] = (),
        holidays: Iterable[date] = (),
    ) -> ProrationResult:
        """Derive day counts from attendance/leave data and apply them."""
        holidays = list(holidays)
        working_days = self.working_days(period, holidays)
        lop_days = self.lop_days(period, absences, unpaid_leave_days, holidays)
        return self.apply(values, working_days, lop_days)

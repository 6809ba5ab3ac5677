"""Payslip assembly from prorated component values."""

from __future__ import annotations

from salary_engine.calculators.line_builder import LineItemBuilder
from salary_engine.calculators.types import (
    AssembledPayslip,
    ComponentKind,
    LineItem,
    ProrationResult,
)


class PayslipAssembler:
    """Partitions line items and computes totals.

    GROSS = sum(EARNING)
    DEDUCTIONS = sum(DEDUCTION)
    NET = GROSS - DEDUCTIONS
    """

    def __init__(self, engine_version: str = ""):
        self.engine_version = engine_version

    def assemble(self, employee_id: str, proration: ProrationResult) -> AssembledPayslip:
        earnings: list[LineItem] = []
        deductions: list[LineItem] = []

        for value in proration.values:
            line = LineItemBuilder.create_line(value)
            if value.kind is ComponentKind.EARNING:
                earnings.append(line)
            else:
                deductions.append(line)

        gross = LineItemBuilder.sum_amounts(l.amount for l in earnings)
        total_deductions = LineItemBuilder.sum_amounts(l.amount for l in deductions)
        net = LineItemBuilder.round_to_cents(gross - total_deductions)

        return AssembledPayslip(
            employee_id=employee_id,
            earnings=tuple(earnings),
            deductions=tuple(deductions),
            gross_earnings=gross,
            total_deductions=total_deductions,
            net_pay=net,
            working_days=proration.working_days,
            lop_days=proration.lop_days,
            calculation_id=LineItemBuilder.compute_calculation_id(
                employee_id,
                earnings,
                deductions,
                proration.working_days,
                proration.lop_days,
                self.engine_version,
            ),
        )

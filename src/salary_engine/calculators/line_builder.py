"""Line item builder with fixed-point money helpers and idempotent hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from salary_engine.calculators.types import ComponentValue, LineItem


class LineItemBuilder:
    """Builds payslip line items and totals.

    Rounding:
    - Every amount is held at 2 decimals, ROUND_HALF_UP
    - Sums are re-rounded after each addition, never accumulated raw
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return amount.quantize(LineItemBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def add(left: Decimal, right: Decimal) -> Decimal:
        """Add two amounts and round the result to cents."""
        return LineItemBuilder.round_to_cents(left + right)

    @staticmethod
    def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
        """Sum with rounding applied at every step."""
        total = Decimal("0.00")
        for amount in amounts:
            total = LineItemBuilder.add(total, amount)
        return total

    @staticmethod
    def create_line(value: ComponentValue) -> LineItem:
        """Create a line item from a computed component value."""
        return LineItem(
            name=value.name,
            amount=LineItemBuilder.round_to_cents(value.amount),
            source_component_id=value.component_id,
        )

    @staticmethod
    def compute_line_hash(line: LineItem) -> str:
        """Compute deterministic hash for a single line item."""
        json_str = json.dumps(line.to_canonical_dict(), sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def compute_calculation_id(
        employee_id: str,
        earnings: Sequence[LineItem],
        deductions: Sequence[LineItem],
        working_days: int,
        lop_days: int,
        engine_version: str = "",
    ) -> str:
        """Fingerprint of everything that defines a payslip's numbers."""
        data = {
            "employee_id": employee_id,
            "earnings": [LineItemBuilder.compute_line_hash(l) for l in earnings],
            "deductions": [LineItemBuilder.compute_line_hash(l) for l in deductions],
            "working_days": working_days,
            "lop_days": lop_days,
            "engine_version": engine_version,
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

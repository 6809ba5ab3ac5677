"""Type definitions for the salary calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Union


class ComponentKind(str, Enum):
    """Whether a component adds to or subtracts from pay."""

    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"


class CalcType(str, Enum):
    """Calculation rule types."""

    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"
    FORMULA = "FORMULA"


# ===== Component rules (tagged union) =====


@dataclass(frozen=True)
class FixedRule:
    """Flat amount, possibly overridden per assignment."""

    amount: Decimal | None = None

    @property
    def calc_type(self) -> CalcType:
        return CalcType.FIXED


@dataclass(frozen=True)
class PercentageRule:
    """Fraction of another component, or of basic salary when base is None."""

    rate: Decimal
    base_component_id: str | None = None

    @property
    def calc_type(self) -> CalcType:
        return CalcType.PERCENTAGE


@dataclass(frozen=True)
class FormulaRule:
    """Arithmetic expression over basicSalary and earlier components."""

    expression: str

    @property
    def calc_type(self) -> CalcType:
        return CalcType.FORMULA


ComponentRule = Union[FixedRule, PercentageRule, FormulaRule]


@dataclass(frozen=True)
class ComponentSpec:
    """One component as mapped into a structure."""

    component_id: str
    name: str
    kind: ComponentKind
    rule: ComponentRule
    is_taxable: bool = True


@dataclass(frozen=True)
class StructureSpec:
    """A salary structure: an ordered set of component specs."""

    structure_id: str
    name: str
    components: tuple[ComponentSpec, ...]
    is_active: bool = True
    organization_id: str | None = None


@dataclass(frozen=True)
class AssignmentSpec:
    """An employee's binding to a structure."""

    assignment_id: str
    employee_id: str
    structure_id: str
    basic_salary: Decimal
    effective_date: date | None = None
    overrides: dict[str, Decimal] = field(default_factory=dict)  # component_id -> amount


@dataclass(frozen=True)
class EmployeeRef:
    """Minimal reference to an employee targeted by a run."""

    employee_id: str
    organization_id: str
    name: str | None = None


@dataclass(frozen=True)
class PayPeriod:
    """Inclusive pay period."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Pay period end {self.end} is before start {self.start}")

    @property
    def length(self) -> int:
        return (self.end - self.start).days + 1

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class ComponentValue:
    """Computed amount for one component."""

    component_id: str
    name: str
    kind: ComponentKind
    amount: Decimal


@dataclass(frozen=True)
class LineItem:
    """A payslip line as persisted."""

    name: str
    amount: Decimal
    source_component_id: str

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing and JSON storage."""
        return {
            "name": self.name,
            "amount": str(self.amount),
            "source_component_id": self.source_component_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(
            name=data["name"],
            amount=Decimal(str(data["amount"])),
            source_component_id=data["source_component_id"],
        )


@dataclass(frozen=True)
class ProrationResult:
    """Outcome of proration for one employee and period."""

    working_days: int
    lop_days: int
    factor: Decimal
    values: tuple[ComponentValue, ...]


@dataclass(frozen=True)
class AssembledPayslip:
    """Payslip contents before persistence."""

    employee_id: str
    earnings: tuple[LineItem, ...]
    deductions: tuple[LineItem, ...]
    gross_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    working_days: int
    lop_days: int
    calculation_id: str

    @property
    def summary(self) -> dict[str, int]:
        return {"working_days": self.working_days, "lop_days": self.lop_days}

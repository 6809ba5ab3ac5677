"""Collaborator protocols and the records exchanged with them.

The engine never talks to storage directly; it is handed implementations of
these protocols (see salary_engine.stores for in-memory and SQL versions).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol, Sequence

from salary_engine.calculators.types import (
    AssembledPayslip,
    AssignmentSpec,
    EmployeeRef,
    LineItem,
    PayPeriod,
    StructureSpec,
)


@dataclass(frozen=True)
class EmployeeFailure:
    """Why one employee produced no payslip."""

    employee_id: str
    error_kind: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "employee_id": self.employee_id,
            "error_kind": self.error_kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class RunRecord:
    """Persisted state of a payroll run."""

    run_id: str
    organization_id: str
    period: PayPeriod
    status: str
    target_employee_ids: tuple[str, ...]
    failures: tuple[EmployeeFailure, ...] = ()
    aborted: bool = False
    payment_date: date | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class PayslipRecord:
    """Persisted payslip."""

    payslip_id: str
    payroll_id: str
    employee_id: str
    organization_id: str
    earnings: tuple[LineItem, ...]
    deductions: tuple[LineItem, ...]
    gross_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    working_days: int
    lop_days: int
    calculation_id: str
    emailed: bool = False
    generated_at: datetime | None = None

    @property
    def summary(self) -> dict[str, int]:
        return {"working_days": self.working_days, "lop_days": self.lop_days}


@dataclass(frozen=True)
class EmployeePayslip:
    """A payslip together with the pay period and status of its run."""

    payslip: PayslipRecord
    period: PayPeriod
    run_status: str
    payment_date: date | None = None


@dataclass(frozen=True)
class RunHandle:
    """Returned by initiate_run."""

    run_id: str
    status: str
    employee_count: int


@dataclass(frozen=True)
class RunStatus:
    """Snapshot of a run for callers."""

    run_id: str
    organization_id: str
    period: PayPeriod
    status: str
    total_employees: int
    payslip_count: int
    failures: tuple[EmployeeFailure, ...] = field(default_factory=tuple)
    aborted: bool = False
    payment_date: date | None = None

    @property
    def failed_employee_ids(self) -> list[str]:
        return [f.employee_id for f in self.failures]


class EmployeeDirectory(Protocol):
    async def active_employees(
        self, organization_id: str, employee_ids: Sequence[str] | None = None
    ) -> list[EmployeeRef]: ...


class AssignmentStore(Protocol):
    async def active_assignment(self, employee_id: str) -> AssignmentSpec | None: ...


class StructureStore(Protocol):
    async def get(self, structure_id: str) -> StructureSpec:
        """Raises StructureNotFoundError when missing."""
        ...


class AttendanceStore(Protocol):
    async def absences_in_range(
        self, employee_id: str, start: date, end: date
    ) -> list[date]: ...


class LeaveStore(Protocol):
    async def unpaid_leave_days_in_range(
        self, employee_id: str, start: date, end: date
    ) -> list[date]: ...


class HolidayStore(Protocol):
    async def holidays_in_range(
        self, organization_id: str, start: date, end: date
    ) -> list[date]: ...


class PayrollStore(Protocol):
    """Persistence boundary for runs and payslips.

    Every method is its own transaction.
    """

    async def create_run(
        self, organization_id: str, period: PayPeriod, employee_ids: Sequence[str]
    ) -> RunRecord:
        """Create a DRAFT run; raises DuplicateRunConflict."""
        ...

    async def get_run(self, run_id: str) -> RunRecord | None: ...

    async def list_runs(
        self,
        organization_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[RunRecord], int]: ...

    async def update_run_status(
        self,
        run_id: str,
        from_statuses: set[str],
        to_status: str,
        payment_date: date | None = None,
    ) -> RunRecord:
        """Conditional update; raises InvalidTransitionError if the status moved."""
        ...

    async def record_failures(
        self, run_id: str, failures: Sequence[EmployeeFailure], aborted: bool = False
    ) -> None: ...

    async def create_payslip(
        self, run_id: str, organization_id: str, payslip: AssembledPayslip
    ) -> PayslipRecord: ...

    async def list_payslips(self, run_id: str) -> list[PayslipRecord]: ...

    async def list_employee_payslips(
        self,
        organization_id: str,
        employee_id: str,
        period_from: date | None = None,
        period_to: date | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[EmployeePayslip], int]:
        """One employee's payslips across runs, newest pay period first.

        period_from bounds the run's period start, period_to its period end.
        """
        ...

    async def get_payslip(self, payslip_id: str) -> PayslipRecord | None: ...

    async def mark_payslip_emailed(self, payslip_id: str) -> PayslipRecord: ...

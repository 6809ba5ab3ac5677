"""In-memory collaborator implementations.

Used by the test-suite and for running the engine without a database.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Sequence
from uuid import uuid4

from salary_engine.calculators.types import (
    AssembledPayslip,
    AssignmentSpec,
    EmployeeRef,
    PayPeriod,
    StructureSpec,
)
from salary_engine.services.errors import (
    DuplicateRunConflict,
    PayslipNotFoundError,
    RunNotFoundError,
    StructureNotFoundError,
)
from salary_engine.services.ports import (
    EmployeeFailure,
    EmployeePayslip,
    PayslipRecord,
    RunRecord,
)
from salary_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollStatus,
)


class InMemoryEmployeeDirectory:
    def __init__(self, employees: Sequence[EmployeeRef] = (), inactive: Sequence[str] = ()):
        self._employees = {e.employee_id: e for e in employees}
        self._inactive = set(inactive)

    def add(self, employee: EmployeeRef, active: bool = True) -> None:
        self._employees[employee.employee_id] = employee
        if active:
            self._inactive.discard(employee.employee_id)
        else:
            self._inactive.add(employee.employee_id)

    async def active_employees(
        self, organization_id: str, employee_ids: Sequence[str] | None = None
    ) -> list[EmployeeRef]:
        found = [
            e
            for e in self._employees.values()
            if e.organization_id == organization_id and e.employee_id not in self._inactive
        ]
        if employee_ids is not None:
            wanted = set(employee_ids)
            found = [e for e in found if e.employee_id in wanted]
        return sorted(found, key=lambda e: e.employee_id)


class InMemoryAssignmentStore:
    """Keeps at most one active assignment per employee."""

    def __init__(self) -> None:
        self._active: dict[str, AssignmentSpec] = {}
        self._history: list[AssignmentSpec] = []

    def assign(self, assignment: AssignmentSpec) -> None:
        """Activate an assignment, replacing any previously active one."""
        self._active[assignment.employee_id] = assignment
        self._history.append(assignment)

    def deactivate(self, employee_id: str) -> None:
        self._active.pop(employee_id, None)

    async def active_assignment(self, employee_id: str) -> AssignmentSpec | None:
        return self._active.get(employee_id)


class InMemoryStructureStore:
    def __init__(self, structures: Sequence[StructureSpec] = ()):
        self._structures = {s.structure_id: s for s in structures}

    def put(self, structure: StructureSpec) -> None:
        self._structures[structure.structure_id] = structure

    async def get(self, structure_id: str) -> StructureSpec:
        try:
            return self._structures[structure_id]
        except KeyError:
            raise StructureNotFoundError(structure_id) from None


class InMemoryAttendanceStore:
    def __init__(self) -> None:
        self._absences: dict[str, set[date]] = {}

    def mark_absent(self, employee_id: str, *days: date) -> None:
        self._absences.setdefault(employee_id, set()).update(days)

    async def absences_in_range(self, employee_id: str, start: date, end: date) -> list[date]:
        return sorted(d for d in self._absences.get(employee_id, ()) if start <= d <= end)


class InMemoryLeaveStore:
    def __init__(self) -> None:
        self._unpaid: dict[str, set[date]] = {}

    def add_unpaid_leave(self, employee_id: str, *days: date) -> None:
        self._unpaid.setdefault(employee_id, set()).update(days)

    async def unpaid_leave_days_in_range(
        self, employee_id: str, start: date, end: date
    ) -> list[date]:
        return sorted(d for d in self._unpaid.get(employee_id, ()) if start <= d <= end)


class InMemoryHolidayStore:
    def __init__(self) -> None:
        self._holidays: dict[str, set[date]] = {}

    def add_holiday(self, organization_id: str, day: date) -> None:
        self._holidays.setdefault(organization_id, set()).add(day)

    async def holidays_in_range(self, organization_id: str, start: date, end: date) -> list[date]:
        return sorted(d for d in self._holidays.get(organization_id, ()) if start <= d <= end)


class InMemoryPayrollStore:
    """Runs and payslips held in dicts.

    Run creation is serialized with a lock so the duplicate-period check and
    the insert happen atomically.
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunRecord] = {}
        self._payslips: dict[str, PayslipRecord] = {}
        self._create_lock = asyncio.Lock()

    async def create_run(
        self, organization_id: str, period: PayPeriod, employee_ids: Sequence[str]
    ) -> RunRecord:
        async with self._create_lock:
            for run in self._runs.values():
                if (
                    run.organization_id == organization_id
                    and run.period == period
                    and PayrollRunStateMachine.blocks_period(run.status)
                ):
                    raise DuplicateRunConflict(
                        organization_id, period.start, period.end, run.run_id, run.status
                    )
            run = RunRecord(
                run_id=str(uuid4()),
                organization_id=organization_id,
                period=period,
                status=PayrollStatus.DRAFT.value,
                target_employee_ids=tuple(employee_ids),
                created_at=datetime.now(timezone.utc),
            )
            self._runs[run.run_id] = run
            return run

    async def get_run(self, run_id: str) -> RunRecord | None:
        return self._runs.get(run_id)

    async def list_runs(
        self,
        organization_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[RunRecord], int]:
        runs = [
            r
            for r in self._runs.values()
            if r.organization_id == organization_id and (status is None or r.status == status)
        ]
        runs.sort(key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return runs[offset : offset + limit], len(runs)

    async def update_run_status(
        self,
        run_id: str,
        from_statuses: set[str],
        to_status: str,
        payment_date: date | None = None,
    ) -> RunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status not in from_statuses:
            raise InvalidTransitionError(run.status, to_status, "Status changed concurrently")
        updated = replace(
            run,
            status=PayrollStatus(to_status).value,
            payment_date=payment_date or run.payment_date,
        )
        self._runs[run_id] = updated
        return updated

    async def record_failures(
        self, run_id: str, failures: Sequence[EmployeeFailure], aborted: bool = False
    ) -> None:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        self._runs[run_id] = replace(run, failures=tuple(failures), aborted=aborted)

    async def create_payslip(
        self, run_id: str, organization_id: str, payslip: AssembledPayslip
    ) -> PayslipRecord:
        for existing in self._payslips.values():
            if existing.payroll_id == run_id and existing.employee_id == payslip.employee_id:
                raise ValueError(
                    f"Payslip for employee {payslip.employee_id} already exists in run {run_id}"
                )
        record = PayslipRecord(
            payslip_id=str(uuid4()),
            payroll_id=run_id,
            employee_id=payslip.employee_id,
            organization_id=organization_id,
            earnings=payslip.earnings,
            deductions=payslip.deductions,
            gross_earnings=payslip.gross_earnings,
            total_deductions=payslip.total_deductions,
            net_pay=payslip.net_pay,
            working_days=payslip.working_days,
            lop_days=payslip.lop_days,
            calculation_id=payslip.calculation_id,
            generated_at=datetime.now(timezone.utc),
        )
        self._payslips[record.payslip_id] = record
        return record

    async def list_payslips(self, run_id: str) -> list[PayslipRecord]:
        return sorted(
            (p for p in self._payslips.values() if p.payroll_id == run_id),
            key=lambda p: p.employee_id,
        )

    async def list_employee_payslips(
        self,
        organization_id: str,
        employee_id: str,
        period_from: date | None = None,
        period_to: date | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[EmployeePayslip], int]:
        found = []
        for payslip in self._payslips.values():
            if payslip.organization_id != organization_id or payslip.employee_id != employee_id:
                continue
            run = self._runs[payslip.payroll_id]
            if period_from is not None and run.period.start < period_from:
                continue
            if period_to is not None and run.period.end > period_to:
                continue
            found.append(EmployeePayslip(payslip, run.period, run.status, run.payment_date))
        found.sort(key=lambda e: (e.period.start, e.payslip.payslip_id), reverse=True)
        return found[offset : offset + limit], len(found)

    async def get_payslip(self, payslip_id: str) -> PayslipRecord | None:
        return self._payslips.get(payslip_id)

    async def mark_payslip_emailed(self, payslip_id: str) -> PayslipRecord:
        payslip = self._payslips.get(payslip_id)
        if payslip is None:
            raise PayslipNotFoundError(payslip_id)
        updated = replace(payslip, emailed=True)
        self._payslips[payslip_id] = updated
        return updated

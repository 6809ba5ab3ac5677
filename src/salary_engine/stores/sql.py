"""SQLAlchemy-backed collaborator implementations.

Each method opens its own session and commits before returning, so a
payslip insert is one transaction and a failure never touches other
employees' rows.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from salary_engine.calculators.structure_evaluator import build_component_spec
from salary_engine.calculators.types import (
    AssembledPayslip,
    AssignmentSpec,
    EmployeeRef,
    LineItem,
    PayPeriod,
    StructureSpec,
)
from salary_engine.config import Settings, get_settings
from salary_engine.models import (
    AttendanceRecord,
    Employee,
    Holiday,
    LeaveApplication,
    LeaveType,
    Payroll,
    Payslip,
    SalaryAssignment,
    SalaryComponentMapping,
    SalaryStructure,
)
from salary_engine.services.errors import (
    DuplicateRunConflict,
    PayslipNotFoundError,
    RunNotFoundError,
    StructureNotFoundError,
)
from salary_engine.services.events import EventEmitter
from salary_engine.services.orchestrator import PayrollRunOrchestrator
from salary_engine.services.ports import (
    EmployeeFailure,
    EmployeePayslip,
    PayslipRecord,
    RunRecord,
)
from salary_engine.services.state_machine import InvalidTransitionError, PayrollStatus

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _as_uuid(value: str | UUID) -> UUID | None:
    """Parse an id, returning None for anything that isn't a UUID."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _days_between(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


class SqlEmployeeDirectory:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def active_employees(
        self, organization_id: str, employee_ids: Sequence[str] | None = None
    ) -> list[EmployeeRef]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []

        query = select(Employee).where(
            Employee.organization_id == org_uuid,
            Employee.is_active.is_(True),
        )
        if employee_ids is not None:
            wanted = [u for u in (_as_uuid(eid) for eid in employee_ids) if u is not None]
            if not wanted:
                return []
            query = query.where(Employee.employee_id.in_(wanted))

        async with self._session_factory() as session:
            result = await session.execute(query)
            employees = result.scalars().all()

        refs = [
            EmployeeRef(
                employee_id=str(e.employee_id),
                organization_id=str(e.organization_id),
                name=e.full_name,
            )
            for e in employees
        ]
        return sorted(refs, key=lambda r: r.employee_id)


class SqlAssignmentStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @staticmethod
    def _to_spec(assignment: SalaryAssignment) -> AssignmentSpec:
        overrides = {
            str(component_id): Decimal(str(amount))
            for component_id, amount in (assignment.custom_values or {}).items()
            if amount is not None
        }
        return AssignmentSpec(
            assignment_id=str(assignment.assignment_id),
            employee_id=str(assignment.employee_id),
            structure_id=str(assignment.structure_id),
            basic_salary=Decimal(str(assignment.basic_salary)),
            effective_date=assignment.effective_date,
            overrides=overrides,
        )

    async def active_assignment(self, employee_id: str) -> AssignmentSpec | None:
        employee_uuid = _as_uuid(employee_id)
        if employee_uuid is None:
            return None

        async with self._session_factory() as session:
            result = await session.execute(
                select(SalaryAssignment)
                .where(
                    SalaryAssignment.employee_id == employee_uuid,
                    SalaryAssignment.is_active.is_(True),
                )
                .order_by(SalaryAssignment.effective_date.desc())
                .limit(1)
            )
            assignment = result.scalar_one_or_none()

        return self._to_spec(assignment) if assignment is not None else None

    async def assign_structure(
        self,
        organization_id: str,
        employee_id: str,
        structure_id: str,
        basic_salary: Decimal,
        effective_date: date,
        custom_values: Mapping[str, Any] | None = None,
    ) -> AssignmentSpec:
        """Activate a new assignment and deactivate the employee's previous one.

        Both happen in one transaction.
        """
        employee_uuid = UUID(str(employee_id))
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(SalaryAssignment)
                    .where(
                        SalaryAssignment.employee_id == employee_uuid,
                        SalaryAssignment.is_active.is_(True),
                    )
                    .values(is_active=False)
                )
                assignment = SalaryAssignment(
                    organization_id=UUID(str(organization_id)),
                    employee_id=employee_uuid,
                    structure_id=UUID(str(structure_id)),
                    basic_salary=basic_salary,
                    effective_date=effective_date,
                    custom_values={k: str(v) for k, v in (custom_values or {}).items()},
                    is_active=True,
                )
                session.add(assignment)
                await session.flush()
                spec = self._to_spec(assignment)

        logger.info(
            "Assigned structure %s to employee %s effective %s",
            structure_id,
            employee_id,
            effective_date,
        )
        return spec


class SqlStructureStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def get(self, structure_id: str) -> StructureSpec:
        structure_uuid = _as_uuid(structure_id)
        if structure_uuid is None:
            raise StructureNotFoundError(structure_id)

        async with self._session_factory() as session:
            result = await session.execute(
                select(SalaryStructure)
                .where(SalaryStructure.structure_id == structure_uuid)
                .options(
                    selectinload(SalaryStructure.mappings).selectinload(
                        SalaryComponentMapping.component
                    )
                )
            )
            structure = result.scalar_one_or_none()

        if structure is None:
            raise StructureNotFoundError(structure_id)

        components = tuple(
            build_component_spec(
                component_id=str(m.component_id),
                name=m.component.name,
                kind=m.component.kind,
                calc_type=m.component.calc_type,
                defined_value=m.defined_value,
                percentage_of_component_id=(
                    str(m.percentage_of_component_id)
                    if m.percentage_of_component_id is not None
                    else None
                ),
                formula=m.component.formula,
                is_taxable=m.component.is_taxable,
            )
            for m in structure.mappings
        )
        return StructureSpec(
            structure_id=str(structure.structure_id),
            name=structure.name,
            components=components,
            is_active=structure.is_active,
            organization_id=str(structure.organization_id),
        )


class SqlAttendanceStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def absences_in_range(self, employee_id: str, start: date, end: date) -> list[date]:
        employee_uuid = _as_uuid(employee_id)
        if employee_uuid is None:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(AttendanceRecord.work_date).where(
                    AttendanceRecord.employee_id == employee_uuid,
                    AttendanceRecord.status == "ABSENT",
                    AttendanceRecord.work_date >= start,
                    AttendanceRecord.work_date <= end,
                )
            )
            return sorted(result.scalars().all())


class SqlLeaveStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def unpaid_leave_days_in_range(
        self, employee_id: str, start: date, end: date
    ) -> list[date]:
        """Days inside [start, end] covered by approved leave of an unpaid type."""
        employee_uuid = _as_uuid(employee_id)
        if employee_uuid is None:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(LeaveApplication.start_date, LeaveApplication.end_date)
                .join(LeaveType, LeaveApplication.leave_type_id == LeaveType.leave_type_id)
                .where(
                    LeaveApplication.employee_id == employee_uuid,
                    LeaveApplication.status == "APPROVED",
                    LeaveType.is_paid.is_(False),
                    LeaveApplication.start_date <= end,
                    LeaveApplication.end_date >= start,
                )
            )
            rows = result.all()

        days: set[date] = set()
        for leave_start, leave_end in rows:
            days.update(_days_between(max(leave_start, start), min(leave_end, end)))
        return sorted(days)


class SqlHolidayStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def holidays_in_range(self, organization_id: str, start: date, end: date) -> list[date]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(Holiday.holiday_date).where(
                    Holiday.organization_id == org_uuid,
                    Holiday.holiday_date >= start,
                    Holiday.holiday_date <= end,
                )
            )
            return sorted(result.scalars().all())


class SqlPayrollStore:
    """Runs and payslips in the payroll and payslip tables.

    The partial unique index on (organization_id, period_start, period_end)
    backs the duplicate check, so two concurrent initiations cannot both
    succeed.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    # === Mapping ===

    @staticmethod
    def _to_run_record(payroll: Payroll) -> RunRecord:
        log = payroll.processing_log or {}
        return RunRecord(
            run_id=str(payroll.payroll_id),
            organization_id=str(payroll.organization_id),
            period=PayPeriod(payroll.period_start, payroll.period_end),
            status=payroll.status,
            target_employee_ids=tuple(str(eid) for eid in payroll.target_employee_ids or ()),
            failures=tuple(
                EmployeeFailure(
                    employee_id=f["employee_id"],
                    error_kind=f["error_kind"],
                    message=f["message"],
                )
                for f in log.get("failures", ())
            ),
            aborted=bool(log.get("aborted", False)),
            payment_date=payroll.payment_date,
            created_at=payroll.created_at,
        )

    @staticmethod
    def _to_payslip_record(payslip: Payslip) -> PayslipRecord:
        summary = payslip.summary_info or {}
        return PayslipRecord(
            payslip_id=str(payslip.payslip_id),
            payroll_id=str(payslip.payroll_id),
            employee_id=str(payslip.employee_id),
            organization_id=str(payslip.organization_id),
            earnings=tuple(LineItem.from_dict(d) for d in payslip.earnings_breakdown),
            deductions=tuple(LineItem.from_dict(d) for d in payslip.deductions_breakdown),
            gross_earnings=Decimal(str(payslip.gross_earnings)),
            total_deductions=Decimal(str(payslip.total_deductions)),
            net_pay=Decimal(str(payslip.net_pay)),
            working_days=int(summary.get("working_days", 0)),
            lop_days=int(summary.get("lop_days", 0)),
            calculation_id=payslip.calculation_id,
            emailed=payslip.emailed,
            generated_at=payslip.generated_at,
        )

    # === Runs ===

    async def create_run(
        self, organization_id: str, period: PayPeriod, employee_ids: Sequence[str]
    ) -> RunRecord:
        org_uuid = UUID(str(organization_id))
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(Payroll).where(
                            Payroll.organization_id == org_uuid,
                            Payroll.period_start == period.start,
                            Payroll.period_end == period.end,
                            Payroll.status != PayrollStatus.FAILED.value,
                        )
                    )
                    existing = result.scalars().first()
                    if existing is not None:
                        raise DuplicateRunConflict(
                            organization_id,
                            period.start,
                            period.end,
                            str(existing.payroll_id),
                            existing.status,
                        )

                    payroll = Payroll(
                        organization_id=org_uuid,
                        period_start=period.start,
                        period_end=period.end,
                        status=PayrollStatus.DRAFT.value,
                        target_employee_ids=[str(eid) for eid in employee_ids],
                    )
                    session.add(payroll)
                    await session.flush()
                    await session.refresh(payroll)
                    return self._to_run_record(payroll)
        except IntegrityError as e:
            # Lost the race against a concurrent initiation for the same period
            raise DuplicateRunConflict(organization_id, period.start, period.end) from e

    async def get_run(self, run_id: str) -> RunRecord | None:
        run_uuid = _as_uuid(run_id)
        if run_uuid is None:
            return None
        async with self._session_factory() as session:
            payroll = await session.get(Payroll, run_uuid)
            return self._to_run_record(payroll) if payroll is not None else None

    async def list_runs(
        self,
        organization_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[RunRecord], int]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return [], 0

        query = select(Payroll).where(Payroll.organization_id == org_uuid)
        if status:
            query = query.where(Payroll.status == status)

        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(query.subquery())) or 0
            query = query.order_by(Payroll.created_at.desc(), Payroll.period_start.desc())
            result = await session.execute(query.offset(offset).limit(limit))
            runs = [self._to_run_record(p) for p in result.scalars().all()]
        return runs, total

    async def update_run_status(
        self,
        run_id: str,
        from_statuses: set[str],
        to_status: str,
        payment_date: date | None = None,
    ) -> RunRecord:
        run_uuid = _as_uuid(run_id)
        if run_uuid is None:
            raise RunNotFoundError(run_id)

        values: dict[str, Any] = {"status": PayrollStatus(to_status).value}
        if payment_date is not None:
            values["payment_date"] = payment_date

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Payroll)
                    .where(
                        Payroll.payroll_id == run_uuid,
                        Payroll.status.in_([PayrollStatus(s).value for s in from_statuses]),
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                payroll = await session.get(Payroll, run_uuid, populate_existing=True)
                if payroll is None:
                    raise RunNotFoundError(run_id)
                if result.rowcount == 0:
                    raise InvalidTransitionError(
                        payroll.status, to_status, "Status changed concurrently"
                    )
                return self._to_run_record(payroll)

    async def record_failures(
        self, run_id: str, failures: Sequence[EmployeeFailure], aborted: bool = False
    ) -> None:
        run_uuid = _as_uuid(run_id)
        async with self._session_factory() as session:
            async with session.begin():
                payroll = await session.get(Payroll, run_uuid) if run_uuid else None
                if payroll is None:
                    raise RunNotFoundError(run_id)
                payroll.processing_log = {
                    "failures": [f.to_dict() for f in failures],
                    "aborted": aborted,
                }

    # === Payslips ===

    async def create_payslip(
        self, run_id: str, organization_id: str, payslip: AssembledPayslip
    ) -> PayslipRecord:
        row = Payslip(
            payroll_id=UUID(str(run_id)),
            employee_id=UUID(str(payslip.employee_id)),
            organization_id=UUID(str(organization_id)),
            earnings_breakdown=[li.to_canonical_dict() for li in payslip.earnings],
            deductions_breakdown=[li.to_canonical_dict() for li in payslip.deductions],
            gross_earnings=payslip.gross_earnings,
            total_deductions=payslip.total_deductions,
            net_pay=payslip.net_pay,
            summary_info=payslip.summary,
            calculation_id=payslip.calculation_id,
            emailed=False,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
                    await session.flush()
                    await session.refresh(row)
                    return self._to_payslip_record(row)
        except IntegrityError as e:
            raise ValueError(
                f"Payslip for employee {payslip.employee_id} already exists in run {run_id}"
            ) from e

    async def list_payslips(self, run_id: str) -> list[PayslipRecord]:
        run_uuid = _as_uuid(run_id)
        if run_uuid is None:
            return []
        async with self._session_factory() as session:
            result = await session.execute(select(Payslip).where(Payslip.payroll_id == run_uuid))
            records = [self._to_payslip_record(p) for p in result.scalars().all()]
        return sorted(records, key=lambda p: p.employee_id)

    async def list_employee_payslips(
        self,
        organization_id: str,
        employee_id: str,
        period_from: date | None = None,
        period_to: date | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[EmployeePayslip], int]:
        org_uuid = _as_uuid(organization_id)
        employee_uuid = _as_uuid(employee_id)
        if org_uuid is None or employee_uuid is None:
            return [], 0

        conditions = [Payslip.organization_id == org_uuid, Payslip.employee_id == employee_uuid]
        if period_from is not None:
            conditions.append(Payroll.period_start >= period_from)
        if period_to is not None:
            conditions.append(Payroll.period_end <= period_to)
        on_run = Payslip.payroll_id == Payroll.payroll_id

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count(Payslip.payslip_id)).join(Payroll, on_run).where(*conditions)
            ) or 0
            query = (
                select(Payslip, Payroll)
                .join(Payroll, on_run)
                .where(*conditions)
                .order_by(
                    Payroll.period_start.desc(), Payslip.generated_at.desc(), Payslip.payslip_id
                )
            )
            result = await session.execute(query.offset(offset).limit(limit))
            items = [
                EmployeePayslip(
                    payslip=self._to_payslip_record(payslip),
                    period=PayPeriod(payroll.period_start, payroll.period_end),
                    run_status=payroll.status,
                    payment_date=payroll.payment_date,
                )
                for payslip, payroll in result.all()
            ]
        return items, total

    async def get_payslip(self, payslip_id: str) -> PayslipRecord | None:
        payslip_uuid = _as_uuid(payslip_id)
        if payslip_uuid is None:
            return None
        async with self._session_factory() as session:
            payslip = await session.get(Payslip, payslip_uuid)
            return self._to_payslip_record(payslip) if payslip is not None else None

    async def mark_payslip_emailed(self, payslip_id: str) -> PayslipRecord:
        payslip_uuid = _as_uuid(payslip_id)
        async with self._session_factory() as session:
            async with session.begin():
                payslip = await session.get(Payslip, payslip_uuid) if payslip_uuid else None
                if payslip is None:
                    raise PayslipNotFoundError(payslip_id)
                payslip.emailed = True
                payslip.emailed_at = datetime.now(timezone.utc)
                await session.flush()
                return self._to_payslip_record(payslip)


def create_sql_orchestrator(
    session_factory: SessionFactory,
    settings: Settings | None = None,
    emitter: EventEmitter | None = None,
) -> PayrollRunOrchestrator:
    """Wire a PayrollRunOrchestrator to the SQL stores."""
    settings = settings or get_settings()
    return PayrollRunOrchestrator(
        employees=SqlEmployeeDirectory(session_factory),
        assignments=SqlAssignmentStore(session_factory),
        structures=SqlStructureStore(session_factory),
        attendance=SqlAttendanceStore(session_factory),
        leave=SqlLeaveStore(session_factory),
        payroll_store=SqlPayrollStore(session_factory),
        holidays=SqlHolidayStore(session_factory),
        options=settings.engine_options(),
        emitter=emitter,
        engine_version=settings.engine_version,
    )

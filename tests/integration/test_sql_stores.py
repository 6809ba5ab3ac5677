"""SQL store and end-to-end run tests against SQLite."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from salary_engine.calculators.types import AssembledPayslip, LineItem, PayPeriod
from salary_engine.models import (
    Payroll,
    Payslip,
    SalaryAssignment,
    SalaryComponent,
    SalaryComponentMapping,
)
from salary_engine.services.errors import (
    DuplicateRunConflict,
    PayslipNotFoundError,
    RunNotFoundError,
    StructureNotFoundError,
)
from salary_engine.services.ports import EmployeeFailure
from salary_engine.services.state_machine import InvalidTransitionError
from salary_engine.stores.sql import (
    SqlAssignmentStore,
    SqlAttendanceStore,
    SqlEmployeeDirectory,
    SqlHolidayStore,
    SqlLeaveStore,
    SqlPayrollStore,
    SqlStructureStore,
)

JUNE = PayPeriod(date(2024, 6, 1), date(2024, 6, 30))


def _payslip(employee_id: str) -> AssembledPayslip:
    return AssembledPayslip(
        employee_id=employee_id,
        earnings=(LineItem("Basic", Decimal("5000.00"), "c-basic"),),
        deductions=(LineItem("PF", Decimal("600.00"), "c-pf"),),
        gross_earnings=Decimal("5000.00"),
        total_deductions=Decimal("600.00"),
        net_pay=Decimal("4400.00"),
        working_days=30,
        lop_days=0,
        calculation_id="0" * 32,
    )


class TestReadStores:
    """Test the read-only collaborators."""

    async def test_active_employees_excludes_inactive(self, session_factory, seeded):
        found = await SqlEmployeeDirectory(session_factory).active_employees(seeded.org)

        assert [e.employee_id for e in found] == seeded.employees
        assert str(seeded.inactive_employee_id) not in {e.employee_id for e in found}
        assert found[0].name.endswith("Test")

    async def test_active_employees_filters_requested(self, session_factory, seeded):
        directory = SqlEmployeeDirectory(session_factory)

        found = await directory.active_employees(
            seeded.org, [seeded.employees[1], str(seeded.inactive_employee_id), "not-a-uuid"]
        )

        assert [e.employee_id for e in found] == [seeded.employees[1]]

    async def test_active_employees_other_org(self, session_factory, seeded):
        found = await SqlEmployeeDirectory(session_factory).active_employees(str(uuid4()))
        assert found == []

    async def test_structure_loads_in_mapping_order(self, session_factory, seeded):
        structure = await SqlStructureStore(session_factory).get(str(seeded.structure_id))

        assert [c.name for c in structure.components] == ["Basic", "HRA", "Bonus", "PF"]
        hra = structure.components[1]
        assert hra.rule.base_component_id == str(seeded.component_ids["Basic"])
        assert hra.rule.rate == Decimal("0.4")
        assert structure.organization_id == seeded.org

    async def test_mapping_position_unique_per_structure(self, session_factory, seeded):
        with pytest.raises(IntegrityError):
            async with session_factory() as session:
                async with session.begin():
                    travel = SalaryComponent(
                        organization_id=seeded.organization_id,
                        name="Travel",
                        kind="EARNING",
                        calc_type="FIXED",
                    )
                    session.add(travel)
                    await session.flush()
                    session.add(
                        SalaryComponentMapping(
                            structure_id=seeded.structure_id,
                            component_id=travel.component_id,
                            position=1,
                        )
                    )

    async def test_missing_structure(self, session_factory, seeded):
        with pytest.raises(StructureNotFoundError):
            await SqlStructureStore(session_factory).get(str(uuid4()))

    async def test_absences_only_absent_status(self, session_factory, seeded):
        days = await SqlAttendanceStore(session_factory).absences_in_range(
            seeded.employees[0], JUNE.start, JUNE.end
        )
        assert days == [date(2024, 6, 3)]

    async def test_unpaid_leave_expanded_and_clipped(self, session_factory, seeded):
        days = await SqlLeaveStore(session_factory).unpaid_leave_days_in_range(
            seeded.employees[0], JUNE.start, JUNE.end
        )
        assert days == [date(2024, 6, 1), date(2024, 6, 4), date(2024, 6, 5)]

    async def test_pending_and_paid_leave_ignored(self, session_factory, seeded):
        days = await SqlLeaveStore(session_factory).unpaid_leave_days_in_range(
            seeded.employees[1], JUNE.start, JUNE.end
        )
        assert days == []

    async def test_holidays_in_range(self, session_factory, seeded):
        store = SqlHolidayStore(session_factory)

        assert await store.holidays_in_range(seeded.org, JUNE.start, JUNE.end) == []
        assert await store.holidays_in_range(
            seeded.org, date(2024, 7, 1), date(2024, 7, 31)
        ) == [date(2024, 7, 4)]


class TestAssignmentStore:
    async def test_active_assignment(self, session_factory, seeded):
        spec = await SqlAssignmentStore(session_factory).active_assignment(seeded.employees[0])

        assert spec is not None
        assert spec.structure_id == str(seeded.structure_id)
        assert spec.basic_salary == Decimal("5000.00")
        assert spec.overrides == {}

    async def test_no_assignment_for_unknown_employee(self, session_factory, seeded):
        store = SqlAssignmentStore(session_factory)
        assert await store.active_assignment(str(uuid4())) is None
        assert await store.active_assignment("not-a-uuid") is None

    async def test_assign_structure_deactivates_previous(self, session_factory, seeded):
        store = SqlAssignmentStore(session_factory)
        employee = seeded.employees[0]
        hra_id = str(seeded.component_ids["HRA"])

        spec = await store.assign_structure(
            seeded.org,
            employee,
            str(seeded.structure_id),
            Decimal("6000.00"),
            date(2024, 7, 1),
            custom_values={hra_id: Decimal("2500.00")},
        )

        assert spec.basic_salary == Decimal("6000.00")
        assert spec.overrides == {hra_id: Decimal("2500.00")}
        assert (await store.active_assignment(employee)) == spec

        async with session_factory() as session:
            active = await session.scalar(
                select(func.count())
                .select_from(SalaryAssignment)
                .where(
                    SalaryAssignment.employee_id == seeded.employee_ids[0],
                    SalaryAssignment.is_active.is_(True),
                )
            )
        assert active == 1


class TestPayrollStore:
    """Test run and payslip persistence."""

    async def test_create_and_get_run(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)

        run = await store.create_run(seeded.org, JUNE, seeded.employees)
        loaded = await store.get_run(run.run_id)

        assert loaded.status == "DRAFT"
        assert loaded.period == JUNE
        assert loaded.target_employee_ids == tuple(seeded.employees)
        assert loaded.failures == ()
        assert loaded.created_at is not None

    async def test_get_unknown_run(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        assert await store.get_run(str(uuid4())) is None
        assert await store.get_run("nope") is None

    async def test_duplicate_run_conflict(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        first = await store.create_run(seeded.org, JUNE, seeded.employees)

        with pytest.raises(DuplicateRunConflict) as exc_info:
            await store.create_run(seeded.org, JUNE, seeded.employees)

        assert exc_info.value.existing_run_id == first.run_id
        assert exc_info.value.existing_status == "DRAFT"

    async def test_failed_run_frees_period(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        first = await store.create_run(seeded.org, JUNE, seeded.employees)
        await store.update_run_status(first.run_id, {"DRAFT"}, "FAILED")

        second = await store.create_run(seeded.org, JUNE, seeded.employees)

        assert second.run_id != first.run_id
        assert second.status == "DRAFT"

    async def test_conditional_status_update(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        run = await store.create_run(seeded.org, JUNE, seeded.employees)

        with pytest.raises(InvalidTransitionError):
            await store.update_run_status(run.run_id, {"PROCESSING"}, "COMPLETED")

        updated = await store.update_run_status(run.run_id, {"DRAFT"}, "PROCESSING")
        assert updated.status == "PROCESSING"

        completed = await store.update_run_status(
            run.run_id, {"PROCESSING"}, "COMPLETED", payment_date=date(2024, 7, 1)
        )
        assert completed.status == "COMPLETED"
        assert completed.payment_date == date(2024, 7, 1)

    async def test_status_update_unknown_run(self, session_factory, seeded):
        with pytest.raises(RunNotFoundError):
            await SqlPayrollStore(session_factory).update_run_status(
                str(uuid4()), {"DRAFT"}, "PROCESSING"
            )

    async def test_list_runs_filters_and_counts(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        june = await store.create_run(seeded.org, JUNE, seeded.employees)
        await store.update_run_status(june.run_id, {"DRAFT"}, "FAILED")
        await store.create_run(seeded.org, JUNE, seeded.employees)
        await store.create_run(
            seeded.org, PayPeriod(date(2024, 7, 1), date(2024, 7, 31)), seeded.employees
        )

        runs, total = await store.list_runs(seeded.org)
        assert total == 3
        assert len(runs) == 3

        failed, failed_total = await store.list_runs(seeded.org, status="FAILED")
        assert failed_total == 1
        assert failed[0].run_id == june.run_id

        page, page_total = await store.list_runs(seeded.org, offset=2, limit=2)
        assert page_total == 3
        assert len(page) == 1

    async def test_record_failures(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        run = await store.create_run(seeded.org, JUNE, seeded.employees)
        await store.record_failures(
            run.run_id,
            [EmployeeFailure(seeded.employees[2], "NoActiveAssignment", "no assignment")],
            aborted=True,
        )
        loaded = await store.get_run(run.run_id)

        assert loaded.aborted is True
        assert loaded.failures[0].employee_id == seeded.employees[2]
        assert loaded.failures[0].error_kind == "NoActiveAssignment"

    async def test_payslip_round_trip(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        run = await store.create_run(seeded.org, JUNE, seeded.employees)

        created = await store.create_payslip(run.run_id, seeded.org, _payslip(seeded.employees[0]))
        loaded = await store.get_payslip(created.payslip_id)

        assert loaded.earnings == (LineItem("Basic", Decimal("5000.00"), "c-basic"),)
        assert loaded.net_pay == Decimal("4400.00")
        assert loaded.summary == {"working_days": 30, "lop_days": 0}
        assert loaded.emailed is False

        async with session_factory() as session:
            row = await session.get(Payslip, UUID(created.payslip_id))
        assert row.earnings_breakdown[0]["amount"] == "5000.00"

    async def test_duplicate_payslip_rejected(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        run = await store.create_run(seeded.org, JUNE, seeded.employees)
        await store.create_payslip(run.run_id, seeded.org, _payslip(seeded.employees[0]))

        with pytest.raises(ValueError):
            await store.create_payslip(run.run_id, seeded.org, _payslip(seeded.employees[0]))

    async def test_mark_payslip_emailed(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        run = await store.create_run(seeded.org, JUNE, seeded.employees)
        created = await store.create_payslip(run.run_id, seeded.org, _payslip(seeded.employees[0]))

        marked = await store.mark_payslip_emailed(created.payslip_id)

        assert marked.emailed is True
        assert marked.net_pay == created.net_pay

        with pytest.raises(PayslipNotFoundError):
            await store.mark_payslip_emailed(str(uuid4()))

    async def test_employee_payslips_across_runs(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        may = PayPeriod(date(2024, 5, 1), date(2024, 5, 31))
        for period in (may, JUNE):
            run = await store.create_run(seeded.org, period, seeded.employees)
            for emp_id in seeded.employees[:2]:
                await store.create_payslip(run.run_id, seeded.org, _payslip(emp_id))
        employee = seeded.employees[0]

        entries, total = await store.list_employee_payslips(seeded.org, employee)
        assert total == 2
        assert [e.period for e in entries] == [JUNE, may]
        assert {e.payslip.employee_id for e in entries} == {employee}
        assert entries[0].run_status == "DRAFT"

        june_only, total = await store.list_employee_payslips(
            seeded.org, employee, period_from=date(2024, 6, 1)
        )
        assert (total, [e.period for e in june_only]) == (1, [JUNE])

        may_only, total = await store.list_employee_payslips(
            seeded.org, employee, period_to=date(2024, 6, 15)
        )
        assert (total, [e.period for e in may_only]) == (1, [may])

        second_page, total = await store.list_employee_payslips(
            seeded.org, employee, offset=1, limit=1
        )
        assert (total, [e.period for e in second_page]) == (2, [may])

    async def test_employee_payslips_scoped(self, session_factory, seeded):
        store = SqlPayrollStore(session_factory)
        run = await store.create_run(seeded.org, JUNE, seeded.employees)
        await store.create_payslip(run.run_id, seeded.org, _payslip(seeded.employees[0]))

        assert await store.list_employee_payslips(str(uuid4()), seeded.employees[0]) == ([], 0)
        assert await store.list_employee_payslips(seeded.org, seeded.employees[2]) == ([], 0)
        assert await store.list_employee_payslips(seeded.org, "not-a-uuid") == ([], 0)


class TestSqlRun:
    """Test a full run through the SQL stores."""

    async def test_run_completes_with_lop(self, sql_orchestrator, seeded):
        handle = await sql_orchestrator.initiate_run(seeded.org, JUNE)
        assert handle.employee_count == 3

        status = await sql_orchestrator.approve_run(handle.run_id)

        assert status.status == "COMPLETED"
        assert status.payslip_count == 3
        assert status.failures == ()
        assert status.payment_date == date.today()

        payslips = {p.employee_id: p for p in await sql_orchestrator.list_payslips(handle.run_id)}
        first = payslips[seeded.employees[0]]
        assert first.lop_days == 4
        assert first.working_days == 30
        assert {l.name: l.amount for l in first.earnings} == {
            "Basic": Decimal("4333.33"),
            "HRA": Decimal("1733.33"),
            "Bonus": Decimal("606.67"),
        }
        assert first.gross_earnings == Decimal("6673.33")
        assert first.net_pay == Decimal("6073.33")

        for employee in seeded.employees[1:]:
            assert payslips[employee].lop_days == 0
            assert payslips[employee].net_pay == Decimal("7100.00")

    async def test_missing_assignment_fails_run(self, sql_orchestrator, session_factory, seeded):
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(SalaryAssignment)
                    .where(SalaryAssignment.employee_id == seeded.employee_ids[2])
                    .values(is_active=False)
                )

        handle = await sql_orchestrator.initiate_run(seeded.org, JUNE)
        status = await sql_orchestrator.approve_run(handle.run_id)

        assert status.status == "FAILED"
        assert status.failed_employee_ids == [seeded.employees[2]]
        assert status.failures[0].error_kind == "NoActiveAssignment"
        assert status.payslip_count == 2

        async with session_factory() as session:
            payroll = await session.get(Payroll, UUID(handle.run_id))
        assert payroll.processing_log["failures"][0]["employee_id"] == seeded.employees[2]

    async def test_validate_structure(self, sql_orchestrator, seeded):
        order = await sql_orchestrator.validate_structure(str(seeded.structure_id))
        assert [c.name for c in order] == ["Basic", "HRA", "Bonus", "PF"]

"""Payroll run orchestrator - drives a batch from DRAFT to a terminal status."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Sequence, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from salary_engine.calculators.errors import StructureDefinitionError
from salary_engine.calculators.payslip_assembler import PayslipAssembler
from salary_engine.calculators.proration import ProrationCalculator
from salary_engine.calculators.structure_evaluator import StructureEvaluator, validate_structure
from salary_engine.calculators.types import (
    AssembledPayslip,
    AssignmentSpec,
    ComponentSpec,
    PayPeriod,
    StructureSpec,
)
from salary_engine.config import EngineOptions
from salary_engine.services.errors import (
    DataFetchTimeout,
    NoActiveAssignmentError,
    PayrollRunError,
    PayslipNotFoundError,
    RunNotFoundError,
    RunValidationError,
    StructureNotFoundError,
    TransientFetchError,
)
from salary_engine.services.events import (
    EmployeeProcessed,
    EventEmitter,
    PayrollRunStatusChanged,
)
from salary_engine.services.ports import (
    AssignmentStore,
    AttendanceStore,
    EmployeeDirectory,
    EmployeeFailure,
    EmployeePayslip,
    HolidayStore,
    LeaveStore,
    PayrollStore,
    PayslipRecord,
    RunHandle,
    RunRecord,
    RunStatus,
    StructureStore,
)
from salary_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    ConnectionError,
    TransientFetchError,
    OperationalError,
    PoolTimeoutError,
)

ABORTED_KIND = "Aborted"
UNEXPECTED_KIND = "UnexpectedError"


@dataclass(frozen=True)
class EmployeeInputs:
    """Everything fetched for one employee before computation starts."""

    assignment: AssignmentSpec
    structure: StructureSpec
    absences: list[date]
    unpaid_leave_days: list[date]
    holidays: list[date]


@dataclass(frozen=True)
class EmployeeOutcome:
    """Result of one work unit, sent to the aggregation point."""

    employee_id: str
    payslip: PayslipRecord | None = None
    failure: EmployeeFailure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None


class PayrollRunOrchestrator:
    """Runs payroll for a batch of employees.

    Pipeline per employee (independent work units):
    1) Fetch assignment, structure, absences, unpaid leave, holidays (retried)
    2) Evaluate structure
    3) Prorate earnings by loss-of-pay days
    4) Assemble payslip
    5) Persist payslip (one transaction)

    Work is spread over a bounded pool of asyncio workers pulling employee ids
    from a queue; outcomes flow through a single result queue.
    """

    def __init__(
        self,
        employees: EmployeeDirectory,
        assignments: AssignmentStore,
        structures: StructureStore,
        attendance: AttendanceStore,
        leave: LeaveStore,
        payroll_store: PayrollStore,
        holidays: HolidayStore | None = None,
        options: EngineOptions | None = None,
        emitter: EventEmitter | None = None,
        engine_version: str = "",
    ):
        self.employees = employees
        self.assignments = assignments
        self.structures = structures
        self.attendance = attendance
        self.leave = leave
        self.payroll_store = payroll_store
        self.holidays = holidays
        self.options = options or EngineOptions()
        self.emitter = emitter or EventEmitter()
        self.evaluator = StructureEvaluator()
        self.proration = ProrationCalculator(self.options.non_working_weekdays)
        self.assembler = PayslipAssembler(engine_version)
        self._abort_requested: set[str] = set()
        self._in_flight: set[str] = set()

    # === Run lifecycle ===

    async def initiate_run(
        self,
        organization_id: str,
        period: PayPeriod,
        employee_ids: Sequence[str] | None = None,
    ) -> RunHandle:
        """Create a DRAFT run for the organization and period.

        Raises:
            RunValidationError: If requested employees are unknown/inactive
                or nobody is left to process
            DuplicateRunConflict: If a non-failed run exists for the period
        """
        requested = list(dict.fromkeys(employee_ids)) if employee_ids else None
        found = await self.employees.active_employees(organization_id, requested)

        if requested:
            found_ids = {e.employee_id for e in found}
            missing = [eid for eid in requested if eid not in found_ids]
            if missing:
                raise RunValidationError(
                    "Some provided employee IDs are invalid, inactive or not part of "
                    f"this organization: {', '.join(missing)}"
                )

        target_ids = sorted({e.employee_id for e in found})
        if not target_ids:
            raise RunValidationError("No employees found to process for this payroll run")

        run = await self.payroll_store.create_run(organization_id, period, target_ids)
        logger.info(
            "Payroll run %s created for organization %s, period %s - %s, %d employee(s)",
            run.run_id,
            organization_id,
            period.start,
            period.end,
            len(target_ids),
        )
        self.emitter.emit(
            PayrollRunStatusChanged(run_id=run.run_id, from_status=None, to_status=run.status)
        )
        return RunHandle(run_id=run.run_id, status=run.status, employee_count=len(target_ids))

    async def submit_for_approval(self, run_id: str) -> RunStatus:
        """DRAFT → PENDING_APPROVAL."""
        await self._transition(run_id, {PayrollStatus.DRAFT}, PayrollStatus.PENDING_APPROVAL)
        return await self.get_run_status(run_id)

    async def approve_run(self, run_id: str) -> RunStatus:
        """Approve a run and process every targeted employee.

        Returns the final status (COMPLETED or FAILED). If processing or
        finalization raises, the run is moved to FAILED before returning.
        """
        run = await self._transition(
            run_id, set(PayrollRunStateMachine.APPROVABLE), PayrollStatus.PROCESSING
        )
        self._in_flight.add(run_id)

        failures: list[EmployeeFailure] = []
        aborted = False
        try:
            try:
                outcomes, skipped = await self._process(run)
            finally:
                aborted = run_id in self._abort_requested

            failures = [o.failure for o in outcomes if o.failure is not None]
            failures.extend(
                EmployeeFailure(
                    employee_id=eid,
                    error_kind=ABORTED_KIND,
                    message="Run aborted before this employee was processed",
                )
                for eid in skipped
            )
            failures.sort(key=lambda f: f.employee_id)
            await self.payroll_store.record_failures(run_id, failures, aborted=aborted)

            final = PayrollRunStateMachine.final_status(
                total=len(run.target_employee_ids),
                failed=len(failures),
                failure_threshold=self.options.failure_threshold,
                aborted=aborted,
            )
            await self._transition(
                run_id,
                {PayrollStatus.PROCESSING},
                final,
                payment_date=date.today() if final is PayrollStatus.COMPLETED else None,
            )
            logger.info(
                "Payroll run %s finished %s: %d payslip(s), %d failure(s)%s",
                run_id,
                final.value,
                len([o for o in outcomes if o.success]),
                len(failures),
                " (aborted)" if aborted else "",
            )
        except Exception as error:
            logger.exception("Payroll run %s could not be finalized; marking it FAILED", run_id)
            await self._fail_processing_run(run_id, failures, aborted, error)
        finally:
            self._in_flight.discard(run_id)
            self._abort_requested.discard(run_id)

        return await self.get_run_status(run_id)

    async def abort_run(self, run_id: str) -> RunStatus:
        """Stop a run.

        A run being processed by this orchestrator stops dispatching new
        employees; in-flight employees finish and the run ends FAILED. Any
        other unfinished run, including one left in PROCESSING by a crashed
        worker, is marked FAILED immediately.
        """
        run = await self._require_run(run_id)
        if run_id in self._in_flight:
            logger.warning("Abort requested for processing payroll run %s", run_id)
            self._abort_requested.add(run_id)
        elif not PayrollRunStateMachine.is_terminal(run.status):
            if run.status == PayrollStatus.PROCESSING:
                logger.warning("Failing orphaned processing payroll run %s", run_id)
            await self.payroll_store.record_failures(run_id, run.failures, aborted=True)
            await self._transition(run_id, {run.status}, PayrollStatus.FAILED)
        else:
            raise InvalidTransitionError(
                run.status, PayrollStatus.FAILED, "Run has already finished"
            )
        return await self.get_run_status(run_id)

    async def get_run_status(self, run_id: str) -> RunStatus:
        run = await self._require_run(run_id)
        payslips = await self.payroll_store.list_payslips(run_id)
        return RunStatus(
            run_id=run.run_id,
            organization_id=run.organization_id,
            period=run.period,
            status=run.status,
            total_employees=len(run.target_employee_ids),
            payslip_count=len(payslips),
            failures=run.failures,
            aborted=run.aborted or run_id in self._abort_requested,
            payment_date=run.payment_date,
        )

    # === Queries ===

    async def get_run(self, run_id: str) -> RunRecord:
        return await self._require_run(run_id)

    async def list_runs(
        self,
        organization_id: str,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[RunRecord], int]:
        if status is not None:
            status = PayrollStatus(status).value
        return await self.payroll_store.list_runs(organization_id, status, offset, limit)

    async def list_payslips(self, run_id: str) -> list[PayslipRecord]:
        await self._require_run(run_id)
        return await self.payroll_store.list_payslips(run_id)

    async def list_employee_payslips(
        self,
        organization_id: str,
        employee_id: str,
        period_from: date | None = None,
        period_to: date | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[EmployeePayslip], int]:
        """An employee's payslip history across runs, newest pay period first.

        Only runs whose period lies within [period_from, period_to] are
        included; either bound may be omitted.

        Raises:
            RunValidationError: If period_from is after period_to
        """
        if period_from is not None and period_to is not None and period_from > period_to:
            raise RunValidationError(
                f"period_from {period_from} is after period_to {period_to}"
            )
        return await self.payroll_store.list_employee_payslips(
            organization_id, employee_id, period_from, period_to, offset, limit
        )

    async def get_payslip(self, payslip_id: str) -> PayslipRecord:
        payslip = await self.payroll_store.get_payslip(payslip_id)
        if payslip is None:
            raise PayslipNotFoundError(payslip_id)
        return payslip

    async def mark_payslip_emailed(self, payslip_id: str) -> PayslipRecord:
        """Record delivery; the only change a payslip accepts after creation."""
        payslip = await self.payroll_store.mark_payslip_emailed(payslip_id)
        logger.info("Payslip %s marked as emailed", payslip_id)
        return payslip

    async def validate_structure(
        self, structure_id: str, organization_id: str | None = None
    ) -> list[ComponentSpec]:
        """Load and validate a structure; returns its evaluation order.

        With an organization_id, a structure owned by another organization
        is reported as not found.
        """
        structure = await self.structures.get(structure_id)
        if organization_id is not None and structure.organization_id != organization_id:
            raise StructureNotFoundError(structure_id)
        return validate_structure(structure)

    # === Pure computation ===

    def compute_payslip(
        self, employee_id: str, period: PayPeriod, inputs: EmployeeInputs
    ) -> AssembledPayslip:
        """Evaluate, prorate and assemble; touches no storage."""
        values = self.evaluator.evaluate(inputs.structure, inputs.assignment)
        proration = self.proration.prorate(
            values,
            period,
            absences=inputs.absences,
            unpaid_leave_days=inputs.unpaid_leave_days,
            holidays=inputs.holidays,
        )
        return self.assembler.assemble(employee_id, proration)

    # === Worker pool ===

    async def _process(self, run: RunRecord) -> tuple[list[EmployeeOutcome], list[str]]:
        """Fan out employees over the worker pool and aggregate outcomes."""
        work: asyncio.Queue[str] = asyncio.Queue()
        for employee_id in run.target_employee_ids:
            work.put_nowait(employee_id)

        results: asyncio.Queue[EmployeeOutcome | None] = asyncio.Queue()
        pool_size = max(1, min(self.options.worker_pool_size, len(run.target_employee_ids)))

        collector = asyncio.create_task(self._collect(run.run_id, results))
        workers = [
            asyncio.create_task(self._worker(run, work, results))
            for _ in range(pool_size)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            await results.put(None)
        outcomes = await collector

        skipped: list[str] = []
        while not work.empty():
            skipped.append(work.get_nowait())

        outcomes.sort(key=lambda o: o.employee_id)
        return outcomes, sorted(skipped)

    async def _worker(
        self,
        run: RunRecord,
        work: asyncio.Queue[str],
        results: asyncio.Queue[EmployeeOutcome | None],
    ) -> None:
        while run.run_id not in self._abort_requested:
            try:
                employee_id = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await self._process_employee(run, employee_id)
            await results.put(outcome)

    async def _collect(
        self, run_id: str, results: asyncio.Queue[EmployeeOutcome | None]
    ) -> list[EmployeeOutcome]:
        """Single aggregation point for work unit outcomes."""
        outcomes: list[EmployeeOutcome] = []
        while True:
            outcome = await results.get()
            if outcome is None:
                return outcomes
            outcomes.append(outcome)
            failure = outcome.failure
            self.emitter.emit(
                EmployeeProcessed(
                    run_id=run_id,
                    employee_id=outcome.employee_id,
                    success=outcome.success,
                    error_kind=failure.error_kind if failure else None,
                    error=failure.message if failure else None,
                    payslip_id=outcome.payslip.payslip_id if outcome.payslip else None,
                )
            )

    async def _process_employee(self, run: RunRecord, employee_id: str) -> EmployeeOutcome:
        """Run one work unit; every error is captured in the outcome."""
        try:
            inputs = await self._fetch_inputs(run, employee_id)
            payslip = self.compute_payslip(employee_id, run.period, inputs)
            record = await self.payroll_store.create_payslip(
                run.run_id, run.organization_id, payslip
            )
        except (StructureDefinitionError, PayrollRunError) as e:
            logger.warning(
                "Payroll run %s: employee %s failed with %s: %s",
                run.run_id,
                employee_id,
                e.error_kind,
                e,
            )
            return EmployeeOutcome(
                employee_id=employee_id,
                failure=EmployeeFailure(employee_id, e.error_kind, str(e)),
            )
        except Exception as e:
            logger.exception(
                "Payroll run %s: unexpected error for employee %s", run.run_id, employee_id
            )
            return EmployeeOutcome(
                employee_id=employee_id,
                failure=EmployeeFailure(
                    employee_id, UNEXPECTED_KIND, f"{type(e).__name__}: {e}"
                ),
            )

        return EmployeeOutcome(employee_id=employee_id, payslip=record)

    # === Data fetching ===

    async def _fetch_inputs(self, run: RunRecord, employee_id: str) -> EmployeeInputs:
        start, end = run.period.start, run.period.end

        assignment = await self._fetch(
            lambda: self.assignments.active_assignment(employee_id),
            "active assignment",
            employee_id,
        )
        if assignment is None:
            raise NoActiveAssignmentError(employee_id)

        structure = await self._fetch(
            lambda: self.structures.get(assignment.structure_id),
            "salary structure",
            employee_id,
        )
        absences = await self._fetch(
            lambda: self.attendance.absences_in_range(employee_id, start, end),
            "attendance",
            employee_id,
        )
        unpaid = await self._fetch(
            lambda: self.leave.unpaid_leave_days_in_range(employee_id, start, end),
            "unpaid leave",
            employee_id,
        )
        holidays: list[date] = []
        if self.holidays is not None:
            holiday_store = self.holidays
            holidays = await self._fetch(
                lambda: holiday_store.holidays_in_range(run.organization_id, start, end),
                "holidays",
                employee_id,
            )

        return EmployeeInputs(
            assignment=assignment,
            structure=structure,
            absences=list(absences),
            unpaid_leave_days=list(unpaid),
            holidays=list(holidays),
        )

    async def _fetch(
        self, call: Callable[[], Awaitable[T]], what: str, employee_id: str
    ) -> T:
        """Run a fetch with a timeout, retrying transient failures.

        Backoff doubles per attempt starting at fetch_backoff_base seconds.
        """
        attempts = max(1, self.options.fetch_max_attempts)
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=self.options.fetch_timeout)
            except RETRYABLE_ERRORS as e:
                last_error = e
                if attempt == attempts:
                    break
                delay = self.options.fetch_backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Fetching %s for employee %s failed (attempt %d/%d): %r; retrying in %.2fs",
                    what,
                    employee_id,
                    attempt,
                    attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

        raise DataFetchTimeout(employee_id, what, attempts) from last_error

    # === Helpers ===

    async def _fail_processing_run(
        self,
        run_id: str,
        failures: list[EmployeeFailure],
        aborted: bool,
        error: Exception,
    ) -> None:
        """Move a run that errored mid-approval from PROCESSING to FAILED.

        Recording failures is best effort. If the status cannot be changed
        either, the original error is raised.
        """
        try:
            await self.payroll_store.record_failures(run_id, failures, aborted=aborted)
        except Exception:
            logger.warning("Could not record failures for payroll run %s", run_id, exc_info=True)

        try:
            run = await self._require_run(run_id)
            if run.status == PayrollStatus.PROCESSING:
                await self._transition(run_id, {PayrollStatus.PROCESSING}, PayrollStatus.FAILED)
        except Exception:
            logger.error("Payroll run %s is still PROCESSING; abort it to release the period", run_id)
            raise error

    async def _require_run(self, run_id: str) -> RunRecord:
        run = await self.payroll_store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def _transition(
        self,
        run_id: str,
        from_statuses: set[str],
        to_status: PayrollStatus,
        payment_date: date | None = None,
    ) -> RunRecord:
        run = await self._require_run(run_id)
        if run.status not in from_statuses:
            raise InvalidTransitionError(run.status, to_status)
        PayrollRunStateMachine.validate_transition(run.status, to_status)

        updated = await self.payroll_store.update_run_status(
            run_id, from_statuses, to_status, payment_date=payment_date
        )
        self.emitter.emit(
            PayrollRunStatusChanged(
                run_id=run_id, from_status=run.status, to_status=updated.status
            )
        )
        return updated

"""Payroll run errors."""

from __future__ import annotations

from datetime import date


class PayrollRunError(Exception):
    """Base class for run-level errors."""

    error_kind = "PayrollRunError"


class DuplicateRunConflict(PayrollRunError):
    """Raised when a non-failed run already exists for the organization and period."""

    error_kind = "DuplicateRunConflict"

    def __init__(
        self,
        organization_id: str,
        period_start: date,
        period_end: date,
        existing_run_id: str | None = None,
        existing_status: str | None = None,
    ):
        self.organization_id = organization_id
        self.period_start = period_start
        self.period_end = period_end
        self.existing_run_id = existing_run_id
        self.existing_status = existing_status
        msg = (
            f"A payroll run for period {period_start} - {period_end} already exists "
            f"for organization {organization_id}"
        )
        if existing_status:
            msg += f" with status {existing_status}"
        super().__init__(msg)


class RunNotFoundError(PayrollRunError):
    """Raised when a run id does not resolve."""

    error_kind = "RunNotFound"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} not found")


class PayslipNotFoundError(PayrollRunError):
    error_kind = "PayslipNotFound"

    def __init__(self, payslip_id: str):
        self.payslip_id = payslip_id
        super().__init__(f"Payslip {payslip_id} not found")


class RunValidationError(PayrollRunError):
    """Raised when a run request is invalid (employees, period)."""

    error_kind = "RunValidationError"


class NoActiveAssignmentError(PayrollRunError):
    """Raised when an employee has no active salary assignment."""

    error_kind = "NoActiveAssignment"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee {employee_id} has no active salary assignment")


class StructureNotFoundError(PayrollRunError):
    error_kind = "StructureNotFound"

    def __init__(self, structure_id: str):
        self.structure_id = structure_id
        super().__init__(f"Salary structure {structure_id} not found")


class TransientFetchError(PayrollRunError):
    """Raised by stores for failures worth retrying."""

    error_kind = "TransientFetchError"


class DataFetchTimeout(PayrollRunError):
    """Raised when a fetch keeps failing after all retry attempts."""

    error_kind = "DataFetchTimeout"

    def __init__(self, employee_id: str, what: str, attempts: int):
        self.employee_id = employee_id
        self.what = what
        self.attempts = attempts
        super().__init__(
            f"Fetching {what} for employee {employee_id} failed after {attempts} attempt(s)"
        )

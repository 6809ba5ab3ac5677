"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator

from salary_engine.calculators.types import ComponentSpec, LineItem
from salary_engine.services.ports import (
    EmployeeFailure,
    EmployeePayslip,
    PayslipRecord,
    RunHandle,
    RunRecord,
    RunStatus,
)


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for initiating a payroll run."""

    period_start: date
    period_end: date
    employee_ids: list[str] | None = Field(
        default=None,
        description="Restrict the run to these employees; all active employees when omitted",
    )

    @model_validator(mode="after")
    def check_period(self) -> "PayrollRunCreate":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class RunHandleResponse(BaseModel):
    """Schema returned when a run is initiated."""

    run_id: str
    status: str
    employee_count: int

    @classmethod
    def from_handle(cls, handle: RunHandle) -> "RunHandleResponse":
        return cls(run_id=handle.run_id, status=handle.status, employee_count=handle.employee_count)


class EmployeeFailureResponse(BaseModel):
    employee_id: str
    error_kind: str
    message: str

    @classmethod
    def from_failure(cls, failure: EmployeeFailure) -> "EmployeeFailureResponse":
        return cls(**failure.to_dict())


class PayrollRunResponse(BaseModel):
    """Schema for a run's status."""

    run_id: str
    organization_id: str
    period_start: date
    period_end: date
    status: str
    total_employees: int
    payslip_count: int
    failed_employee_ids: list[str]
    failures: list[EmployeeFailureResponse]
    aborted: bool
    payment_date: date | None = None

    @classmethod
    def from_status(cls, run: RunStatus) -> "PayrollRunResponse":
        return cls(
            run_id=run.run_id,
            organization_id=run.organization_id,
            period_start=run.period.start,
            period_end=run.period.end,
            status=run.status,
            total_employees=run.total_employees,
            payslip_count=run.payslip_count,
            failed_employee_ids=run.failed_employee_ids,
            failures=[EmployeeFailureResponse.from_failure(f) for f in run.failures],
            aborted=run.aborted,
            payment_date=run.payment_date,
        )


class PayrollRunSummary(BaseModel):
    """Schema for a run in a listing."""

    run_id: str
    period_start: date
    period_end: date
    status: str
    employee_count: int
    failed_count: int
    payment_date: date | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, run: RunRecord) -> "PayrollRunSummary":
        return cls(
            run_id=run.run_id,
            period_start=run.period.start,
            period_end=run.period.end,
            status=run.status,
            employee_count=len(run.target_employee_ids),
            failed_count=len(run.failures),
            payment_date=run.payment_date,
            created_at=run.created_at,
        )


class PayrollRunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[PayrollRunSummary]
    total: int
    page: int
    page_size: int


# ============================================================================
# Payslip schemas
# ============================================================================


class LineItemResponse(BaseModel):
    name: str
    amount: Decimal
    source_component_id: str

    @classmethod
    def from_line(cls, line: LineItem) -> "LineItemResponse":
        return cls(name=line.name, amount=line.amount, source_component_id=line.source_component_id)


class PayslipResponse(BaseModel):
    """Schema for a payslip."""

    payslip_id: str
    payroll_id: str
    employee_id: str
    earnings: list[LineItemResponse]
    deductions: list[LineItemResponse]
    gross_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    working_days: int
    lop_days: int
    calculation_id: str
    emailed: bool
    generated_at: datetime | None = None

    @classmethod
    def from_record(cls, payslip: PayslipRecord) -> "PayslipResponse":
        return cls(
            payslip_id=payslip.payslip_id,
            payroll_id=payslip.payroll_id,
            employee_id=payslip.employee_id,
            earnings=[LineItemResponse.from_line(li) for li in payslip.earnings],
            deductions=[LineItemResponse.from_line(li) for li in payslip.deductions],
            gross_earnings=payslip.gross_earnings,
            total_deductions=payslip.total_deductions,
            net_pay=payslip.net_pay,
            working_days=payslip.working_days,
            lop_days=payslip.lop_days,
            calculation_id=payslip.calculation_id,
            emailed=payslip.emailed,
            generated_at=payslip.generated_at,
        )


class PayslipListResponse(BaseModel):
    items: list[PayslipResponse]
    total: int


class EmployeePayslipResponse(PayslipResponse):
    """Schema for a payslip in an employee's history."""

    period_start: date
    period_end: date
    run_status: str
    payment_date: date | None = None

    @classmethod
    def from_entry(cls, entry: EmployeePayslip) -> "EmployeePayslipResponse":
        return cls(
            **PayslipResponse.from_record(entry.payslip).model_dump(),
            period_start=entry.period.start,
            period_end=entry.period.end,
            run_status=entry.run_status,
            payment_date=entry.payment_date,
        )


class EmployeePayslipListResponse(BaseModel):
    """Schema for paging through an employee's payslips."""

    items: list[EmployeePayslipResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================================
# Salary structure schemas
# ============================================================================


class StructureValidationResponse(BaseModel):
    """Result of validating a salary structure."""

    structure_id: str
    valid: bool
    evaluation_order: list[str] = Field(default_factory=list)
    error_kind: str | None = None
    detail: str | None = None

    @classmethod
    def ok(cls, structure_id: str, order: list[ComponentSpec]) -> "StructureValidationResponse":
        return cls(
            structure_id=structure_id,
            valid=True,
            evaluation_order=[spec.name for spec in order],
        )


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None

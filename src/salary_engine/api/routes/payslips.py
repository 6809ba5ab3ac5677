"""Payslip API endpoints."""

import math
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Path, Query

from salary_engine.api.dependencies import Orchestrator, OrganizationId
from salary_engine.api.schemas import (
    EmployeePayslipListResponse,
    EmployeePayslipResponse,
    ErrorResponse,
    PayslipResponse,
)
from salary_engine.services.errors import PayslipNotFoundError

router = APIRouter(prefix="/payslips", tags=["payslips"])


@router.get(
    "",
    response_model=EmployeePayslipListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_employee_payslips(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    employee_id: Annotated[str, Query()],
    period_from: Annotated[date | None, Query()] = None,
    period_to: Annotated[date | None, Query()] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=50)] = 10,
) -> EmployeePayslipListResponse:
    """An employee's payslips across payroll runs, newest pay period first."""
    entries, total = await orchestrator.list_employee_payslips(
        organization_id,
        employee_id,
        period_from=period_from,
        period_to=period_to,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return EmployeePayslipListResponse(
        items=[EmployeePayslipResponse.from_entry(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


@router.get(
    "/{payslip_id}",
    response_model=PayslipResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payslip(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    payslip_id: Annotated[str, Path()],
) -> PayslipResponse:
    payslip = await orchestrator.get_payslip(payslip_id)
    if payslip.organization_id != organization_id:
        raise PayslipNotFoundError(payslip_id)
    return PayslipResponse.from_record(payslip)


@router.post(
    "/{payslip_id}/mark-emailed",
    response_model=PayslipResponse,
    responses={404: {"model": ErrorResponse}},
)
async def mark_payslip_emailed(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    payslip_id: Annotated[str, Path()],
) -> PayslipResponse:
    """Record that the payslip was delivered to the employee."""
    payslip = await orchestrator.get_payslip(payslip_id)
    if payslip.organization_id != organization_id:
        raise PayslipNotFoundError(payslip_id)
    return PayslipResponse.from_record(await orchestrator.mark_payslip_emailed(payslip_id))

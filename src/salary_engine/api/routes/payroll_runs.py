"""Payroll run API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from salary_engine.api.dependencies import Orchestrator, OrganizationId
from salary_engine.api.schemas import (
    ErrorResponse,
    PayrollRunCreate,
    PayrollRunListResponse,
    PayrollRunResponse,
    PayrollRunSummary,
    PayslipListResponse,
    PayslipResponse,
    RunHandleResponse,
)
from salary_engine.calculators.types import PayPeriod
from salary_engine.services.errors import RunNotFoundError
from salary_engine.services.orchestrator import PayrollRunOrchestrator
from salary_engine.services.ports import RunRecord
from salary_engine.services.state_machine import PayrollStatus

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])


async def _run_for_organization(
    orchestrator: PayrollRunOrchestrator, organization_id: str, run_id: str
) -> RunRecord:
    run = await orchestrator.get_run(run_id)
    if run.organization_id != organization_id:
        raise RunNotFoundError(run_id)
    return run


# ============================================================================
# Payroll run CRUD
# ============================================================================


@router.post(
    "",
    response_model=RunHandleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def initiate_payroll_run(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    payload: PayrollRunCreate,
) -> RunHandleResponse:
    """Create a DRAFT payroll run for the period."""
    handle = await orchestrator.initiate_run(
        organization_id,
        PayPeriod(payload.period_start, payload.period_end),
        payload.employee_ids,
    )
    return RunHandleResponse.from_handle(handle)


@router.get("", response_model=PayrollRunListResponse)
async def list_payroll_runs(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[PayrollStatus | None, Query(alias="status")] = None,
) -> PayrollRunListResponse:
    """List payroll runs for an organization, newest first."""
    runs, total = await orchestrator.list_runs(
        organization_id,
        status=status_filter.value if status_filter else None,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return PayrollRunListResponse(
        items=[PayrollRunSummary.from_record(r) for r in runs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/{run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    run_id: Annotated[str, Path()],
) -> PayrollRunResponse:
    """Get a run's status, including per-employee failures."""
    await _run_for_organization(orchestrator, organization_id, run_id)
    return PayrollRunResponse.from_status(await orchestrator.get_run_status(run_id))


@router.get(
    "/{run_id}/payslips",
    response_model=PayslipListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_run_payslips(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    run_id: Annotated[str, Path()],
) -> PayslipListResponse:
    """List payslips generated by a run, ordered by employee."""
    await _run_for_organization(orchestrator, organization_id, run_id)
    payslips = await orchestrator.list_payslips(run_id)
    return PayslipListResponse(
        items=[PayslipResponse.from_record(p) for p in payslips],
        total=len(payslips),
    )


# ============================================================================
# Payroll run state transitions
# ============================================================================


@router.post(
    "/{run_id}/submit",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_payroll_run(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    run_id: Annotated[str, Path()],
) -> PayrollRunResponse:
    """Submit a DRAFT run for approval."""
    await _run_for_organization(orchestrator, organization_id, run_id)
    return PayrollRunResponse.from_status(await orchestrator.submit_for_approval(run_id))


@router.post(
    "/{run_id}/approve",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_payroll_run(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    run_id: Annotated[str, Path()],
) -> PayrollRunResponse:
    """Approve a run and process it to COMPLETED or FAILED."""
    await _run_for_organization(orchestrator, organization_id, run_id)
    return PayrollRunResponse.from_status(await orchestrator.approve_run(run_id))


@router.post(
    "/{run_id}/abort",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def abort_payroll_run(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    run_id: Annotated[str, Path()],
) -> PayrollRunResponse:
    """Abort a run that has not finished."""
    await _run_for_organization(orchestrator, organization_id, run_id)
    return PayrollRunResponse.from_status(await orchestrator.abort_run(run_id))

"""Salary structure API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path

from salary_engine.api.dependencies import Orchestrator, OrganizationId
from salary_engine.api.schemas import ErrorResponse, StructureValidationResponse
from salary_engine.calculators.errors import StructureDefinitionError

router = APIRouter(prefix="/salary-structures", tags=["salary-structures"])


@router.post(
    "/{structure_id}/validate",
    response_model=StructureValidationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def validate_salary_structure(
    orchestrator: Orchestrator,
    organization_id: OrganizationId,
    structure_id: Annotated[str, Path()],
) -> StructureValidationResponse:
    """Check a structure for missing references, cycles and bad formulas.

    An invalid structure is reported in the body rather than as an error
    status so editors can show the problem inline.
    """
    try:
        order = await orchestrator.validate_structure(structure_id, organization_id)
    except StructureDefinitionError as e:
        return StructureValidationResponse(
            structure_id=structure_id,
            valid=False,
            error_kind=e.error_kind,
            detail=str(e),
        )
    return StructureValidationResponse.ok(structure_id, order)

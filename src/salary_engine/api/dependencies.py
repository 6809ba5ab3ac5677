"""FastAPI dependencies for dependency injection."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from salary_engine.services.orchestrator import PayrollRunOrchestrator


def get_orchestrator(request: Request) -> PayrollRunOrchestrator:
    """Orchestrator wired up by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payroll engine is not initialised",
        )
    return orchestrator


async def get_organization_id(
    x_organization_id: Annotated[str | None, Header()] = None
) -> str:
    """Extract organization ID from header."""
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-ID header is required",
        )
    try:
        return str(UUID(x_organization_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Organization-ID format",
        )


# Type aliases for cleaner dependency injection
Orchestrator = Annotated[PayrollRunOrchestrator, Depends(get_orchestrator)]
OrganizationId = Annotated[str, Depends(get_organization_id)]

"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from salary_engine import __version__
from salary_engine.api.routes import (
    health_router,
    payroll_runs_router,
    payslips_router,
    salary_structures_router,
)
from salary_engine.calculators.errors import StructureDefinitionError
from salary_engine.config import get_settings
from salary_engine.database import create_all, dispose_db, init_db
from salary_engine.services.errors import (
    DuplicateRunConflict,
    PayrollRunError,
    PayslipNotFoundError,
    RunNotFoundError,
    RunValidationError,
    StructureNotFoundError,
)
from salary_engine.services.orchestrator import PayrollRunOrchestrator
from salary_engine.services.state_machine import InvalidTransitionError
from salary_engine.stores.sql import create_sql_orchestrator

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (DuplicateRunConflict, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (RunNotFoundError, status.HTTP_404_NOT_FOUND),
    (PayslipNotFoundError, status.HTTP_404_NOT_FOUND),
    (StructureNotFoundError, status.HTTP_404_NOT_FOUND),
    (RunValidationError, status.HTTP_400_BAD_REQUEST),
    (StructureDefinitionError, 422),
    (PayrollRunError, status.HTTP_400_BAD_REQUEST),
]


def _error_context(exc: Exception) -> dict[str, str] | None:
    if isinstance(exc, DuplicateRunConflict) and exc.existing_run_id:
        return {
            "existing_run_id": exc.existing_run_id,
            "existing_status": exc.existing_status or "",
        }
    if isinstance(exc, InvalidTransitionError):
        return {"from_status": str(exc.from_status), "to_status": str(exc.to_status)}
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    owns_db = getattr(app.state, "orchestrator", None) is None
    if owns_db:
        settings = get_settings()
        engine, session_factory = init_db()
        if settings.database_url.startswith("sqlite"):
            await create_all(engine)
        app.state.session_factory = session_factory
        app.state.orchestrator = create_sql_orchestrator(session_factory, settings)
        logger.info("Salary engine started (engine version %s)", settings.engine_version)
    yield
    # Shutdown
    if owns_db:
        await dispose_db()


def create_app(orchestrator: PayrollRunOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing an orchestrator skips database setup; the app serves whatever
    stores that orchestrator was built with.
    """
    app = FastAPI(
        title="Salary Engine API",
        description="Salary structures, proration and payroll runs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Map engine errors to HTTP statuses."""
        status_code = next(
            (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
            status.HTTP_400_BAD_REQUEST,
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": str(exc),
                "code": getattr(exc, "error_kind", type(exc).__name__),
                "context": _error_context(exc),
            },
        )

    for error_type in (PayrollRunError, StructureDefinitionError, InvalidTransitionError):
        app.add_exception_handler(error_type, domain_exception_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")
    app.include_router(payslips_router, prefix="/api/v1")
    app.include_router(salary_structures_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()

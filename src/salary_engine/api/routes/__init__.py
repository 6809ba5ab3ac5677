"""API routes."""

from salary_engine.api.routes.health import router as health_router
from salary_engine.api.routes.payroll_runs import router as payroll_runs_router
from salary_engine.api.routes.payslips import router as payslips_router
from salary_engine.api.routes.salary_structures import router as salary_structures_router

__all__ = [
    "health_router",
    "payroll_runs_router",
    "payslips_router",
    "salary_structures_router",
]

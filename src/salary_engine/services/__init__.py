"""Salary engine services."""

from salary_engine.services.errors import (
    DataFetchTimeout,
    DuplicateRunConflict,
    NoActiveAssignmentError,
    RunNotFoundError,
    RunValidationError,
)
from salary_engine.services.events import EmployeeProcessed, EventEmitter, PayrollRunStatusChanged
from salary_engine.services.orchestrator import PayrollRunOrchestrator
from salary_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollStatus,
)

__all__ = [
    "DataFetchTimeout",
    "DuplicateRunConflict",
    "EmployeeProcessed",
    "EventEmitter",
    "InvalidTransitionError",
    "NoActiveAssignmentError",
    "PayrollRunOrchestrator",
    "PayrollRunStateMachine",
    "PayrollRunStatusChanged",
    "PayrollStatus",
    "RunNotFoundError",
    "RunValidationError",
]

"""Collaborator implementations for the payroll run orchestrator."""

from salary_engine.stores.memory import (
    InMemoryAssignmentStore,
    InMemoryAttendanceStore,
    InMemoryEmployeeDirectory,
    InMemoryHolidayStore,
    InMemoryLeaveStore,
    InMemoryPayrollStore,
    InMemoryStructureStore,
)
from salary_engine.stores.sql import (
    SqlAssignmentStore,
    SqlAttendanceStore,
    SqlEmployeeDirectory,
    SqlHolidayStore,
    SqlLeaveStore,
    SqlPayrollStore,
    SqlStructureStore,
    create_sql_orchestrator,
)

__all__ = [
    "InMemoryAssignmentStore",
    "InMemoryAttendanceStore",
    "InMemoryEmployeeDirectory",
    "InMemoryHolidayStore",
    "InMemoryLeaveStore",
    "InMemoryPayrollStore",
    "InMemoryStructureStore",
    "SqlAssignmentStore",
    "SqlAttendanceStore",
    "SqlEmployeeDirectory",
    "SqlHolidayStore",
    "SqlLeaveStore",
    "SqlPayrollStore",
    "SqlStructureStore",
    "create_sql_orchestrator",
]

"""ORM models."""

from salary_engine.models.base import Base, TimestampMixin
from salary_engine.models.payroll import Payroll, Payslip
from salary_engine.models.salary import (
    SalaryAssignment,
    SalaryComponent,
    SalaryComponentMapping,
    SalaryStructure,
)
from salary_engine.models.workforce import (
    AttendanceRecord,
    Employee,
    Holiday,
    LeaveApplication,
    LeaveType,
    Organization,
)

__all__ = [
    "AttendanceRecord",
    "Base",
    "Employee",
    "Holiday",
    "LeaveApplication",
    "LeaveType",
    "Organization",
    "Payroll",
    "Payslip",
    "SalaryAssignment",
    "SalaryComponent",
    "SalaryComponentMapping",
    "SalaryStructure",
    "TimestampMixin",
]

"""Salary computation engine: structures, proration, payslips and payroll runs."""

__version__ = "1.0.0"

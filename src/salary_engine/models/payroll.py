"""Payroll run and payslip models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salary_engine.models.base import Base, TimestampMixin


class Payroll(Base, TimestampMixin):
    """One payroll run for an organization and pay period."""

    __tablename__ = "payroll"

    payroll_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    target_employee_ids: Mapped[list[Any]] = mapped_column(nullable=False, default=list)
    # {"failures": [{employee_id, error_kind, message}], "aborted": bool}
    processing_log: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING_APPROVAL', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="payroll_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="payroll_period_check"),
        # One live run per organization and exact period; FAILED runs don't count
        Index(
            "payroll_org_period_live_unique",
            "organization_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text("status <> 'FAILED'"),
            sqlite_where=text("status <> 'FAILED'"),
        ),
    )

    # Relationships
    payslips: Mapped[list[Payslip]] = relationship(back_populates="payroll")


class Payslip(Base):
    """Computed pay for one employee in one run.

    Immutable after creation apart from the delivery fields.
    """

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll.payroll_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    earnings_breakdown: Mapped[list[Any]] = mapped_column(nullable=False)
    deductions_breakdown: Mapped[list[Any]] = mapped_column(nullable=False)
    gross_earnings: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    summary_info: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    calculation_id: Mapped[str] = mapped_column(String(32), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # Delivery metadata
    emailed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emailed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_id", "employee_id", name="payslip_run_employee_unique"),
    )

    payroll: Mapped[Payroll] = relationship(back_populates="payslips")

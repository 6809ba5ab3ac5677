"""Salary component, structure and assignment models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salary_engine.models.base import Base, TimestampMixin


class SalaryComponent(Base, TimestampMixin):
    """Named earning or deduction with a calculation rule."""

    __tablename__ = "salary_component"

    component_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    calc_type: Mapped[str] = mapped_column(String, nullable=False)
    formula: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="salary_component_org_name_unique"),
        CheckConstraint("kind IN ('EARNING', 'DEDUCTION')", name="salary_component_kind_check"),
        CheckConstraint(
            "calc_type IN ('FIXED', 'PERCENTAGE', 'FORMULA')",
            name="salary_component_calc_type_check",
        ),
        CheckConstraint(
            "calc_type <> 'FORMULA' OR formula IS NOT NULL",
            name="salary_component_formula_check",
        ),
    )


class SalaryStructure(Base, TimestampMixin):
    """Named set of component mappings."""

    __tablename__ = "salary_structure"

    structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="salary_structure_org_name_unique"),
    )

    # Relationships
    mappings: Mapped[list[SalaryComponentMapping]] = relationship(
        back_populates="structure",
        cascade="all, delete-orphan",
        order_by=lambda: [SalaryComponentMapping.position, SalaryComponentMapping.mapping_id],
    )


class SalaryComponentMapping(Base):
    """A component as used inside one structure."""

    __tablename__ = "salary_component_mapping"

    mapping_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.structure_id", ondelete="CASCADE"),
        nullable=False,
    )
    component_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_component.component_id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    # FIXED: amount. PERCENTAGE: rate as a fraction (0.40 = 40%)
    defined_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    percentage_of_component_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("salary_component.component_id"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "structure_id", "component_id", name="salary_component_mapping_unique"
        ),
        UniqueConstraint(
            "structure_id", "position", name="salary_component_mapping_position_unique"
        ),
    )

    # Relationships
    structure: Mapped[SalaryStructure] = relationship(back_populates="mappings")
    component: Mapped[SalaryComponent] = relationship(foreign_keys=[component_id])


class SalaryAssignment(Base, TimestampMixin):
    """Binding of one employee to one structure."""

    __tablename__ = "salary_assignment"

    assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.structure_id"),
        nullable=False,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    basic_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    # component_id -> override amount for FIXED components
    custom_values: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("basic_salary > 0", name="salary_assignment_basic_positive"),
        Index(
            "salary_assignment_one_active",
            "employee_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    structure: Mapped[SalaryStructure] = relationship()

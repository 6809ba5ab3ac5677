"""Integration test fixtures with a real database.

Each test gets a fresh SQLite file through aiosqlite; the schema is created
from the ORM metadata. API clients call the app in-process through httpx.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salary_engine.api.app import create_app
from salary_engine.config import Settings
from salary_engine.database import create_all, get_engine, make_session_factory
from salary_engine.models import (
    AttendanceRecord,
    Employee,
    Holiday,
    LeaveApplication,
    LeaveType,
    Organization,
    SalaryAssignment,
    SalaryComponent,
    SalaryComponentMapping,
    SalaryStructure,
)
from salary_engine.services.events import EventEmitter
from salary_engine.services.orchestrator import PayrollRunOrchestrator
from salary_engine.stores.sql import create_sql_orchestrator

from ..factories import MemoryWorld


@dataclass
class SeededIds:
    organization_id: UUID
    employee_ids: list[UUID]  # three active, sorted
    inactive_employee_id: UUID
    structure_id: UUID
    component_ids: dict[str, UUID]

    @property
    def org(self) -> str:
        return str(self.organization_id)

    @property
    def employees(self) -> list[str]:
        return [str(e) for e in self.employee_ids]


def _settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        worker_pool_size=1,
        failure_threshold=0.0,
        fetch_max_attempts=2,
        fetch_backoff_base=0.0,
        fetch_timeout=5.0,
        non_working_weekdays=frozenset(),
    )


@pytest_asyncio.fixture
async def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'salary_test.db'}"


@pytest_asyncio.fixture
async def session_factory(database_url) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a freshly created schema."""
    engine = get_engine(database_url)
    await create_all(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_factory) -> SeededIds:
    """One organization with a standard structure and three assigned employees.

    Employee 1 has an absence on 3 June and approved unpaid leave covering
    30 May - 1 June and 4 - 5 June, so four LOP days in June 2024.
    Employee 2 has pending unpaid leave and approved paid leave, neither of
    which counts.
    """
    async with session_factory() as session:
        async with session.begin():
            org = Organization(name="Acme")
            session.add(org)
            await session.flush()

            employees = [
                Employee(
                    organization_id=org.organization_id,
                    first_name=f"Employee{n}",
                    last_name="Test",
                    email=f"employee{n}@example.com",
                )
                for n in range(1, 4)
            ]
            inactive = Employee(
                organization_id=org.organization_id,
                first_name="Former",
                last_name="Employee",
                is_active=False,
            )
            session.add_all([*employees, inactive])

            components = {
                "Basic": SalaryComponent(
                    organization_id=org.organization_id,
                    name="Basic",
                    kind="EARNING",
                    calc_type="FIXED",
                ),
                "HRA": SalaryComponent(
                    organization_id=org.organization_id,
                    name="HRA",
                    kind="EARNING",
                    calc_type="PERCENTAGE",
                ),
                "Bonus": SalaryComponent(
                    organization_id=org.organization_id,
                    name="Bonus",
                    kind="EARNING",
                    calc_type="FORMULA",
                    formula="(Basic + HRA) * 0.1",
                ),
                "PF": SalaryComponent(
                    organization_id=org.organization_id,
                    name="PF",
                    kind="DEDUCTION",
                    calc_type="FIXED",
                    is_taxable=False,
                ),
            }
            session.add_all(components.values())
            await session.flush()

            structure = SalaryStructure(organization_id=org.organization_id, name="Standard")
            structure.mappings = [
                SalaryComponentMapping(
                    component_id=components["Basic"].component_id,
                    position=0,
                    defined_value=Decimal("5000"),
                ),
                SalaryComponentMapping(
                    component_id=components["HRA"].component_id,
                    position=1,
                    defined_value=Decimal("0.40"),
                    percentage_of_component_id=components["Basic"].component_id,
                ),
                SalaryComponentMapping(
                    component_id=components["Bonus"].component_id,
                    position=2,
                ),
                SalaryComponentMapping(
                    component_id=components["PF"].component_id,
                    position=3,
                    defined_value=Decimal("600"),
                ),
            ]
            session.add(structure)
            await session.flush()

            employees.sort(key=lambda e: str(e.employee_id))
            for employee in employees:
                session.add(
                    SalaryAssignment(
                        organization_id=org.organization_id,
                        employee_id=employee.employee_id,
                        structure_id=structure.structure_id,
                        effective_date=date(2024, 1, 1),
                        basic_salary=Decimal("5000.00"),
                    )
                )

            unpaid = LeaveType(organization_id=org.organization_id, name="Unpaid", is_paid=False)
            casual = LeaveType(organization_id=org.organization_id, name="Casual", is_paid=True)
            session.add_all([unpaid, casual])
            await session.flush()

            first, second = employees[0], employees[1]
            session.add_all(
                [
                    AttendanceRecord(
                        employee_id=first.employee_id, work_date=date(2024, 6, 3), status="ABSENT"
                    ),
                    AttendanceRecord(
                        employee_id=first.employee_id, work_date=date(2024, 6, 4), status="PRESENT"
                    ),
                    LeaveApplication(
                        employee_id=first.employee_id,
                        leave_type_id=unpaid.leave_type_id,
                        start_date=date(2024, 6, 4),
                        end_date=date(2024, 6, 5),
                        status="APPROVED",
                    ),
                    LeaveApplication(
                        employee_id=first.employee_id,
                        leave_type_id=unpaid.leave_type_id,
                        start_date=date(2024, 5, 30),
                        end_date=date(2024, 6, 1),
                        status="APPROVED",
                    ),
                    LeaveApplication(
                        employee_id=second.employee_id,
                        leave_type_id=unpaid.leave_type_id,
                        start_date=date(2024, 6, 10),
                        end_date=date(2024, 6, 12),
                        status="PENDING",
                    ),
                    LeaveApplication(
                        employee_id=second.employee_id,
                        leave_type_id=casual.leave_type_id,
                        start_date=date(2024, 6, 13),
                        end_date=date(2024, 6, 13),
                        status="APPROVED",
                    ),
                    Holiday(
                        organization_id=org.organization_id,
                        holiday_date=date(2024, 7, 4),
                        name="Founders Day",
                    ),
                ]
            )

            return SeededIds(
                organization_id=org.organization_id,
                employee_ids=[e.employee_id for e in employees],
                inactive_employee_id=inactive.employee_id,
                structure_id=structure.structure_id,
                component_ids={name: c.component_id for name, c in components.items()},
            )


@pytest_asyncio.fixture
async def sql_orchestrator(session_factory, database_url) -> PayrollRunOrchestrator:
    return create_sql_orchestrator(
        session_factory, settings=_settings(database_url), emitter=EventEmitter()
    )


@pytest_asyncio.fixture
async def api_world() -> MemoryWorld:
    """In-memory stores with three employees on the standard structure."""
    world = MemoryWorld()
    world.add_employees(3)
    return world


@pytest_asyncio.fixture
async def client(api_world) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for an app backed by in-memory stores."""
    app = create_app(api_world.orchestrator())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def sql_client(sql_orchestrator, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for an app backed by the SQLite database."""
    app = create_app(sql_orchestrator)
    app.state.session_factory = session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

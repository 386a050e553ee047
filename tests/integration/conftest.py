"""Integration test fixtures: the API app over an in-memory database."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insurance_engine.api.app import create_app
from insurance_engine.api.dependencies import get_db_session
from insurance_engine.models import ApplicationType, Employee, Organization

from ..conftest import APPLICATION_TYPES, build_rate_rows


@dataclass
class Seed:
    """Identifiers of committed seed data."""

    organization_id: UUID
    application_type_ids: dict[str, UUID]
    employee_id: UUID
    other_employee_id: UUID
    admin_user_id: UUID
    employee_user_id: UUID

    def admin_headers(self) -> dict[str, str]:
        return {
            "X-Organization-ID": str(self.organization_id),
            "X-User-ID": str(self.admin_user_id),
            "X-Role": "admin",
        }

    def employee_headers(self, employee_id: UUID | None = None) -> dict[str, str]:
        return {
            "X-Organization-ID": str(self.organization_id),
            "X-User-ID": str(self.employee_user_id),
            "X-Role": "employee",
            "X-Employee-ID": str(employee_id or self.employee_id),
        }


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> Seed:
    """Commit an organization with types, two employees and a rate table."""
    async with session_factory() as session:
        organization = Organization(name="API Test Organization")
        session.add(organization)
        await session.flush()

        types = {
            code: ApplicationType(
                organization_id=organization.organization_id,
                code=code,
                name=name,
                category=category,
            )
            for code, (name, category) in APPLICATION_TYPES.items()
        }
        employee = Employee(
            organization_id=organization.organization_id,
            employee_number="A001",
            first_name="Taro",
            last_name="Yamada",
            health_insurance_number="101",
        )
        other = Employee(
            organization_id=organization.organization_id,
            employee_number="A002",
            first_name="Hanako",
            last_name="Suzuki",
            health_insurance_number="102",
        )
        session.add_all([*types.values(), employee, other])
        session.add_all(
            build_rate_rows(
                date(2024, 1, 1),
                date(2024, 6, 30),
                organization_id=organization.organization_id,
            )
        )
        await session.commit()

        return Seed(
            organization_id=organization.organization_id,
            application_type_ids={code: t.application_type_id for code, t in types.items()},
            employee_id=employee.employee_id,
            other_employee_id=other.employee_id,
            admin_user_id=uuid4(),
            employee_user_id=uuid4(),
        )


@pytest.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the session dependency bound to the test database."""
    app = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

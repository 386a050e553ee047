"""Pytest fixtures for insurance engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from insurance_engine.models import (
    Application,
    ApplicationType,
    Base,
    Employee,
    InsuranceRateTable,
    Organization,
    PremiumRate,
)
from insurance_engine.services.state_machine import Actor, ActorRole

# In-memory SQLite shared by every connection of the engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

APPLICATION_TYPES = {
    "LEAVE_REQUEST": ("Leave request", "internal"),
    "ADDRESS_CHANGE_EXTERNAL": ("Insured person address change", "external"),
    "NAME_CHANGE_EXTERNAL": ("Insured person name change", "external"),
    "DEPENDENT_CHANGE_EXTERNAL": ("Dependent change", "external"),
    "REWARD_BASE": ("Standard reward base report", "external"),
    "REWARD_CHANGE": ("Monthly reward change report", "external"),
    "QUALIFICATION_ACQUISITION": ("Qualification acquisition", "external"),
}

# (grade, pension_grade, standard_reward_amount, min_amount, max_amount)
GRADES = [
    (1, None, 58000, 0, 63000),
    (2, 1, 68000, 63000, 73000),
    (3, 2, 78000, 73000, 83000),
    (4, 3, 88000, 83000, None),
]


def build_rate_rows(
    effective_from: date,
    effective_to: date | None = None,
    organization_id=None,
    grades=GRADES,
) -> list[InsuranceRateTable]:
    """Rate table rows sharing one window."""
    rows = []
    for grade, pension_grade, standard, low, high in grades:
        rows.append(
            InsuranceRateTable(
                organization_id=organization_id,
                grade=grade,
                pension_grade=pension_grade,
                standard_reward_amount=Decimal(standard),
                min_amount=Decimal(low),
                max_amount=Decimal(high) if high is not None else None,
                health_without_care=PremiumRate(Decimal("9.980"), Decimal("5788.40"), Decimal("2894.20")),
                health_with_care=PremiumRate(Decimal("11.580"), Decimal("6716.40"), Decimal("3358.20")),
                pension=PremiumRate(Decimal("18.300"), Decimal("16104.00"), Decimal("8052.00")),
                effective_from=effective_from,
                effective_to=effective_to,
            )
        )
    return rows


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def organization(session: AsyncSession) -> Organization:
    organization = Organization(name="Test Organization")
    session.add(organization)
    await session.flush()
    return organization


@pytest.fixture
async def application_types(
    session: AsyncSession,
    organization: Organization,
) -> dict[str, ApplicationType]:
    types = {}
    for code, (name, category) in APPLICATION_TYPES.items():
        types[code] = ApplicationType(
            organization_id=organization.organization_id,
            code=code,
            name=name,
            category=category,
        )
    session.add_all(types.values())
    await session.flush()
    return types


@pytest.fixture
async def employees(session: AsyncSession, organization: Organization) -> dict[str, Employee]:
    """Three employees; ``multi`` also works for another company."""
    employees = {
        "taro": Employee(
            organization_id=organization.organization_id,
            employee_number="E001",
            first_name="Taro",
            last_name="Yamada",
            first_name_kana="タロウ",
            last_name_kana="ヤマダ",
            health_insurance_number="101",
            my_number="123456789012",
            pension_number="1234-567890",
            average_reward=Decimal("60000"),
            grade=1,
            standard_reward=Decimal("58000"),
        ),
        "hanako": Employee(
            organization_id=organization.organization_id,
            employee_number="E002",
            first_name="Hanako",
            last_name="Suzuki",
            health_insurance_number="102",
        ),
        "multi": Employee(
            organization_id=organization.organization_id,
            employee_number="E003",
            first_name="Jiro",
            last_name="Tanaka",
            health_insurance_number="103",
            average_reward=Decimal("70000"),
            grade=2,
            standard_reward=Decimal("68000"),
            other_company_info=[{"company_name": "Other Works KK"}],
        ),
    }
    session.add_all(employees.values())
    await session.flush()
    return employees


@pytest.fixture
async def rate_table(session: AsyncSession, organization: Organization) -> list[InsuranceRateTable]:
    """Organization rate table effective from 2024-01, open-ended."""
    rows = build_rate_rows(date(2024, 1, 1), organization_id=organization.organization_id)
    session.add_all(rows)
    await session.flush()
    return rows


@pytest.fixture
def admin(organization: Organization) -> Actor:
    return Actor(user_id=uuid4(), organization_id=organization.organization_id, role=ActorRole.ADMIN)


@pytest.fixture
def owner(organization: Organization, employees: dict[str, Employee]) -> Actor:
    """Employee actor for ``taro``."""
    return Actor(
        user_id=uuid4(),
        organization_id=organization.organization_id,
        role=ActorRole.EMPLOYEE,
        employee_id=employees["taro"].employee_id,
    )


@pytest.fixture
def other_employee(organization: Organization, employees: dict[str, Employee]) -> Actor:
    """Employee actor for ``hanako``."""
    return Actor(
        user_id=uuid4(),
        organization_id=organization.organization_id,
        role=ActorRole.EMPLOYEE,
        employee_id=employees["hanako"].employee_id,
    )


@pytest.fixture
def make_application(
    session: AsyncSession,
    organization: Organization,
    application_types: dict[str, ApplicationType],
    employees: dict[str, Employee],
):
    """Insert an application directly in a given state."""

    async def _make(
        code: str = "LEAVE_REQUEST",
        status: str = "draft",
        data: dict[str, Any] | None = None,
        employee: str | None = "taro",
        **fields: Any,
    ) -> Application:
        application_type = application_types[code]
        if application_type.category == "external":
            fields.setdefault("external_application_status", "unset")
        application = Application(
            organization_id=organization.organization_id,
            employee_id=employees[employee].employee_id if employee else None,
            application_type_id=application_type.application_type_id,
            category=application_type.category,
            status=status,
            data=data if data is not None else {"reason": "family event"},
            **fields,
        )
        session.add(application)
        await session.flush()
        await session.refresh(application)
        return application

    return _make

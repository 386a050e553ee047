"""Employee store."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.models import Employee
from insurance_engine.stores.base import StaleStateError, translate_errors


class EmployeeStore:
    """Reads employees and writes their insurance profile."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, employee_id: UUID) -> Employee | None:
        """Load an employee by id."""
        async with translate_errors("load employee"):
            return await self.session.get(Employee, employee_id)

    async def find_by_identification(
        self,
        organization_id: UUID,
        insurance_number: str | None = None,
        personal_number: str | None = None,
        basic_pension_number: str | None = None,
    ) -> Employee | None:
        """Find an employee by embedded identification.

        Tried in priority order: insurance number, personal number, then
        basic-pension number. The first number that matches wins.
        """
        candidates = (
            (Employee.health_insurance_number, insurance_number),
            (Employee.my_number, personal_number),
            (Employee.pension_number, basic_pension_number),
        )
        async with translate_errors("find employee"):
            for column, value in candidates:
                if not value:
                    continue
                result = await self.session.execute(
                    select(Employee)
                    .where(Employee.organization_id == organization_id, column == str(value))
                    .order_by(Employee.employee_number)
                    .limit(1)
                )
                employee = result.scalar_one_or_none()
                if employee is not None:
                    return employee
        return None

    async def compare_and_swap(self, employee: Employee, values: dict[str, Any]) -> Employee:
        """Write profile fields and change history in one versioned UPDATE."""
        async with translate_errors("update employee"):
            result = await self.session.execute(
                update(Employee)
                .where(
                    Employee.employee_id == employee.employee_id,
                    Employee.version == employee.version,
                )
                .values(**values, version=employee.version + 1)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                raise StaleStateError(
                    "employee", employee.employee_id, f"version={employee.version}"
                )

            await self.session.refresh(employee)
        return employee

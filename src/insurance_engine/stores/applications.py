"""Application record store."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.models import Application
from insurance_engine.stores.base import StaleStateError, translate_errors


class ApplicationStore:
    """Reads and writes application records.

    Status changes go through ``compare_and_swap`` so that the status, the
    appended history/comments/return snapshot and the version bump land in a
    single conditional UPDATE.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, application_id: UUID) -> Application | None:
        """Load an application by id."""
        async with translate_errors("load application"):
            result = await self.session.execute(
                select(Application).where(Application.application_id == application_id)
            )
            return result.unique().scalar_one_or_none()

    async def list_by_organization(
        self,
        organization_id: UUID,
        status: str | None = None,
        category: str | None = None,
        employee_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[Application]:
        """List an organization's applications, newest first."""
        query = select(Application).where(Application.organization_id == organization_id)
        if status:
            query = query.where(Application.status == status)
        if category:
            query = query.where(Application.category == category)
        if employee_id:
            query = query.where(Application.employee_id == employee_id)
        query = query.order_by(Application.created_at.desc())
        if limit:
            query = query.limit(limit)

        async with translate_errors("list applications"):
            result = await self.session.execute(query)
            return list(result.unique().scalars().all())

    async def add(self, application: Application) -> Application:
        """Insert a new application."""
        async with translate_errors("create application"):
            self.session.add(application)
            await self.session.flush()
        return application

    async def update_fields(self, application: Application, values: dict[str, Any]) -> Application:
        """Write content fields, guarded by the current status and version."""
        return await self.compare_and_swap(application, application.status, values)

    async def delete(self, application: Application) -> None:
        """Physically remove an application."""
        async with translate_errors("delete application"):
            await self.session.delete(application)
            await self.session.flush()

    async def compare_and_swap(
        self,
        application: Application,
        expected_status: str,
        values: dict[str, Any],
    ) -> Application:
        """Apply ``values`` only if status and version are still what was loaded.

        Raises StaleStateError if another writer got there first.
        """
        async with translate_errors("update application"):
            result = await self.session.execute(
                update(Application)
                .where(
                    Application.application_id == application.application_id,
                    Application.status == expected_status,
                    Application.version == application.version,
                )
                .values(**values, version=application.version + 1)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                raise StaleStateError(
                    "application",
                    application.application_id,
                    f"status={expected_status}, version={application.version}",
                )

            await self.session.refresh(application)
        return application

"""Rate table store."""

from __future__ import annotations

from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.models import InsuranceRateTable
from insurance_engine.stores.base import translate_errors


class RateTableStore:
    """Persists time-versioned rate table rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_by_organization(self, organization_id: UUID) -> list[InsuranceRateTable]:
        """All rows owned by an organization, ordered by window then grade."""
        async with translate_errors("list rate tables"):
            result = await self.session.execute(
                select(InsuranceRateTable)
                .where(InsuranceRateTable.organization_id == organization_id)
                .order_by(InsuranceRateTable.effective_from, InsuranceRateTable.grade)
            )
            return list(result.scalars().all())

    async def list_shared(self) -> list[InsuranceRateTable]:
        """Rows shared across all organizations."""
        async with translate_errors("list shared rate tables"):
            result = await self.session.execute(
                select(InsuranceRateTable)
                .where(InsuranceRateTable.organization_id.is_(None))
                .order_by(InsuranceRateTable.effective_from, InsuranceRateTable.grade)
            )
            return list(result.scalars().all())

    async def add_all(self, entries: Iterable[InsuranceRateTable]) -> list[InsuranceRateTable]:
        """Insert new rows."""
        rows = list(entries)
        async with translate_errors("create rate tables"):
            self.session.add_all(rows)
            await self.session.flush()
        return rows

    async def delete(self, rate_table_ids: Iterable[UUID]) -> int:
        """Delete rows by id. Returns count deleted."""
        ids = list(rate_table_ids)
        if not ids:
            return 0
        async with translate_errors("delete rate tables"):
            result = await self.session.execute(
                delete(InsuranceRateTable)
                .where(InsuranceRateTable.rate_table_id.in_(ids))
                .execution_options(synchronize_session="fetch")
            )
            return result.rowcount or 0

    async def update_window(
        self,
        rate_table_ids: Iterable[UUID],
        effective_from: date,
        effective_to: date | None,
    ) -> int:
        """Move the effective window of the given rows. Returns count updated."""
        ids = list(rate_table_ids)
        if not ids:
            return 0
        async with translate_errors("update rate table window"):
            result = await self.session.execute(
                update(InsuranceRateTable)
                .where(InsuranceRateTable.rate_table_id.in_(ids))
                .values(effective_from=effective_from, effective_to=effective_to)
                .execution_options(synchronize_session="fetch")
            )
            return result.rowcount or 0

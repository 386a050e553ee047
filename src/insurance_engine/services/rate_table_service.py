"""Rate table service - publishing time-versioned rate tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.calculators import (
    ConflictCase,
    ConflictDecision,
    ConflictDecisionRequired,
    GradeResolution,
    RateResolver,
    RateTableWindow,
    plan_publish,
    validate_entries,
)
from insurance_engine.calculators.rate_table_versions import group_by_window
from insurance_engine.models import InsuranceRateTable
from insurance_engine.stores import RateTableStore

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    """Outcome of a publish attempt.

    Exactly one of ``entries`` (published) or ``conflict`` (nothing written)
    is meaningful.
    """

    window: RateTableWindow
    entries: list[InsuranceRateTable] = field(default_factory=list)
    conflict: ConflictDecisionRequired | None = None
    deleted_count: int = 0
    moved_count: int = 0

    @property
    def published(self) -> bool:
        return self.conflict is None


class RateTableService:
    """Service for rate table versions.

    A publish first validates the candidate rows, then plans every overlap
    with stored windows in memory. Writes happen only once the plan is
    complete, so an undecided or aborted conflict leaves the store untouched.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = RateTableStore(session)
        self.resolver = RateResolver(session)

    async def get_active_entries(self, organization_id: UUID, as_of_date: date) -> list[InsuranceRateTable]:
        return await self.resolver.get_active_rate_entries(organization_id, as_of_date)

    async def resolve(
        self,
        organization_id: UUID,
        amount: Decimal | int,
        as_of_date: date,
    ) -> GradeResolution:
        return await self.resolver.resolve(organization_id, amount, as_of_date)

    async def publish_version(
        self,
        organization_id: UUID,
        entries: Sequence[InsuranceRateTable],
        window: RateTableWindow,
        decisions: Mapping[ConflictCase, ConflictDecision] | None = None,
    ) -> PublishResult:
        """Publish a rate table version for an organization.

        Raises:
            RateTableValidationError: If the rows or a decision are invalid
        """
        validate_entries(entries)

        stored = group_by_window(await self.store.list_by_organization(organization_id))
        try:
            plan = plan_publish(stored.keys(), window, decisions)
        except ConflictDecisionRequired as conflict:
            logger.info(
                "Publish for organization %s held: %s",
                organization_id,
                conflict,
            )
            return PublishResult(window=window, conflict=conflict)

        deleted = 0
        for doomed in plan.deletions:
            deleted += await self.store.delete(e.rate_table_id for e in stored[doomed])

        moved = 0
        for original, target in plan.moves:
            moved += await self.store.update_window(
                (e.rate_table_id for e in stored[original]),
                target.effective_from,
                target.effective_to,
            )

        for entry in entries:
            entry.organization_id = organization_id
            entry.effective_from = plan.window.effective_from
            entry.effective_to = plan.window.effective_to
        published = await self.store.add_all(entries)

        logger.info(
            "Published %d grades for organization %s in %s (%d rows deleted, %d rows moved)",
            len(published),
            organization_id,
            plan.window,
            deleted,
            moved,
        )
        return PublishResult(
            window=plan.window,
            entries=published,
            deleted_count=deleted,
            moved_count=moved,
        )

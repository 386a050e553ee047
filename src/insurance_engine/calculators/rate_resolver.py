"""Standard reward grade resolution over time-versioned rate tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.models import InsuranceRateTable
from insurance_engine.stores import RateTableStore


class RateNotFoundError(Exception):
    """Raised when no rate table entry covers an amount on a date."""

    def __init__(
        self,
        organization_id: UUID | None,
        as_of_date: date,
        amount: Decimal | int | None = None,
    ):
        self.organization_id = organization_id
        self.as_of_date = as_of_date
        self.amount = amount
        msg = f"No active rate table entry for organization {organization_id} on {as_of_date}"
        if amount is not None:
            msg += f" covering amount {amount}"
        super().__init__(msg)


@dataclass
class GradeResolution:
    """Grade, pension grade and standard reward resolved for one amount."""

    grade: int
    pension_grade: int | None
    standard_reward_amount: Decimal
    entry: InsuranceRateTable


def _by_grade(entries: Iterable[InsuranceRateTable]) -> list[InsuranceRateTable]:
    return sorted(entries, key=lambda e: e.grade)


def filter_active(
    entries: Iterable[InsuranceRateTable],
    as_of_date: date,
) -> list[InsuranceRateTable]:
    """Entries whose effective window covers the month of ``as_of_date``."""
    return [e for e in entries if e.is_active_on(as_of_date)]


def find_entry(
    amount: Decimal | int,
    entries: Sequence[InsuranceRateTable],
) -> InsuranceRateTable | None:
    """First entry in ascending grade order whose range covers ``amount``.

    Ranges are ``[min_amount, max_amount)``; an amount equal to a boundary
    belongs to the higher grade.
    """
    for entry in _by_grade(entries):
        if entry.covers_amount(amount):
            return entry
    return None


def resolve_grade(
    amount: Decimal | int,
    entries: Sequence[InsuranceRateTable],
) -> int | None:
    """Health insurance grade for ``amount``, or None when nothing covers it."""
    entry = find_entry(amount, entries)
    return entry.grade if entry else None


def resolve_pension_grade(
    amount: Decimal | int,
    entries: Sequence[InsuranceRateTable],
) -> int | None:
    """Pension grade for ``amount``.

    Looked up independently of the health grade: the lowest and highest
    health grades have no pension counterpart, so the first covering entry
    that carries a pension grade wins.
    """
    for entry in _by_grade(entries):
        if entry.pension_grade is not None and entry.covers_amount(amount):
            return entry.pension_grade
    return None


def resolve_standard_reward(
    amount: Decimal | int,
    entries: Sequence[InsuranceRateTable],
) -> GradeResolution | None:
    """Resolve grade, pension grade and standard reward amount together."""
    entry = find_entry(amount, entries)
    if entry is None:
        return None
    return GradeResolution(
        grade=entry.grade,
        pension_grade=resolve_pension_grade(amount, entries),
        standard_reward_amount=entry.standard_reward_amount,
        entry=entry,
    )


class RateResolver:
    """Loads the rate table entries that apply to an organization on a date.

    Organization-specific entries take precedence. Shared entries
    (``organization_id`` NULL) are only used when the organization has no
    entry active in the requested month.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = RateTableStore(session)

    async def get_active_rate_entries(
        self,
        organization_id: UUID,
        as_of_date: date,
    ) -> list[InsuranceRateTable]:
        """Active entries for the month of ``as_of_date``, sorted by grade."""
        own = filter_active(await self.store.list_by_organization(organization_id), as_of_date)
        if own:
            return _by_grade(own)
        return _by_grade(filter_active(await self.store.list_shared(), as_of_date))

    async def resolve(
        self,
        organization_id: UUID,
        amount: Decimal | int,
        as_of_date: date,
    ) -> GradeResolution:
        """Resolve ``amount`` against the entries active on ``as_of_date``.

        Raises:
            RateNotFoundError: If no active entry covers the amount
        """
        entries = await self.get_active_rate_entries(organization_id, as_of_date)
        if not entries:
            raise RateNotFoundError(organization_id, as_of_date)
        resolution = resolve_standard_reward(amount, entries)
        if resolution is None:
            raise RateNotFoundError(organization_id, as_of_date, amount)
        return resolution

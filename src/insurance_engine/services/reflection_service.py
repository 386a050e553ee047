"""Employee reflection - writes approved application data onto employee profiles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.calculators import RateResolver, resolve_standard_reward
from insurance_engine.models import Application, Employee, utcnow
from insurance_engine.services.return_history import clone_payload
from insurance_engine.stores import EmployeeStore

logger = logging.getLogger(__name__)

DEPENDENT_CHANGE = "DEPENDENT_CHANGE_EXTERNAL"
ADDRESS_CHANGE = "ADDRESS_CHANGE_EXTERNAL"
NAME_CHANGE = "NAME_CHANGE_EXTERNAL"
REWARD_BASE = "REWARD_BASE"
REWARD_CHANGE = "REWARD_CHANGE"

SINGLE_PERSON_TYPES = {DEPENDENT_CHANGE, ADDRESS_CHANGE, NAME_CHANGE}
REWARD_TYPES = {REWARD_BASE, REWARD_CHANGE}
REFLECTABLE_TYPES = SINGLE_PERSON_TYPES | REWARD_TYPES

# Gregorian year preceding the first year of each era
ERA_BASE_YEARS = {
    "reiwa": 2018,
    "heisei": 1988,
    "showa": 1925,
    "taisho": 1911,
}

SPOUSE_RELATIONSHIPS = {"spouse", "husband", "wife"}


class ReflectionError(Exception):
    """Raised when an approved application cannot be reflected at all."""

    def __init__(self, application_id: UUID, reason: str):
        self.application_id = application_id
        self.reason = reason
        super().__init__(f"Cannot reflect application {application_id}: {reason}")


@dataclass
class EmployeeReflection:
    """Changes written to one employee."""

    employee_id: UUID
    changes: list[dict[str, Any]]


@dataclass
class SkippedPerson:
    """An insured person that was not reflected."""

    identifier: str | None
    reason: str


@dataclass
class ReflectionSummary:
    """Outcome of reflecting one application."""

    application_id: UUID
    application_type_code: str | None = None
    reflected: list[EmployeeReflection] = field(default_factory=list)
    skipped: list[SkippedPerson] = field(default_factory=list)
    already_reflected: list[UUID] = field(default_factory=list)
    unchanged: list[UUID] = field(default_factory=list)

    @property
    def changed_employee_ids(self) -> list[UUID]:
        return [r.employee_id for r in self.reflected]


def era_to_date(value: Any) -> date | None:
    """Convert ``{era, year, month, day}`` (or an ISO date string) to a date."""
    if not value:
        return None
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    if not isinstance(value, dict):
        return None

    base = ERA_BASE_YEARS.get(str(value.get("era", "")).lower())
    try:
        year, month, day = int(value["year"]), int(value["month"]), int(value["day"])
        if base is None:
            return None
        return date(base + year, month, day)
    except (KeyError, TypeError, ValueError):
        return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _plain(value: Any) -> Any:
    """JSON-friendly rendering of a profile value for change history."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _identifier(person: dict[str, Any]) -> str | None:
    return (
        person.get("insuranceNumber")
        or person.get("personalNumber")
        or person.get("basicPensionNumber")
    )


class _ProfileChanges:
    """Field-level diff accumulated for one employee."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.changes: list[dict[str, Any]] = []

    def set(self, column: str, label: str, before: Any, after: Any) -> None:
        self.values[column] = after
        if _plain(before) != _plain(after):
            self.changes.append({"field": label, "before": _plain(before), "after": _plain(after)})


class EmployeeReflectionEngine:
    """Reflects approved applications onto employee profiles.

    Only the application types in ``REFLECTABLE_TYPES`` are reflected. Each
    insured person is matched to an employee by identification numbers; a
    person with no match is logged and skipped. Each changed employee gets
    one change-history entry, written in the same versioned UPDATE as the
    profile fields. An employee that already carries an entry for the
    application is left alone.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.employees = EmployeeStore(session)
        self.rate_resolver = RateResolver(session)

    @staticmethod
    def is_reflectable(application: Application) -> bool:
        return (
            application.application_type is not None
            and application.application_type.code in REFLECTABLE_TYPES
        )

    def _insured_persons(self, application: Application, code: str) -> list[dict[str, Any]]:
        data = application.data
        if not isinstance(data, dict) or not data:
            raise ReflectionError(application.application_id, "application data is empty")

        if code in SINGLE_PERSON_TYPES:
            person = data.get("insuredPerson")
            if not isinstance(person, dict) or not person:
                raise ReflectionError(application.application_id, "insuredPerson is missing")
            return [person]

        persons = data.get("insuredPersons")
        if not isinstance(persons, list) or not persons:
            raise ReflectionError(application.application_id, "insuredPersons is missing")
        if not all(isinstance(p, dict) for p in persons):
            raise ReflectionError(application.application_id, "insuredPersons has malformed entries")
        return persons

    async def reflect(
        self,
        application: Application,
        approver_id: UUID,
    ) -> ReflectionSummary:
        """Reflect an approved application.

        Raises:
            ReflectionError: If the payload has no usable insured person block.
                Nothing is written in that case.
        """
        code = application.application_type.code if application.application_type else None
        summary = ReflectionSummary(application.application_id, code)
        if code not in REFLECTABLE_TYPES:
            return summary

        persons = self._insured_persons(application, code)
        target_date = (application.approved_at() or utcnow()).date()

        for person in persons:
            identifier = _identifier(person)
            employee = await self.employees.find_by_identification(
                application.organization_id,
                insurance_number=person.get("insuranceNumber"),
                personal_number=person.get("personalNumber"),
                basic_pension_number=person.get("basicPensionNumber"),
            )
            if employee is None:
                logger.warning(
                    "Application %s: no employee matches insured person %s; skipped",
                    application.application_id,
                    identifier,
                )
                summary.skipped.append(SkippedPerson(identifier, "no matching employee"))
                continue

            if employee.has_reflected(application.application_id):
                logger.info(
                    "Application %s already reflected on employee %s",
                    application.application_id,
                    employee.employee_id,
                )
                summary.already_reflected.append(employee.employee_id)
                continue

            diff = _ProfileChanges()
            if code == DEPENDENT_CHANGE:
                self._dependent_change(application.data, employee, diff)
            elif code == ADDRESS_CHANGE:
                self._address_change(person, employee, diff)
            elif code == NAME_CHANGE:
                self._name_change(person, employee, diff)
            else:
                await self._reward_change(application, code, person, employee, target_date, diff)

            if not diff.changes:
                summary.unchanged.append(employee.employee_id)
                continue

            await self._write(application, employee, approver_id, diff)
            summary.reflected.append(EmployeeReflection(employee.employee_id, diff.changes))

        return summary

    async def _write(
        self,
        application: Application,
        employee: Employee,
        approver_id: UUID,
        diff: _ProfileChanges,
    ) -> None:
        entry = {
            "application_id": str(application.application_id),
            "application_name": application.application_type.name,
            "changed_at": utcnow().isoformat(),
            "changed_by": str(approver_id),
            "changes": diff.changes,
        }
        values = dict(diff.values)
        values["change_history"] = [*(employee.change_history or []), entry]
        await self.employees.compare_and_swap(employee, values)

    def _address_change(self, person: dict[str, Any], employee: Employee, diff: _ProfileChanges) -> None:
        new_address = {
            "postal_code": person.get("newPostalCode") or "",
            "prefecture": person.get("newPrefecture") or "",
            "city": person.get("newCity") or "",
            "street": person.get("newStreet") or "",
            "building": person.get("newBuilding") or "",
        }
        diff.set("official_address", "address.official", employee.official_address, new_address)

    def _name_change(self, person: dict[str, Any], employee: Employee, diff: _ProfileChanges) -> None:
        for column, label, key in (
            ("first_name", "firstName", "newFirstName"),
            ("last_name", "lastName", "newLastName"),
            ("first_name_kana", "firstNameKana", "newFirstNameKana"),
            ("last_name_kana", "lastNameKana", "newLastNameKana"),
        ):
            after = person.get(key) or ""
            before = getattr(employee, column)
            if before != after:
                diff.set(column, label, before, after)

    def _dependent_change(
        self,
        data: dict[str, Any],
        employee: Employee,
        diff: _ProfileChanges,
    ) -> None:
        before = clone_payload(employee.dependent_info or [], "dependent_info")
        dependents = clone_payload(before, "dependent_info")

        spouse = data.get("spouseDependent")
        if isinstance(spouse, dict) and spouse:
            self._apply_dependent(spouse, dependents, default_relationship="spouse", spouse=True)

        for other in data.get("otherDependents") or []:
            if isinstance(other, dict):
                self._apply_dependent(other, dependents, default_relationship="", spouse=False)

        if dependents != before:
            diff.set("dependent_info", "dependentInfo", before, dependents)

    @staticmethod
    def _apply_dependent(
        entry: dict[str, Any],
        dependents: list[dict[str, Any]],
        default_relationship: str,
        spouse: bool,
    ) -> None:
        change_type = entry.get("changeType")
        dependent_id = entry.get("personalNumber") or entry.get("basicPensionNumber")
        living_together = (entry.get("address") or {}).get("livingTogether") == "living_together"

        if change_type == "applicable":
            start = entry.get("dependentStartDate") or entry.get("changeDate")
            birth_date = era_to_date(entry.get("birthDate"))
            became_dependent = era_to_date(start)
            dependents.append({
                "dependent_id": dependent_id or str(uuid4()),
                "name": f"{entry.get('lastName') or ''} {entry.get('firstName') or ''}".strip(),
                "name_kana": (
                    f"{entry.get('lastNameKana') or ''} {entry.get('firstNameKana') or ''}".strip()
                ),
                "birth_date": birth_date.isoformat() if birth_date else None,
                "relationship": entry.get("relationship") or default_relationship,
                "income": entry.get("income"),
                "living_together": living_together,
                "became_dependent_date": became_dependent.isoformat() if became_dependent else None,
            })
            return

        if not dependent_id:
            return
        index = next(
            (
                i for i, dep in enumerate(dependents)
                if dep.get("dependent_id") == dependent_id
                and (not spouse or dep.get("relationship") in SPOUSE_RELATIONSHIPS)
            ),
            None,
        )
        if index is None:
            return

        if change_type == "not_applicable":
            del dependents[index]
        elif change_type == "change":
            change_after = entry.get("changeAfter") or {}
            dependents[index] = {
                **dependents[index],
                "income": change_after.get("income") or dependents[index].get("income"),
                "living_together": living_together,
            }

    async def _reward_change(
        self,
        application: Application,
        code: str,
        person: dict[str, Any],
        employee: Employee,
        target_date: date,
        diff: _ProfileChanges,
    ) -> None:
        average = _to_decimal(person.get("adjustedAverage")) or _to_decimal(person.get("average"))
        if average is None:
            logger.warning(
                "Application %s: insured person %s has no average reward; skipped",
                application.application_id,
                _identifier(person),
            )
            return

        diff.set("average_reward", "insuranceInfo.averageReward", employee.average_reward, average)

        if employee.has_other_employers:
            # grade and standard reward are entered manually for multi-employer staff
            logger.info(
                "Application %s: employee %s works for other employers; grade not reflected",
                application.application_id,
                employee.employee_id,
            )
            return

        entries = await self.rate_resolver.get_active_rate_entries(
            application.organization_id, target_date
        )
        if not entries:
            logger.warning(
                "Application %s: no rate table active on %s for insured person %s; "
                "grade not reflected",
                application.application_id,
                target_date,
                _identifier(person),
            )
            return

        resolution = resolve_standard_reward(average, entries)
        if resolution is None:
            logger.warning(
                "Application %s: no grade covers average reward %s for insured person %s",
                application.application_id,
                average,
                _identifier(person),
            )
            return

        diff.set(
            "standard_reward",
            "insuranceInfo.standardReward",
            employee.standard_reward,
            resolution.standard_reward_amount,
        )
        diff.set("grade", "insuranceInfo.grade", employee.grade, resolution.grade)
        if resolution.pension_grade is not None:
            diff.set(
                "pension_grade",
                "insuranceInfo.pensionGrade",
                employee.pension_grade,
                resolution.pension_grade,
            )

        raw_date = person.get("applicableDate") if code == REWARD_BASE else person.get("changeDate")
        effective_date = era_to_date(raw_date)
        if raw_date and effective_date is None:
            logger.warning(
                "Application %s: unreadable effective date %r for insured person %s",
                application.application_id,
                raw_date,
                _identifier(person),
            )
        if effective_date is not None:
            diff.set(
                "grade_and_standard_reward_effective_date",
                "insuranceInfo.gradeAndStandardRewardEffectiveDate",
                employee.grade_and_standard_reward_effective_date,
                effective_date,
            )

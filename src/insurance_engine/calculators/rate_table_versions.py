"""Effective-window conflict detection for publishing rate table versions.

Every grade row published together shares one effective window. Before a
new version is written, its window is checked against each distinct
window already stored for the organization. Overlaps are never merged
silently: each one is classified into a conflict case and needs an
explicit caller decision before anything is written.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from insurance_engine.models import InsuranceRateTable
from insurance_engine.periods import floor_to_month, month_after, month_before, month_label


class ConflictCase(str, Enum):
    """How a new window overlaps an existing one."""

    # new starts after existing starts, inside its window
    STARTS_WITHIN_EXISTING = "starts_within_existing"
    # new starts earlier and ends inside existing
    ENDS_WITHIN_EXISTING = "ends_within_existing"
    # new starts earlier and is open-ended
    SUBSUMES_EXISTING = "subsumes_existing"
    SAME_START = "same_start"


class ConflictAction(str, Enum):
    """Caller decisions for a conflict case."""

    TRUNCATE_EXISTING = "truncate_existing"
    TRUNCATE_NEW = "truncate_new"
    ADVANCE_EXISTING = "advance_existing"
    SET_NEW_END = "set_new_end"
    DELETE_EXISTING = "delete_existing"
    OVERWRITE = "overwrite"
    ABORT = "abort"


CASE_OPTIONS: dict[ConflictCase, list[ConflictAction]] = {
    ConflictCase.STARTS_WITHIN_EXISTING: [ConflictAction.TRUNCATE_EXISTING, ConflictAction.ABORT],
    ConflictCase.ENDS_WITHIN_EXISTING: [
        ConflictAction.TRUNCATE_NEW,
        ConflictAction.ADVANCE_EXISTING,
        ConflictAction.ABORT,
    ],
    ConflictCase.SUBSUMES_EXISTING: [
        ConflictAction.SET_NEW_END,
        ConflictAction.DELETE_EXISTING,
        ConflictAction.ABORT,
    ],
    ConflictCase.SAME_START: [ConflictAction.OVERWRITE, ConflictAction.ABORT],
}


class RateTableValidationError(Exception):
    """Raised when a candidate rate table version is malformed."""


@dataclass(frozen=True)
class RateTableWindow:
    """Inclusive ``[effective_from, effective_to]`` window; ``None`` end is open."""

    effective_from: date
    effective_to: date | None = None

    def __post_init__(self) -> None:
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise RateTableValidationError(
                f"effective_to {self.effective_to} is before effective_from {self.effective_from}"
            )

    @property
    def start_month(self) -> date:
        return floor_to_month(self.effective_from)

    @property
    def end_month(self) -> date | None:
        return floor_to_month(self.effective_to) if self.effective_to else None

    def overlaps(self, other: RateTableWindow) -> bool:
        """Whether the two windows share at least one calendar month."""
        if self.end_month is not None and self.end_month < other.start_month:
            return False
        if other.end_month is not None and other.end_month < self.start_month:
            return False
        return True

    def to_dict(self) -> dict[str, str | None]:
        return {
            "effective_from": self.effective_from.isoformat(),
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
        }

    def __str__(self) -> str:
        return f"[{month_label(self.effective_from)}, {month_label(self.effective_to) or 'open'}]"


@dataclass(frozen=True)
class ConflictDecision:
    """A caller's answer to a conflict case.

    ``effective_to`` overrides the suggested end date for TRUNCATE_NEW and
    SET_NEW_END.
    """

    action: ConflictAction
    effective_to: date | None = None


class ConflictDecisionRequired(Exception):
    """Raised when a publish overlaps an existing window without a usable decision."""

    def __init__(
        self,
        case: ConflictCase,
        existing: RateTableWindow,
        new: RateTableWindow,
        suggested: Mapping[str, date],
        options: Sequence[ConflictAction],
        aborted: bool = False,
    ):
        self.case = case
        self.existing = existing
        self.new = new
        self.suggested = dict(suggested)
        self.options = list(options)
        self.aborted = aborted
        verb = "aborted" if aborted else "needs a decision"
        super().__init__(
            f"Publishing {new} overlaps existing {existing} ({case.value}); {verb}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "case": self.case.value,
            "existing": self.existing.to_dict(),
            "new": self.new.to_dict(),
            "suggested": {k: v.isoformat() for k, v in self.suggested.items()},
            "options": [o.value for o in self.options],
            "aborted": self.aborted,
        }


@dataclass
class PublishPlan:
    """Writes needed to publish a version once every conflict is decided."""

    window: RateTableWindow
    deletions: list[RateTableWindow] = field(default_factory=list)
    moves: list[tuple[RateTableWindow, RateTableWindow]] = field(default_factory=list)


def window_of(entry: InsuranceRateTable) -> RateTableWindow:
    return RateTableWindow(entry.effective_from, entry.effective_to)


def group_by_window(
    entries: Iterable[InsuranceRateTable],
) -> dict[RateTableWindow, list[InsuranceRateTable]]:
    """Group stored rows by their shared effective window."""
    groups: dict[RateTableWindow, list[InsuranceRateTable]] = defaultdict(list)
    for entry in entries:
        groups[window_of(entry)].append(entry)
    return dict(groups)


def classify_overlap(existing: RateTableWindow, new: RateTableWindow) -> ConflictCase | None:
    """Conflict case for two windows, or None when they do not overlap."""
    if not existing.overlaps(new):
        return None
    if new.start_month == existing.start_month:
        return ConflictCase.SAME_START
    if new.start_month > existing.start_month:
        return ConflictCase.STARTS_WITHIN_EXISTING
    if new.effective_to is not None:
        return ConflictCase.ENDS_WITHIN_EXISTING
    return ConflictCase.SUBSUMES_EXISTING


def suggestions_for(
    case: ConflictCase,
    existing: RateTableWindow,
    new: RateTableWindow,
) -> tuple[dict[str, date], list[ConflictAction]]:
    """Suggested dates and available actions for a conflict case."""
    options = list(CASE_OPTIONS[case])
    if case == ConflictCase.STARTS_WITHIN_EXISTING:
        return {"existing_effective_to": month_before(new.effective_from)}, options
    if case == ConflictCase.ENDS_WITHIN_EXISTING:
        advanced = month_after(new.effective_to)
        suggested = {
            "new_effective_to": month_before(existing.effective_from),
            "existing_effective_from": advanced,
        }
        if existing.end_month is not None and floor_to_month(advanced) > existing.end_month:
            # advancing would leave the existing window empty
            options.remove(ConflictAction.ADVANCE_EXISTING)
            del suggested["existing_effective_from"]
        return suggested, options
    if case == ConflictCase.SUBSUMES_EXISTING:
        return {"new_effective_to": month_before(existing.effective_from)}, options
    return {}, options


def detect_conflict(
    existing: RateTableWindow,
    new: RateTableWindow,
) -> ConflictDecisionRequired | None:
    """Describe the decision needed to publish ``new`` over ``existing``."""
    case = classify_overlap(existing, new)
    if case is None:
        return None
    suggested, options = suggestions_for(case, existing, new)
    return ConflictDecisionRequired(case, existing, new, suggested, options)


def validate_entries(entries: Sequence[InsuranceRateTable]) -> None:
    """Check a candidate version before any conflict planning.

    Raises:
        RateTableValidationError: On an empty version, duplicate grades,
            negative amounts or an inverted amount range
    """
    if not entries:
        raise RateTableValidationError("a rate table version needs at least one grade")

    seen: set[int] = set()
    for entry in entries:
        if entry.grade is None or entry.grade < 1:
            raise RateTableValidationError(f"invalid grade {entry.grade!r}")
        if entry.grade in seen:
            raise RateTableValidationError(f"grade {entry.grade} appears more than once")
        seen.add(entry.grade)
        if entry.min_amount is None or entry.min_amount < 0:
            raise RateTableValidationError(f"grade {entry.grade}: min_amount must be >= 0")
        if entry.standard_reward_amount is None or entry.standard_reward_amount < 0:
            raise RateTableValidationError(
                f"grade {entry.grade}: standard_reward_amount must be >= 0"
            )
        if not entry.is_open_ended and entry.max_amount < entry.min_amount:
            raise RateTableValidationError(
                f"grade {entry.grade}: max_amount {entry.max_amount} is below "
                f"min_amount {entry.min_amount}"
            )


def _shortened_new(
    new: RateTableWindow,
    existing: RateTableWindow,
    decision: ConflictDecision,
) -> RateTableWindow:
    end = decision.effective_to or month_before(existing.effective_from)
    if end < new.effective_from:
        raise RateTableValidationError(
            f"new effective_to {end} is before effective_from {new.effective_from}"
        )
    if floor_to_month(end) >= existing.start_month:
        raise RateTableValidationError(
            f"new effective_to {end} still overlaps existing window {existing}"
        )
    return RateTableWindow(new.effective_from, end)


def _move(plan: PublishPlan, current: RateTableWindow, moved: RateTableWindow) -> None:
    for i, (stored, planned) in enumerate(plan.moves):
        if planned == current:
            plan.moves[i] = (stored, moved)
            return
    plan.moves.append((current, moved))


def _delete(plan: PublishPlan, current: RateTableWindow) -> None:
    for i, (stored, planned) in enumerate(plan.moves):
        if planned == current:
            del plan.moves[i]
            plan.deletions.append(stored)
            return
    plan.deletions.append(current)


def plan_publish(
    existing_windows: Iterable[RateTableWindow],
    new: RateTableWindow,
    decisions: Mapping[ConflictCase, ConflictDecision] | None = None,
) -> PublishPlan:
    """Resolve every overlap of ``new`` using ``decisions``.

    Existing windows are visited earliest first. Shortening the new window
    re-checks all windows against the shortened one.

    Raises:
        ConflictDecisionRequired: For the first overlap with no applicable
            decision, or one the caller chose to abort
        RateTableValidationError: If a decision produces an invalid window
    """
    decisions = decisions or {}
    remaining = sorted(set(existing_windows), key=lambda w: w.effective_from)
    plan = PublishPlan(window=new)

    while True:
        conflict = None
        for existing in remaining:
            conflict = detect_conflict(existing, plan.window)
            if conflict is not None:
                break
        if conflict is None:
            return plan

        existing = conflict.existing
        decision = decisions.get(conflict.case)
        if decision is None or decision.action not in conflict.options:
            raise conflict
        if decision.action == ConflictAction.ABORT:
            conflict.aborted = True
            raise conflict

        if decision.action == ConflictAction.TRUNCATE_EXISTING:
            moved = RateTableWindow(existing.effective_from, conflict.suggested["existing_effective_to"])
            _move(plan, existing, moved)
            remaining[remaining.index(existing)] = moved
        elif decision.action == ConflictAction.ADVANCE_EXISTING:
            moved = RateTableWindow(conflict.suggested["existing_effective_from"], existing.effective_to)
            _move(plan, existing, moved)
            remaining[remaining.index(existing)] = moved
        elif decision.action in (ConflictAction.TRUNCATE_NEW, ConflictAction.SET_NEW_END):
            plan.window = _shortened_new(plan.window, existing, decision)
        else:
            if decision.action == ConflictAction.DELETE_EXISTING:
                doomed = [w for w in remaining if w.start_month >= plan.window.start_month]
            else:
                doomed = [w for w in remaining if w.start_month == plan.window.start_month]
            for window in doomed:
                _delete(plan, window)
            remaining = [w for w in remaining if w not in doomed]

"""Rate table resolution and version planning."""

from insurance_engine.calculators.rate_resolver import (
    GradeResolution,
    RateNotFoundError,
    RateResolver,
    filter_active,
    resolve_grade,
    resolve_pension_grade,
    resolve_standard_reward,
)
from insurance_engine.calculators.rate_table_versions import (
    ConflictAction,
    ConflictCase,
    ConflictDecision,
    ConflictDecisionRequired,
    PublishPlan,
    RateTableValidationError,
    RateTableWindow,
    detect_conflict,
    plan_publish,
    validate_entries,
)

__all__ = [
    "ConflictAction",
    "ConflictCase",
    "ConflictDecision",
    "ConflictDecisionRequired",
    "GradeResolution",
    "PublishPlan",
    "RateNotFoundError",
    "RateResolver",
    "RateTableValidationError",
    "RateTableWindow",
    "detect_conflict",
    "filter_active",
    "plan_publish",
    "resolve_grade",
    "resolve_pension_grade",
    "resolve_standard_reward",
    "validate_entries",
]

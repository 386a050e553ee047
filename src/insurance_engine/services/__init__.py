"""Insurance engine services."""

from insurance_engine.services.state_machine import (
    Actor,
    ActorRole,
    ApplicationAction,
    ApplicationCategory,
    ApplicationStateMachine,
    ApplicationStatus,
    ExternalApplicationStatus,
    GuardViolation,
)
from insurance_engine.services.return_history import PayloadError, ReturnHistoryManager
from insurance_engine.services.reflection_service import (
    EmployeeReflectionEngine,
    ReflectionError,
    ReflectionSummary,
)
from insurance_engine.services.application_service import (
    ApplicationService,
    InvalidRequestError,
    TransitionResult,
)
from insurance_engine.services.rate_table_service import PublishResult, RateTableService

__all__ = [
    "Actor",
    "ActorRole",
    "ApplicationAction",
    "ApplicationCategory",
    "ApplicationService",
    "ApplicationStateMachine",
    "ApplicationStatus",
    "EmployeeReflectionEngine",
    "ExternalApplicationStatus",
    "GuardViolation",
    "InvalidRequestError",
    "PayloadError",
    "PublishResult",
    "RateTableService",
    "ReflectionError",
    "ReflectionSummary",
    "ReturnHistoryManager",
    "TransitionResult",
]

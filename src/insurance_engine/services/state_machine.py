"""Application state machine with role- and category-aware guards."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from insurance_engine.models import Application


class ApplicationStatus(str, Enum):
    """Application status values."""

    DRAFT = "draft"
    CREATED = "created"
    PENDING = "pending"
    PENDING_RECEIVED = "pending_received"
    PENDING_NOT_RECEIVED = "pending_not_received"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    WITHDRAWN = "withdrawn"


class ApplicationCategory(str, Enum):
    """Internal (employee → organization) or external (organization → authority)."""

    INTERNAL = "internal"
    EXTERNAL = "external"


class ExternalApplicationStatus(str, Enum):
    """Delivery status of an external application."""

    UNSET = "unset"
    SENT = "sent"
    RECEIVED = "received"
    ERROR = "error"


class ApplicationAction(str, Enum):
    """Transition actions. Values double as history entry actions."""

    SUBMIT = "submit"
    APPROVE = "approve"
    RETURN = "return"
    REJECT = "reject"
    WITHDRAW = "withdraw"


class ActorRole(str, Enum):
    """Caller role."""

    ADMIN = "admin"
    EMPLOYEE = "employee"


@dataclass(frozen=True)
class Actor:
    """Explicit caller context threaded through every operation."""

    user_id: UUID
    organization_id: UUID
    role: ActorRole = ActorRole.EMPLOYEE
    employee_id: UUID | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


class GuardViolation(Exception):
    """Raised when an action is not allowed for the current status, role or category."""

    def __init__(self, from_status: str, action: str, reason: str | None = None):
        self.from_status = str(getattr(from_status, "value", from_status))
        self.action = str(getattr(action, "value", action))
        self.reason = reason
        msg = f"Cannot {self.action} application in status '{self.from_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ApplicationStateMachine:
    """State machine for application status transitions.

    Allowed transitions:
    - draft/created → pending          (submit; internal; owner or admin)
    - returned → pending               (submit; internal by owner, external by admin;
                                        only when content changed since the return)
    - pending → approved               (approve; internal; admin)
    - pending_received → approved      (approve; external, received; admin)
    - pending → returned/rejected      (return/reject; internal; admin)
    - pending_received → returned/rejected
                                       (return/reject; external, received; admin)
    - pending → withdrawn              (withdraw; submitting employee)

    External applications also carry a delivery status. ``sent`` projects
    the status to pending_not_received and ``received`` to pending_received;
    ``error`` leaves it unchanged.
    """

    # Statuses from which each action may start, per category
    ACTION_SOURCES: dict[ApplicationAction, dict[ApplicationCategory, set[ApplicationStatus]]] = {
        ApplicationAction.SUBMIT: {
            ApplicationCategory.INTERNAL: {
                ApplicationStatus.DRAFT,
                ApplicationStatus.CREATED,
                ApplicationStatus.RETURNED,
            },
            ApplicationCategory.EXTERNAL: {ApplicationStatus.RETURNED},
        },
        ApplicationAction.APPROVE: {
            ApplicationCategory.INTERNAL: {ApplicationStatus.PENDING},
            ApplicationCategory.EXTERNAL: {ApplicationStatus.PENDING_RECEIVED},
        },
        ApplicationAction.RETURN: {
            ApplicationCategory.INTERNAL: {ApplicationStatus.PENDING},
            ApplicationCategory.EXTERNAL: {ApplicationStatus.PENDING_RECEIVED},
        },
        ApplicationAction.REJECT: {
            ApplicationCategory.INTERNAL: {ApplicationStatus.PENDING},
            ApplicationCategory.EXTERNAL: {ApplicationStatus.PENDING_RECEIVED},
        },
        ApplicationAction.WITHDRAW: {
            ApplicationCategory.INTERNAL: {ApplicationStatus.PENDING},
            ApplicationCategory.EXTERNAL: {ApplicationStatus.PENDING},
        },
    }

    ACTION_TARGETS: dict[ApplicationAction, ApplicationStatus] = {
        ApplicationAction.SUBMIT: ApplicationStatus.PENDING,
        ApplicationAction.APPROVE: ApplicationStatus.APPROVED,
        ApplicationAction.RETURN: ApplicationStatus.RETURNED,
        ApplicationAction.REJECT: ApplicationStatus.REJECTED,
        ApplicationAction.WITHDRAW: ApplicationStatus.WITHDRAWN,
    }

    # Reviewer decisions on external applications need a received delivery status
    RECEIPT_GATED = {ApplicationAction.APPROVE, ApplicationAction.RETURN, ApplicationAction.REJECT}
    AWAITING_RECEIPT = {ApplicationStatus.PENDING, ApplicationStatus.PENDING_NOT_RECEIVED}

    # Statuses where content (data/attachments) can be edited
    EDITABLE = {
        ApplicationStatus.DRAFT,
        ApplicationStatus.CREATED,
        ApplicationStatus.RETURNED,
    }

    # Statuses where the delivery status of an external application can change
    EXTERNAL_STATUS_MUTABLE = {
        ApplicationStatus.DRAFT,
        ApplicationStatus.CREATED,
        ApplicationStatus.PENDING,
        ApplicationStatus.PENDING_NOT_RECEIVED,
        ApplicationStatus.PENDING_RECEIVED,
    }

    TERMINAL = {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.WITHDRAWN,
    }

    @classmethod
    def resolve_transition(
        cls,
        status: str,
        action: str,
        category: str,
        *,
        is_admin: bool,
        is_owner: bool,
        external_status: str | None = None,
        has_changes: bool = False,
    ) -> ApplicationStatus:
        """Return the target status for ``action``, or raise GuardViolation.

        Pure: nothing is written, so a rejected transition leaves no trace.
        """
        try:
            current = ApplicationStatus(status)
            act = ApplicationAction(action)
            cat = ApplicationCategory(category)
        except ValueError as exc:
            raise GuardViolation(status, action, str(exc)) from exc

        if (
            cat == ApplicationCategory.EXTERNAL
            and act in cls.RECEIPT_GATED
            and current in cls.AWAITING_RECEIPT
        ):
            raise GuardViolation(current, act, "external application has not been received")

        if current not in cls.ACTION_SOURCES[act][cat]:
            raise GuardViolation(current, act, f"not allowed for {cat.value} applications")

        if act == ApplicationAction.SUBMIT:
            cls._check_submit(current, cat, is_admin=is_admin, is_owner=is_owner,
                              has_changes=has_changes)
        elif act == ApplicationAction.WITHDRAW:
            if not is_owner:
                raise GuardViolation(current, act, "only the submitting employee can withdraw")
        else:
            if not is_admin:
                raise GuardViolation(current, act, "admin role required")
            if (
                cat == ApplicationCategory.EXTERNAL
                and act in cls.RECEIPT_GATED
                and external_status != ExternalApplicationStatus.RECEIVED
            ):
                raise GuardViolation(current, act, "external application has not been received")

        return cls.ACTION_TARGETS[act]

    @classmethod
    def _check_submit(
        cls,
        current: ApplicationStatus,
        category: ApplicationCategory,
        *,
        is_admin: bool,
        is_owner: bool,
        has_changes: bool,
    ) -> None:
        action = ApplicationAction.SUBMIT
        if current != ApplicationStatus.RETURNED:
            if not (is_owner or is_admin):
                raise GuardViolation(current, action, "only the owner or an admin can submit")
            return

        if category == ApplicationCategory.INTERNAL and not is_owner:
            raise GuardViolation(current, action, "only the owner can resubmit")
        if category == ApplicationCategory.EXTERNAL and not is_admin:
            raise GuardViolation(current, action, "only an admin can resubmit")
        if not has_changes:
            raise GuardViolation(current, action, "no changes since the application was returned")

    @classmethod
    def validate(
        cls,
        application: Application,
        action: str,
        actor_is_admin: bool,
        actor_employee_id: UUID | None,
        has_changes: bool = False,
    ) -> ApplicationStatus:
        """Validate ``action`` on a loaded application for the given caller."""
        return cls.resolve_transition(
            application.status,
            action,
            application.category,
            is_admin=actor_is_admin,
            is_owner=application.is_owned_by(actor_employee_id),
            external_status=application.external_application_status,
            has_changes=has_changes,
        )

    @classmethod
    def can_transition(cls, status: str, action: str, category: str, **context) -> bool:
        """Check if a transition is valid."""
        try:
            cls.resolve_transition(status, action, category, **context)
        except GuardViolation:
            return False
        return True

    @classmethod
    def can_edit(cls, status: str, *, is_admin: bool, is_owner: bool) -> bool:
        """Check if content may be edited by the caller."""
        return status in cls.EDITABLE and (is_admin or is_owner)

    @classmethod
    def can_delete(cls, status: str, *, is_admin: bool, is_owner: bool) -> bool:
        """Check if the application may be physically removed."""
        return status == ApplicationStatus.DRAFT and (is_admin or is_owner)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no further transitions are possible."""
        return status in cls.TERMINAL

    @classmethod
    def project_external_status(
        cls,
        status: str,
        category: str,
        external_status: str,
        *,
        is_admin: bool,
    ) -> ApplicationStatus:
        """Return the application status implied by a new delivery status.

        Raises GuardViolation when the delivery status may not change.
        """
        current = ApplicationStatus(status)
        action = "set_external_status"
        if category != ApplicationCategory.EXTERNAL:
            raise GuardViolation(current, action, "only external applications have a delivery status")
        if not is_admin:
            raise GuardViolation(current, action, "admin role required")
        if current not in cls.EXTERNAL_STATUS_MUTABLE:
            raise GuardViolation(current, action, "delivery status is locked in this status")

        try:
            ext = ExternalApplicationStatus(external_status)
        except ValueError as exc:
            raise GuardViolation(current, action, str(exc)) from exc

        if ext == ExternalApplicationStatus.SENT:
            return ApplicationStatus.PENDING_NOT_RECEIVED
        if ext == ExternalApplicationStatus.RECEIVED:
            return ApplicationStatus.PENDING_RECEIVED
        if ext == ExternalApplicationStatus.ERROR:
            return current
        raise GuardViolation(current, action, "delivery status cannot be reset to unset")

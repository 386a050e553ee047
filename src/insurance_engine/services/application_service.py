"""Application service - lifecycle operations on application records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.models import Application, ApplicationType, utcnow
from insurance_engine.services.reflection_service import (
    EmployeeReflectionEngine,
    ReflectionError,
    ReflectionSummary,
)
from insurance_engine.services.return_history import ReturnHistoryManager, clone_payload
from insurance_engine.services.state_machine import (
    Actor,
    ApplicationAction,
    ApplicationCategory,
    ApplicationStateMachine,
    ApplicationStatus,
    ExternalApplicationStatus,
    GuardViolation,
)
from insurance_engine.stores import ApplicationStore, RecordNotFoundError
from insurance_engine.stores.base import translate_errors

logger = logging.getLogger(__name__)

REASON_REQUIRED = {ApplicationAction.RETURN, ApplicationAction.REJECT}


class InvalidRequestError(ValueError):
    """Raised when request content is malformed."""


@dataclass
class TransitionResult:
    """Result of a status transition.

    ``reflection_error`` is set when an approval succeeded but its employee
    reflection could not run; the reflection can be retried later.
    """

    application: Application
    from_status: str
    reflection: ReflectionSummary | None = None
    reflection_error: str | None = None

    @property
    def to_status(self) -> str:
        return self.application.status


def _history_entry(user_id: UUID, action: str, comment: str | None, at: datetime) -> dict[str, Any]:
    return {
        "user_id": str(user_id),
        "action": action,
        "comment": comment,
        "created_at": at.isoformat(),
    }


def _comment_entry(user_id: UUID, kind: str, content: str, at: datetime) -> dict[str, Any]:
    return {
        "comment_id": str(uuid4()),
        "user_id": str(user_id),
        "type": kind,
        "content": content,
        "created_at": at.isoformat(),
    }


def _clean_attachments(attachments: Iterable[dict[str, Any]] | None) -> list[dict[str, Any]]:
    cleaned = []
    for i, attachment in enumerate(attachments or []):
        if not isinstance(attachment, dict) or not attachment.get("file_name"):
            raise InvalidRequestError(f"attachments[{i}] needs a file_name")
        cleaned.append(clone_payload(attachment, f"attachments[{i}]"))
    return cleaned


class ApplicationService:
    """Service for the application review lifecycle.

    Operations:
    - create/update/delete: content management guarded by edit/delete rules
    - transition: submit, approve, return, reject, withdraw
    - set_external_status: delivery status of external applications
    - has_changes: resubmission eligibility after a return
    - reflect_approved_application: manual retry of employee reflection

    Every write is a single compare-and-swap on the loaded status and
    version, so a concurrent writer surfaces as StaleStateError.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = ApplicationStore(session)
        self.reflection_engine = EmployeeReflectionEngine(session)

    async def get_application(self, application_id: UUID, actor: Actor) -> Application:
        """Load an application visible to the actor.

        Employees only see their own applications.

        Raises:
            RecordNotFoundError: If missing, in another organization or not visible
        """
        application = await self.store.get(application_id)
        if (
            application is None
            or application.organization_id != actor.organization_id
            or not (actor.is_admin or application.is_owned_by(actor.employee_id))
        ):
            raise RecordNotFoundError("application", application_id)
        return application

    async def list_applications(
        self,
        actor: Actor,
        status: str | None = None,
        category: str | None = None,
        employee_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[Application]:
        """List applications, newest first."""
        if not actor.is_admin:
            if actor.employee_id is None:
                return []
            employee_id = actor.employee_id
        return await self.store.list_by_organization(
            actor.organization_id,
            status=status,
            category=category,
            employee_id=employee_id,
            limit=limit,
        )

    async def _get_application_type(self, application_type_id: UUID, actor: Actor) -> ApplicationType:
        async with translate_errors("load application type"):
            result = await self.session.execute(
                select(ApplicationType).where(
                    ApplicationType.application_type_id == application_type_id,
                    ApplicationType.organization_id == actor.organization_id,
                )
            )
            application_type = result.scalar_one_or_none()
        if application_type is None:
            raise RecordNotFoundError("application_type", application_type_id)
        return application_type

    async def create_application(
        self,
        actor: Actor,
        application_type_id: UUID,
        data: dict[str, Any] | None = None,
        attachments: list[dict[str, Any]] | None = None,
        employee_id: UUID | None = None,
        deadline: datetime | None = None,
        related_internal_application_ids: list[UUID] | None = None,
        related_external_application_ids: list[UUID] | None = None,
        status: str = ApplicationStatus.DRAFT,
    ) -> Application:
        """Create an application in ``draft`` (or ``created`` when finalized).

        Employees always create applications for themselves.
        """
        if status not in (ApplicationStatus.DRAFT, ApplicationStatus.CREATED):
            raise InvalidRequestError(f"new applications start in draft or created, not {status}")
        if data is not None and not isinstance(data, dict):
            raise InvalidRequestError("data must be an object")

        application_type = await self._get_application_type(application_type_id, actor)
        if not actor.is_admin:
            if actor.employee_id is None:
                raise GuardViolation(status, "create", "employee context required")
            employee_id = actor.employee_id

        category = application_type.category
        application = Application(
            organization_id=actor.organization_id,
            employee_id=employee_id,
            application_type_id=application_type.application_type_id,
            category=category,
            status=str(ApplicationStatus(status).value),
            external_application_status=(
                ExternalApplicationStatus.UNSET.value
                if category == ApplicationCategory.EXTERNAL
                else None
            ),
            data=clone_payload(data or {}),
            attachments=_clean_attachments(attachments),
            deadline=deadline,
            related_internal_application_ids=[str(i) for i in related_internal_application_ids or []],
            related_external_application_ids=[str(i) for i in related_external_application_ids or []],
        )
        await self.store.add(application)
        await self.session.refresh(application)
        logger.info(
            "Created %s application %s (%s) for organization %s",
            category,
            application.application_id,
            application_type.code,
            actor.organization_id,
        )
        return application

    async def update_application(
        self,
        application_id: UUID,
        actor: Actor,
        data: dict[str, Any] | None = None,
        attachments: list[dict[str, Any]] | None = None,
    ) -> Application:
        """Replace data and/or attachments while the application is editable."""
        application = await self.get_application(application_id, actor)
        if not ApplicationStateMachine.can_edit(
            application.status,
            is_admin=actor.is_admin,
            is_owner=application.is_owned_by(actor.employee_id),
        ):
            raise GuardViolation(application.status, "edit", "content is locked")

        values: dict[str, Any] = {}
        if data is not None:
            if not isinstance(data, dict):
                raise InvalidRequestError("data must be an object")
            values["data"] = clone_payload(data)
        if attachments is not None:
            values["attachments"] = _clean_attachments(attachments)
        if not values:
            return application
        return await self.store.update_fields(application, values)

    async def delete_application(self, application_id: UUID, actor: Actor) -> None:
        """Physically remove a draft."""
        application = await self.get_application(application_id, actor)
        if not ApplicationStateMachine.can_delete(
            application.status,
            is_admin=actor.is_admin,
            is_owner=application.is_owned_by(actor.employee_id),
        ):
            raise GuardViolation(application.status, "delete", "only drafts can be deleted")
        await self.store.delete(application)
        logger.info("Deleted draft application %s", application_id)

    async def has_changes(self, application_id: UUID, actor: Actor) -> bool:
        """Whether a returned application was edited since the return."""
        application = await self.get_application(application_id, actor)
        return ReturnHistoryManager.has_changes(application)

    async def transition(
        self,
        application_id: UUID,
        action: str,
        actor: Actor,
        reason: str | None = None,
    ) -> TransitionResult:
        """Run a lifecycle action.

        Guards are checked before anything is written. The new status,
        history entry and any return snapshot or comment are written
        together.

        Raises:
            GuardViolation: If the action is not allowed
            StaleStateError: If the application changed since it was loaded
        """
        application = await self.get_application(application_id, actor)
        from_status = application.status
        try:
            act = ApplicationAction(action)
        except ValueError as exc:
            raise GuardViolation(from_status, action, "unknown action") from exc

        reason = reason.strip() if reason else None
        if act in REASON_REQUIRED and not reason:
            raise GuardViolation(from_status, act, "a reason is required")

        has_changes = ReturnHistoryManager.has_changes(application)
        target = ApplicationStateMachine.validate(
            application,
            act,
            actor_is_admin=actor.is_admin,
            actor_employee_id=actor.employee_id,
            has_changes=has_changes,
        )

        now = utcnow()
        values: dict[str, Any] = {
            "status": target.value,
            "history": [*(application.history or []), _history_entry(actor.user_id, act.value, reason, now)],
        }

        if act == ApplicationAction.SUBMIT:
            values.update(self._submission_values(application, now))
        elif act == ApplicationAction.RETURN:
            values["return_history"] = ReturnHistoryManager.appended(application, actor.user_id, reason)
        elif act == ApplicationAction.WITHDRAW:
            values["withdrawn_at"] = now

        if act in REASON_REQUIRED:
            values["comments"] = [
                *(application.comments or []),
                _comment_entry(actor.user_id, "rejection_reason", reason, now),
            ]

        await self.store.compare_and_swap(application, from_status, values)
        logger.info(
            "Application %s: %s -> %s (%s by %s)",
            application_id,
            from_status,
            application.status,
            act.value,
            actor.user_id,
        )

        result = TransitionResult(application=application, from_status=from_status)
        if act == ApplicationAction.APPROVE and self.reflection_engine.is_reflectable(application):
            try:
                result.reflection = await self.reflection_engine.reflect(application, actor.user_id)
            except ReflectionError as exc:
                logger.exception("Reflection failed for approved application %s", application_id)
                result.reflection_error = str(exc)
        return result

    @staticmethod
    def _submission_values(application: Application, now: datetime) -> dict[str, Any]:
        if application.category != ApplicationCategory.EXTERNAL:
            return {"submission_date": now}
        # resubmitted external applications go back to an unsent delivery status
        restored = ReturnHistoryManager.restored_submission_date(application)
        return {
            "external_application_status": ExternalApplicationStatus.UNSET.value,
            "submission_date": restored or application.submission_date or now,
        }

    async def set_external_status(
        self,
        application_id: UUID,
        external_status: str,
        actor: Actor,
        comment: str | None = None,
    ) -> Application:
        """Record the delivery status of an external application.

        The application status follows from the delivery status and is
        never set on its own.
        """
        application = await self.get_application(application_id, actor)
        from_status = application.status
        target = ApplicationStateMachine.project_external_status(
            from_status,
            application.category,
            external_status,
            is_admin=actor.is_admin,
        )
        ext = ExternalApplicationStatus(external_status)

        now = utcnow()
        values: dict[str, Any] = {
            "status": target.value,
            "external_application_status": ext.value,
            "history": [
                *(application.history or []),
                _history_entry(
                    actor.user_id,
                    "status_change",
                    comment or f"external status set to {ext.value}",
                    now,
                ),
            ],
        }
        if ext in (ExternalApplicationStatus.SENT, ExternalApplicationStatus.RECEIVED):
            values["submission_date"] = now

        await self.store.compare_and_swap(application, from_status, values)
        logger.info(
            "Application %s: external status %s (status %s -> %s)",
            application_id,
            ext.value,
            from_status,
            application.status,
        )
        return application

    async def add_comment(self, application_id: UUID, actor: Actor, text: str) -> Application:
        """Append a free-text comment."""
        if not text or not text.strip():
            raise InvalidRequestError("comment text is empty")
        application = await self.get_application(application_id, actor)
        comments = [
            *(application.comments or []),
            _comment_entry(actor.user_id, "comment", text.strip(), utcnow()),
        ]
        return await self.store.update_fields(application, {"comments": comments})

    async def reflect_approved_application(
        self,
        application_id: UUID,
        actor: Actor,
    ) -> ReflectionSummary:
        """Re-run employee reflection for an approved application.

        Employees that already carry the application in their change
        history are skipped.

        Raises:
            GuardViolation: If the caller is not an admin or the application
                is not approved
            ReflectionError: If the payload cannot be reflected
        """
        application = await self.get_application(application_id, actor)
        if not actor.is_admin:
            raise GuardViolation(application.status, "reflect", "admin role required")
        if application.status != ApplicationStatus.APPROVED:
            raise GuardViolation(application.status, "reflect", "application is not approved")

        approver_id = actor.user_id
        for entry in application.history or []:
            if entry.get("action") == ApplicationAction.APPROVE.value and entry.get("user_id"):
                approver_id = UUID(entry["user_id"])
                break

        summary = await self.reflection_engine.reflect(application, approver_id)
        logger.info(
            "Reflected application %s: %d changed, %d skipped, %d already reflected",
            application_id,
            len(summary.reflected),
            len(summary.skipped),
            len(summary.already_reflected),
        )
        return summary

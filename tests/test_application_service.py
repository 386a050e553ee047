"""Tests for the application lifecycle service."""

from uuid import uuid4

import pytest
from sqlalchemy import update

from insurance_engine.models import Application
from insurance_engine.services import (
    ApplicationService,
    GuardViolation,
    InvalidRequestError,
    PayloadError,
)
from insurance_engine.stores import RecordNotFoundError, StaleStateError


class TestCreateAndEdit:
    """Test content management."""

    async def test_create_draft_for_self(self, session, owner, other_employee, application_types, employees):
        service = ApplicationService(session)
        application = await service.create_application(
            owner,
            application_types["LEAVE_REQUEST"].application_type_id,
            data={"reason": "wedding", "days": 3},
            employee_id=employees["hanako"].employee_id,
        )

        assert application.status == "draft"
        assert application.category == "internal"
        assert application.external_application_status is None
        assert application.employee_id == employees["taro"].employee_id
        assert application.version == 1
        assert application.history == []

    async def test_create_external_starts_unsent(self, session, admin, application_types, employees):
        service = ApplicationService(session)
        application = await service.create_application(
            admin,
            application_types["ADDRESS_CHANGE_EXTERNAL"].application_type_id,
            data={"insuredPerson": {"insuranceNumber": "101"}},
            employee_id=employees["taro"].employee_id,
            status="created",
        )

        assert application.status == "created"
        assert application.category == "external"
        assert application.external_application_status == "unset"

    async def test_create_rejects_other_start_status(self, session, owner, application_types):
        service = ApplicationService(session)
        with pytest.raises(InvalidRequestError):
            await service.create_application(
                owner, application_types["LEAVE_REQUEST"].application_type_id, status="pending"
            )

    async def test_create_with_unknown_type(self, session, owner, application_types):
        service = ApplicationService(session)
        with pytest.raises(RecordNotFoundError):
            await service.create_application(owner, uuid4())

    async def test_create_rejects_non_plain_data(self, session, owner, application_types):
        service = ApplicationService(session)
        with pytest.raises(PayloadError):
            await service.create_application(
                owner,
                application_types["LEAVE_REQUEST"].application_type_id,
                data={"tags": {"a", "b"}},
            )

    async def test_attachments_need_file_name(self, session, owner, application_types):
        service = ApplicationService(session)
        with pytest.raises(InvalidRequestError):
            await service.create_application(
                owner,
                application_types["LEAVE_REQUEST"].application_type_id,
                attachments=[{"file_url": "https://files/x.pdf"}],
            )

    async def test_update_draft(self, session, owner, make_application):
        application = await make_application()
        service = ApplicationService(session)

        updated = await service.update_application(
            application.application_id,
            owner,
            data={"reason": "funeral"},
            attachments=[{"file_name": "note.pdf", "file_url": "https://files/note.pdf"}],
        )

        assert updated.data == {"reason": "funeral"}
        assert updated.attachments[0]["file_name"] == "note.pdf"
        assert updated.version == 2

    async def test_update_locked_while_pending(self, session, owner, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation, match="locked"):
            await service.update_application(application.application_id, owner, data={"reason": "x"})

    async def test_delete_draft(self, session, owner, make_application):
        application = await make_application()
        service = ApplicationService(session)

        await service.delete_application(application.application_id, owner)

        with pytest.raises(RecordNotFoundError):
            await service.get_application(application.application_id, owner)

    async def test_delete_only_drafts(self, session, owner, make_application):
        application = await make_application(status="created")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation):
            await service.delete_application(application.application_id, owner)


class TestVisibility:
    """Employees only see their own applications."""

    async def test_other_employee_gets_not_found(self, session, other_employee, make_application):
        application = await make_application()
        service = ApplicationService(session)

        with pytest.raises(RecordNotFoundError):
            await service.get_application(application.application_id, other_employee)

    async def test_list_filters_to_own(self, session, admin, owner, other_employee, make_application):
        await make_application(employee="taro")
        await make_application(employee="taro", status="pending")
        await make_application(employee="hanako")
        service = ApplicationService(session)

        assert len(await service.list_applications(admin)) == 3
        assert len(await service.list_applications(owner)) == 2
        assert len(await service.list_applications(other_employee)) == 1
        assert len(await service.list_applications(admin, status="pending")) == 1


class TestInternalLifecycle:
    """Test submit, review and withdraw on internal applications."""

    async def test_submit(self, session, owner, make_application):
        application = await make_application()
        service = ApplicationService(session)

        result = await service.transition(application.application_id, "submit", owner)

        assert result.from_status == "draft"
        assert result.to_status == "pending"
        assert application.submission_date is not None
        assert application.history[-1]["action"] == "submit"
        assert application.history[-1]["user_id"] == str(owner.user_id)

    async def test_approve(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        result = await service.transition(application.application_id, "approve", admin)

        assert result.to_status == "approved"
        assert result.reflection is None
        assert result.reflection_error is None
        assert application.approved_at() is not None

    async def test_employee_cannot_approve(self, session, owner, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation, match="admin role required"):
            await service.transition(application.application_id, "approve", owner)

        await session.refresh(application)
        assert application.status == "pending"
        assert application.history == []

    async def test_return_requires_reason(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation, match="reason is required"):
            await service.transition(application.application_id, "return", admin, reason="  ")

    async def test_return_snapshots_and_comments(self, session, admin, make_application):
        application = await make_application(status="pending", data={"reason": "trip", "days": 2})
        service = ApplicationService(session)

        result = await service.transition(application.application_id, "return", admin, reason="dates missing")

        assert result.to_status == "returned"
        assert len(application.return_history) == 1
        entry = application.return_history[0]
        assert entry["data_snapshot"] == {"reason": "trip", "days": 2}
        assert entry["reason"] == "dates missing"
        assert application.comments[-1]["type"] == "rejection_reason"
        assert application.comments[-1]["content"] == "dates missing"
        assert application.history[-1]["comment"] == "dates missing"

    async def test_resubmit_requires_changes(self, session, admin, owner, make_application):
        application = await make_application(status="pending", data={"reason": "trip"})
        service = ApplicationService(session)
        await service.transition(application.application_id, "return", admin, reason="dates missing")

        assert await service.has_changes(application.application_id, owner) is False
        with pytest.raises(GuardViolation, match="no changes"):
            await service.transition(application.application_id, "submit", owner)

        await service.update_application(
            application.application_id, owner, data={"reason": "trip", "from": "2024-05-01"}
        )
        assert await service.has_changes(application.application_id, owner) is True

        result = await service.transition(application.application_id, "submit", owner)
        assert result.to_status == "pending"
        # snapshot taken at return is untouched by the edit
        assert application.return_history[0]["data_snapshot"] == {"reason": "trip"}

    async def test_revert_to_snapshot_blocks_resubmit(self, session, admin, owner, make_application):
        application = await make_application(status="pending", data={"reason": "trip"})
        service = ApplicationService(session)
        await service.transition(application.application_id, "return", admin, reason="dates missing")

        await service.update_application(application.application_id, owner, data={"reason": "other"})
        await service.update_application(application.application_id, owner, data={"reason": "trip"})

        assert await service.has_changes(application.application_id, owner) is False

    async def test_reject(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        result = await service.transition(application.application_id, "reject", admin, reason="not eligible")

        assert result.to_status == "rejected"
        assert application.comments[-1]["type"] == "rejection_reason"
        assert application.return_history == []

    async def test_withdraw(self, session, owner, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        result = await service.transition(application.application_id, "withdraw", owner)

        assert result.to_status == "withdrawn"
        assert application.withdrawn_at is not None

    async def test_unknown_action(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation, match="unknown action"):
            await service.transition(application.application_id, "escalate", admin)

    async def test_terminal_status_is_final(self, session, admin, make_application):
        application = await make_application(status="approved")
        service = ApplicationService(session)

        for action in ("approve", "return", "reject", "withdraw", "submit"):
            with pytest.raises(GuardViolation):
                await service.transition(application.application_id, action, admin, reason="r")


class TestConcurrency:
    """Test compare-and-swap on status and version."""

    async def test_concurrent_write_is_stale(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        # another writer commits a change behind the loaded object
        await session.execute(
            update(Application)
            .where(Application.application_id == application.application_id)
            .values(status="approved", version=application.version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(StaleStateError):
            await service.transition(application.application_id, "approve", admin)

    async def test_second_approval_is_refused(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        await service.transition(application.application_id, "approve", admin)
        with pytest.raises(GuardViolation):
            await service.transition(application.application_id, "approve", admin)

        approvals = [h for h in application.history if h["action"] == "approve"]
        assert len(approvals) == 1


class TestExternalLifecycle:
    """Test delivery status coupling on external applications."""

    async def test_sent_then_received(self, session, admin, make_application):
        application = await make_application(code="QUALIFICATION_ACQUISITION", status="created")
        service = ApplicationService(session)

        await service.set_external_status(application.application_id, "sent", admin)
        assert application.status == "pending_not_received"
        assert application.external_application_status == "sent"
        assert application.submission_date is not None

        with pytest.raises(GuardViolation, match="not been received"):
            await service.transition(application.application_id, "approve", admin)

        await service.set_external_status(application.application_id, "received", admin)
        assert application.status == "pending_received"

        result = await service.transition(application.application_id, "approve", admin)
        assert result.to_status == "approved"
        assert result.reflection is None

    async def test_error_keeps_status(self, session, admin, make_application):
        application = await make_application(
            code="QUALIFICATION_ACQUISITION",
            status="pending_not_received",
            external_application_status="sent",
        )
        service = ApplicationService(session)

        await service.set_external_status(application.application_id, "error", admin, comment="portal down")

        assert application.status == "pending_not_received"
        assert application.external_application_status == "error"
        assert application.history[-1]["comment"] == "portal down"

    async def test_only_admins_set_delivery_status(self, session, owner, make_application):
        application = await make_application(code="QUALIFICATION_ACQUISITION", status="created")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation):
            await service.set_external_status(application.application_id, "sent", owner)

    async def test_internal_has_no_delivery_status(self, session, admin, make_application):
        application = await make_application(status="pending")
        service = ApplicationService(session)

        with pytest.raises(GuardViolation):
            await service.set_external_status(application.application_id, "sent", admin)

    async def test_cannot_reset_to_unset(self, session, admin, make_application):
        application = await make_application(
            code="QUALIFICATION_ACQUISITION",
            status="pending_not_received",
            external_application_status="sent",
        )
        service = ApplicationService(session)

        with pytest.raises(GuardViolation, match="unset"):
            await service.set_external_status(application.application_id, "unset", admin)

    async def test_resubmit_resets_delivery_and_restores_date(self, session, admin, owner, make_application):
        application = await make_application(code="QUALIFICATION_ACQUISITION", status="created")
        service = ApplicationService(session)

        await service.set_external_status(application.application_id, "sent", admin)
        await service.set_external_status(application.application_id, "received", admin)
        submitted = application.submission_date
        await service.transition(application.application_id, "return", admin, reason="stamp missing")

        with pytest.raises(GuardViolation, match="only an admin can resubmit"):
            await service.transition(application.application_id, "submit", owner)

        await service.update_application(application.application_id, admin, data={"reason": "stamped"})
        result = await service.transition(application.application_id, "submit", admin)

        assert result.to_status == "pending"
        assert application.external_application_status == "unset"
        assert application.submission_date == submitted


class TestComments:
    async def test_add_comment(self, session, owner, make_application):
        application = await make_application()
        service = ApplicationService(session)

        await service.add_comment(application.application_id, owner, "  please check  ")

        assert application.comments[-1]["content"] == "please check"
        assert application.comments[-1]["type"] == "comment"

    async def test_empty_comment(self, session, owner, make_application):
        application = await make_application()
        service = ApplicationService(session)

        with pytest.raises(InvalidRequestError):
            await service.add_comment(application.application_id, owner, "   ")

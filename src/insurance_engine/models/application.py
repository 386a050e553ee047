"""Application record model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from insurance_engine.models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from insurance_engine.models.organization import ApplicationType


class Application(Base, TimestampMixin):
    """Benefit/insurance application moving through the review lifecycle.

    ``history``, ``comments`` and ``return_history`` are append-only JSON
    arrays. They are only ever replaced with a longer list that keeps every
    prior element unchanged, in the same write as the status change.
    """

    __tablename__ = "application"

    application_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    # NULL means the organization itself is the submitter
    employee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=True,
    )
    application_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("application_type.application_type_id"),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    external_application_status: Mapped[str | None] = mapped_column(String, nullable=True)

    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    comments: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    return_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    related_internal_application_ids: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    related_external_application_ids: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submission_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Bumped on every committed transition (compare-and-swap token)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "category IN ('internal', 'external')",
            name="application_category_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'created', 'pending', 'pending_received', "
            "'pending_not_received', 'approved', 'rejected', 'returned', 'withdrawn')",
            name="application_status_check",
        ),
        CheckConstraint(
            "(category = 'external' AND external_application_status IN "
            "('unset', 'sent', 'received', 'error')) "
            "OR (category = 'internal' AND external_application_status IS NULL)",
            name="application_external_status_check",
        ),
    )

    # Relationships
    application_type: Mapped[ApplicationType] = relationship(lazy="joined")

    def is_owned_by(self, employee_id: UUID | None) -> bool:
        """Check if the given employee is the submitter of this application."""
        return self.employee_id is not None and self.employee_id == employee_id

    def latest_return_entry(self) -> dict[str, Any] | None:
        """Most recent return-history entry, if the application was ever returned."""
        if not self.return_history:
            return None
        return self.return_history[-1]

    def approved_at(self) -> datetime | None:
        """Timestamp of the approve history entry, if any."""
        for entry in self.history or []:
            if entry.get("action") == "approve":
                return datetime.fromisoformat(entry["created_at"])
        return None

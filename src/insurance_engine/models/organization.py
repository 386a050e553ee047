"""Organization and application type models."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from insurance_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from insurance_engine.models.employee import Employee


class Organization(Base, TimestampMixin):
    """Organization (employer) that owns employees, applications and rate tables."""

    __tablename__ = "organization"

    organization_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)

    # Relationships
    application_types: Mapped[list[ApplicationType]] = relationship(
        back_populates="organization"
    )
    employees: Mapped[list[Employee]] = relationship(back_populates="organization")


class ApplicationType(Base, TimestampMixin):
    """Application type configured for an organization.

    ``code`` drives behavior (e.g. which approvals are reflected onto the
    employee record); ``name`` is the display name recorded in change history.
    """

    __tablename__ = "application_type"

    application_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="application_type_org_code_unique"),
        CheckConstraint(
            "category IN ('internal', 'external')",
            name="application_type_category_check",
        ),
    )

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="application_types")

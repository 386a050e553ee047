"""Employee model with the insurance profile used by reflection."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from insurance_engine.models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from insurance_engine.models.organization import Organization


class Employee(Base, TimestampMixin):
    """Employee record."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    first_name_kana: Mapped[str] = mapped_column(String, nullable=False, default="")
    last_name_kana: Mapped[str] = mapped_column(String, nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    # Identification numbers used to match application payloads
    health_insurance_number: Mapped[str | None] = mapped_column(String, nullable=True)
    my_number: Mapped[str | None] = mapped_column(String, nullable=True)
    pension_number: Mapped[str | None] = mapped_column(String, nullable=True)

    # Insurance profile
    average_reward: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    grade: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pension_grade: Mapped[int | None] = mapped_column(Integer, nullable=True)
    standard_reward: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    grade_and_standard_reward_effective_date: Mapped[date | None] = mapped_column(
        Date, nullable=True
    )

    official_address: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    dependent_info: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    other_company_info: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    change_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "employee_number", name="employee_org_number_unique"
        ),
        CheckConstraint(
            "status IN ('active', 'leave', 'retired', 'pre_join')",
            name="employee_status_check",
        ),
    )

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="employees")

    @property
    def full_name(self) -> str:
        """Get full name (family name first)."""
        return f"{self.last_name} {self.first_name}"

    @property
    def has_other_employers(self) -> bool:
        """Whether the employee also works for other companies."""
        return bool(self.other_company_info)

    def has_reflected(self, application_id: UUID) -> bool:
        """Check if an application was already reflected onto this employee."""
        key = str(application_id)
        return any(entry.get("application_id") == key for entry in self.change_history or [])

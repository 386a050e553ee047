"""Insurance rate table (standard reward grade) model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, composite, mapped_column

from insurance_engine.models.base import Base, TimestampMixin
from insurance_engine.periods import floor_to_month


@dataclass
class PremiumRate:
    """Contribution rate with the full and employee-half premium for a grade."""

    rate: Decimal
    total: Decimal
    half: Decimal


class InsuranceRateTable(Base, TimestampMixin):
    """One grade row of a time-versioned rate table.

    All rows published together share one ``[effective_from, effective_to]``
    window. ``max_amount`` of 0 or NULL means the grade has no upper bound.

    The amount range is ``[min_amount, max_amount)``: the upper bound is
    exclusive, so an amount equal to one grade's ``max_amount`` belongs to the
    next grade up (63000 against 0-63000 and 63000-73000 is grade 2).
    """

    __tablename__ = "insurance_rate_table"

    rate_table_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    # NULL means shared across all organizations
    organization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=True,
    )
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    pension_grade: Mapped[int | None] = mapped_column(Integer, nullable=True)
    standard_reward_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    health_without_care: Mapped[PremiumRate] = composite(
        mapped_column("health_without_care_rate", Numeric(7, 3), nullable=False, default=0),
        mapped_column("health_without_care_total", Numeric(12, 2), nullable=False, default=0),
        mapped_column("health_without_care_half", Numeric(12, 2), nullable=False, default=0),
    )
    health_with_care: Mapped[PremiumRate] = composite(
        mapped_column("health_with_care_rate", Numeric(7, 3), nullable=False, default=0),
        mapped_column("health_with_care_total", Numeric(12, 2), nullable=False, default=0),
        mapped_column("health_with_care_half", Numeric(12, 2), nullable=False, default=0),
    )
    pension: Mapped[PremiumRate] = composite(
        mapped_column("pension_rate", Numeric(7, 3), nullable=False, default=0),
        mapped_column("pension_total", Numeric(12, 2), nullable=False, default=0),
        mapped_column("pension_half", Numeric(12, 2), nullable=False, default=0),
    )

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("grade >= 1", name="rate_table_grade_positive"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="rate_table_dates_check",
        ),
    )

    @property
    def is_open_ended(self) -> bool:
        """Whether the grade has no upper amount bound."""
        return not self.max_amount

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if the row applies to the calendar month of ``as_of_date``."""
        month = floor_to_month(as_of_date)
        if floor_to_month(self.effective_from) > month:
            return False
        if self.effective_to is not None and floor_to_month(self.effective_to) < month:
            return False
        return True

    def covers_amount(self, amount: Decimal | int) -> bool:
        """Check if ``amount`` falls in ``[min_amount, max_amount)``."""
        if amount < self.min_amount:
            return False
        return self.is_open_ended or amount < self.max_amount

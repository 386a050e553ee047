"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from insurance_engine.calculators import ConflictAction, ConflictCase
from insurance_engine.services.state_machine import ApplicationAction, ExternalApplicationStatus


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers."""

    detail: str
    code: str


# ============================================================================
# Application schemas
# ============================================================================


class Attachment(BaseModel):
    """Attachment reference; file storage itself lives elsewhere."""

    file_name: str = Field(min_length=1)
    file_url: str | None = None


class ApplicationTypeResponse(BaseModel):
    """Schema for application type response."""

    model_config = ConfigDict(from_attributes=True)

    application_type_id: UUID
    code: str
    name: str
    category: str


class ApplicationCreate(BaseModel):
    """Schema for creating a new application."""

    application_type_id: UUID
    data: dict[str, Any] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)
    employee_id: UUID | None = None
    deadline: datetime | None = None
    related_internal_application_ids: list[UUID] = Field(default_factory=list)
    related_external_application_ids: list[UUID] = Field(default_factory=list)
    status: Literal["draft", "created"] = "draft"


class ApplicationUpdate(BaseModel):
    """Schema for editing application content."""

    data: dict[str, Any] | None = None
    attachments: list[Attachment] | None = None


class ApplicationResponse(BaseModel):
    """Schema for application response."""

    model_config = ConfigDict(from_attributes=True)

    application_id: UUID
    organization_id: UUID
    employee_id: UUID | None = None
    application_type: ApplicationTypeResponse
    category: str
    status: str
    external_application_status: str | None = None
    data: dict[str, Any]
    attachments: list[dict[str, Any]]
    history: list[dict[str, Any]]
    comments: list[dict[str, Any]]
    return_history: list[dict[str, Any]]
    related_internal_application_ids: list[str]
    related_external_application_ids: list[str]
    deadline: datetime | None = None
    submission_date: datetime | None = None
    withdrawn_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class ApplicationListResponse(BaseModel):
    """Schema for listing applications."""

    items: list[ApplicationResponse]
    total: int


class TransitionRequest(BaseModel):
    """Schema for a lifecycle action."""

    action: ApplicationAction
    reason: str | None = None


class ExternalStatusRequest(BaseModel):
    """Schema for recording the delivery status of an external application."""

    external_status: ExternalApplicationStatus
    comment: str | None = None


class CommentRequest(BaseModel):
    """Schema for adding a comment."""

    text: str = Field(min_length=1)


class EmployeeReflectionResponse(BaseModel):
    """Changes written to one employee."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    changes: list[dict[str, Any]]


class SkippedPersonResponse(BaseModel):
    """Insured person that could not be reflected."""

    model_config = ConfigDict(from_attributes=True)

    identifier: str | None = None
    reason: str


class ReflectionSummaryResponse(BaseModel):
    """Schema for a reflection summary."""

    model_config = ConfigDict(from_attributes=True)

    application_id: UUID
    application_type_code: str | None = None
    reflected: list[EmployeeReflectionResponse]
    skipped: list[SkippedPersonResponse]
    already_reflected: list[UUID]
    unchanged: list[UUID]


class TransitionResponse(BaseModel):
    """Schema for transition response."""

    application: ApplicationResponse
    from_status: str
    to_status: str
    reflection: ReflectionSummaryResponse | None = None
    reflection_error: str | None = None


class HasChangesResponse(BaseModel):
    """Schema for resubmission eligibility."""

    application_id: UUID
    has_changes: bool


# ============================================================================
# Rate table schemas
# ============================================================================


class PremiumRateSchema(BaseModel):
    """Contribution rate with full and half premium."""

    model_config = ConfigDict(from_attributes=True)

    rate: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    half: Decimal = Decimal("0")


class RateTableEntryInput(BaseModel):
    """One grade row of a version being published."""

    grade: int = Field(ge=1)
    pension_grade: int | None = Field(default=None, ge=1)
    standard_reward_amount: Decimal = Field(ge=0)
    min_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_amount: Decimal | None = Field(default=None, ge=0)
    health_without_care: PremiumRateSchema = Field(default_factory=PremiumRateSchema)
    health_with_care: PremiumRateSchema = Field(default_factory=PremiumRateSchema)
    pension: PremiumRateSchema = Field(default_factory=PremiumRateSchema)


class RateTableEntryResponse(RateTableEntryInput):
    """Schema for a stored rate table row."""

    model_config = ConfigDict(from_attributes=True)

    rate_table_id: UUID
    organization_id: UUID | None = None
    effective_from: date
    effective_to: date | None = None


class ConflictDecisionInput(BaseModel):
    """Caller decision for one conflict case."""

    action: ConflictAction
    effective_to: date | None = None


class PublishRequest(BaseModel):
    """Schema for publishing a rate table version."""

    effective_from: date
    effective_to: date | None = None
    entries: list[RateTableEntryInput] = Field(min_length=1)
    decisions: dict[ConflictCase, ConflictDecisionInput] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_window(self) -> "PublishRequest":
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to must not be before effective_from")
        return self


class PublishResponse(BaseModel):
    """Schema for a published rate table version."""

    effective_from: date
    effective_to: date | None = None
    entries: list[RateTableEntryResponse]
    deleted_count: int
    moved_count: int


class GradeResolutionResponse(BaseModel):
    """Schema for a grade lookup."""

    amount: Decimal
    as_of_date: date
    grade: int
    pension_grade: int | None = None
    standard_reward_amount: Decimal

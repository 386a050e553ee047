"""Rate table API endpoints."""

from datetime import date
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from insurance_engine.api.dependencies import CurrentActor, DbSession, OrganizationId
from insurance_engine.api.schemas import (
    ErrorResponse,
    GradeResolutionResponse,
    PublishRequest,
    PublishResponse,
    RateTableEntryInput,
    RateTableEntryResponse,
)
from insurance_engine.calculators import ConflictDecision, RateTableWindow
from insurance_engine.models import InsuranceRateTable, PremiumRate
from insurance_engine.services.rate_table_service import RateTableService

router = APIRouter(prefix="/rate-tables", tags=["rate-tables"])


def _to_model(entry: RateTableEntryInput) -> InsuranceRateTable:
    return InsuranceRateTable(
        grade=entry.grade,
        pension_grade=entry.pension_grade,
        standard_reward_amount=entry.standard_reward_amount,
        min_amount=entry.min_amount,
        max_amount=entry.max_amount,
        health_without_care=PremiumRate(**entry.health_without_care.model_dump()),
        health_with_care=PremiumRate(**entry.health_with_care.model_dump()),
        pension=PremiumRate(**entry.pension.model_dump()),
    )


@router.get("/active", response_model=list[RateTableEntryResponse])
async def list_active_entries(
    db: DbSession,
    organization_id: OrganizationId,
    as_of: Annotated[date | None, Query()] = None,
) -> list[RateTableEntryResponse]:
    """Rate table rows active for the month of ``as_of`` (default today)."""
    entries = await RateTableService(db).get_active_entries(organization_id, as_of or date.today())
    return [RateTableEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/resolve",
    response_model=GradeResolutionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def resolve_grade(
    db: DbSession,
    organization_id: OrganizationId,
    amount: Annotated[Decimal, Query(ge=0)],
    as_of: Annotated[date | None, Query()] = None,
) -> GradeResolutionResponse:
    """Resolve grade, pension grade and standard reward for an amount."""
    as_of_date = as_of or date.today()
    resolution = await RateTableService(db).resolve(organization_id, amount, as_of_date)
    return GradeResolutionResponse(
        amount=amount,
        as_of_date=as_of_date,
        grade=resolution.grade,
        pension_grade=resolution.pension_grade,
        standard_reward_amount=resolution.standard_reward_amount,
    )


@router.post(
    "",
    response_model=PublishResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def publish_version(
    db: DbSession,
    actor: CurrentActor,
    payload: PublishRequest,
) -> PublishResponse:
    """Publish a rate table version.

    Overlaps with stored versions answer 409 with the conflict case until
    the request carries a decision for it.
    """
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Publishing rate tables requires the admin role",
        )

    result = await RateTableService(db).publish_version(
        actor.organization_id,
        [_to_model(e) for e in payload.entries],
        RateTableWindow(payload.effective_from, payload.effective_to),
        {
            case: ConflictDecision(d.action, d.effective_to)
            for case, d in payload.decisions.items()
        },
    )
    if result.conflict is not None:
        raise result.conflict

    await db.commit()
    return PublishResponse(
        effective_from=result.window.effective_from,
        effective_to=result.window.effective_to,
        entries=[RateTableEntryResponse.model_validate(e) for e in result.entries],
        deleted_count=result.deleted_count,
        moved_count=result.moved_count,
    )

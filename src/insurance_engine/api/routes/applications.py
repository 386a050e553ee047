"""Application API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from insurance_engine.api.dependencies import CurrentActor, DbSession
from insurance_engine.api.schemas import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationUpdate,
    CommentRequest,
    ErrorResponse,
    ExternalStatusRequest,
    HasChangesResponse,
    ReflectionSummaryResponse,
    TransitionRequest,
    TransitionResponse,
)
from insurance_engine.services.application_service import ApplicationService

router = APIRouter(prefix="/applications", tags=["applications"])

ApplicationId = Annotated[UUID, Path()]


# ============================================================================
# Application CRUD
# ============================================================================


@router.post(
    "",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_application(
    db: DbSession,
    actor: CurrentActor,
    payload: ApplicationCreate,
) -> ApplicationResponse:
    """Create a new application in draft (or created) status."""
    service = ApplicationService(db)
    application = await service.create_application(
        actor,
        payload.application_type_id,
        data=payload.data,
        attachments=[a.model_dump() for a in payload.attachments],
        employee_id=payload.employee_id,
        deadline=payload.deadline,
        related_internal_application_ids=payload.related_internal_application_ids,
        related_external_application_ids=payload.related_external_application_ids,
        status=payload.status,
    )
    await db.commit()
    return ApplicationResponse.model_validate(application)


@router.get("", response_model=ApplicationListResponse)
async def list_applications(
    db: DbSession,
    actor: CurrentActor,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    category: Annotated[str | None, Query()] = None,
    employee_id: Annotated[UUID | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> ApplicationListResponse:
    """List applications visible to the caller, newest first."""
    applications = await ApplicationService(db).list_applications(
        actor,
        status=status_filter,
        category=category,
        employee_id=employee_id,
        limit=limit,
    )
    return ApplicationListResponse(
        items=[ApplicationResponse.model_validate(a) for a in applications],
        total=len(applications),
    )


@router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_application(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
) -> ApplicationResponse:
    """Get application details."""
    application = await ApplicationService(db).get_application(application_id, actor)
    return ApplicationResponse.model_validate(application)


@router.patch(
    "/{application_id}",
    response_model=ApplicationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_application(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
    payload: ApplicationUpdate,
) -> ApplicationResponse:
    """Edit data and attachments while the application is editable."""
    attachments = None
    if payload.attachments is not None:
        attachments = [a.model_dump() for a in payload.attachments]
    application = await ApplicationService(db).update_application(
        application_id, actor, data=payload.data, attachments=attachments
    )
    await db.commit()
    return ApplicationResponse.model_validate(application)


@router.delete(
    "/{application_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_application(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
) -> Response:
    """Delete a draft."""
    await ApplicationService(db).delete_application(application_id, actor)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/{application_id}/transitions",
    response_model=TransitionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def transition_application(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
    payload: TransitionRequest,
) -> TransitionResponse:
    """Submit, approve, return, reject or withdraw an application."""
    result = await ApplicationService(db).transition(
        application_id, payload.action, actor, reason=payload.reason
    )
    await db.commit()
    return TransitionResponse(
        application=ApplicationResponse.model_validate(result.application),
        from_status=result.from_status,
        to_status=result.to_status,
        reflection=(
            ReflectionSummaryResponse.model_validate(result.reflection)
            if result.reflection
            else None
        ),
        reflection_error=result.reflection_error,
    )


@router.post(
    "/{application_id}/external-status",
    response_model=ApplicationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def set_external_status(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
    payload: ExternalStatusRequest,
) -> ApplicationResponse:
    """Record the delivery status of an external application."""
    application = await ApplicationService(db).set_external_status(
        application_id, payload.external_status, actor, comment=payload.comment
    )
    await db.commit()
    return ApplicationResponse.model_validate(application)


@router.get(
    "/{application_id}/has-changes",
    response_model=HasChangesResponse,
    responses={404: {"model": ErrorResponse}},
)
async def has_changes(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
) -> HasChangesResponse:
    """Whether a returned application was edited since the return."""
    changed = await ApplicationService(db).has_changes(application_id, actor)
    return HasChangesResponse(application_id=application_id, has_changes=changed)


@router.post(
    "/{application_id}/comments",
    response_model=ApplicationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def add_comment(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
    payload: CommentRequest,
) -> ApplicationResponse:
    """Append a comment."""
    application = await ApplicationService(db).add_comment(application_id, actor, payload.text)
    await db.commit()
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/reflection",
    response_model=ReflectionSummaryResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reflect_application(
    db: DbSession,
    actor: CurrentActor,
    application_id: ApplicationId,
) -> ReflectionSummaryResponse:
    """Re-run employee reflection for an approved application."""
    summary = await ApplicationService(db).reflect_approved_application(application_id, actor)
    await db.commit()
    return ReflectionSummaryResponse.model_validate(summary)

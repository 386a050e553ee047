"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from insurance_engine.database import init_db
from insurance_engine.services.state_machine import Actor, ActorRole


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything left uncommitted is rolled back
    when the session closes.
    """
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_organization_id(
    x_organization_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """Extract organization ID from header."""
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-ID header is required",
        )
    return _parse_uuid(x_organization_id, "X-Organization-ID")


async def get_actor(
    organization_id: Annotated[UUID, Depends(get_organization_id)],
    x_user_id: Annotated[str | None, Header()] = None,
    x_role: Annotated[str | None, Header()] = None,
    x_employee_id: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the caller context from request headers."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )
    try:
        role = ActorRole((x_role or ActorRole.EMPLOYEE.value).lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Role must be 'admin' or 'employee'",
        )
    return Actor(
        user_id=_parse_uuid(x_user_id, "X-User-ID"),
        organization_id=organization_id,
        role=role,
        employee_id=_parse_uuid(x_employee_id, "X-Employee-ID") if x_employee_id else None,
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
OrganizationId = Annotated[UUID, Depends(get_organization_id)]
CurrentActor = Annotated[Actor, Depends(get_actor)]

"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeping_engine.actor import Actor, Role
from bookkeeping_engine.database import init_db


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency. Routes commit their own writes."""
    _, session_factory = init_db()
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_uuid(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_company_id(x_company_id: Annotated[str | None, Header()] = None) -> UUID:
    """Extract the resolved tenant from the X-Company-ID header."""
    return _parse_uuid(x_company_id, "X-Company-ID")


async def get_actor(
    company_id: Annotated[UUID, Depends(get_company_id)],
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the caller identity from the identity resolver's headers."""
    user_id = _parse_uuid(x_user_id, "X-User-ID") if x_user_id else None
    try:
        role = Role(x_user_role or Role.VIEWER.value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown X-User-Role {x_user_role!r}",
        )
    return Actor(company_id=company_id, user_id=user_id, role=role)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CompanyId = Annotated[UUID, Depends(get_company_id)]
CurrentActor = Annotated[Actor, Depends(get_actor)]

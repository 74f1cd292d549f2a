from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Depends, HTTPException, Request, status

from hostelhub.core.cache import AccessCaches
from hostelhub.core.database import db_manager, service_db_manager
from hostelhub.core.security import resolve_session_user
from hostelhub.modules.access.gate import LazySession, resolve_admin_status
from hostelhub.schemas.session_schema import SessionUser

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in db_manager.get_db_session():
        yield session

async def get_service_db() -> AsyncGenerator[AsyncSession, None]:
    """Session on the elevated-privilege connection. Only for flows without a user session."""
    async for session in service_db_manager.get_db_session():
        yield session

def get_access_caches(request: Request) -> AccessCaches:
    return request.app.state.access_caches

# --- Session Dependencies ---

async def get_optional_user(request: Request) -> Optional[SessionUser]:
    return resolve_session_user(request)

async def get_current_user(user: Optional[SessionUser] = Depends(get_optional_user)) -> SessionUser:
    """
    Dependency to get the current user from the session token.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

async def get_admin_status(
    current_user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    caches: AccessCaches = Depends(get_access_caches),
) -> bool:
    """Whether the current user is an admin, resolved the same way the access gate does it."""
    return await resolve_admin_status(current_user, LazySession(lambda: db), caches)

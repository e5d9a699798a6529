"""Role-Based Access Control dependencies for FastAPI."""

from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.realtime.hub import Broadcaster, NullBroadcaster, PendingBroadcaster
from app.services.auth_service import decode_access_token
from app.services.user_service import get_user_by_id

# Bearer token extractor
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT token from the Authorization header.
    Returns the authenticated User object.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await get_user_by_id(db, user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return user


def require_role(*roles: str):
    """
    Dependency factory that creates a role-checking dependency.
    Usage: Depends(require_role("ADMIN", "FACULTY"))
    """
    async def role_checker(
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role.value not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role(s): {', '.join(roles)}",
            )
        return current_user
    return role_checker


async def get_broadcaster(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AsyncIterator[Broadcaster]:
    """
    Request-scoped broadcaster over the app-wide one (a no-op when none was
    installed). Events are held until the request's transaction commits and
    are dropped when the request fails.
    """
    pending = PendingBroadcaster(getattr(request.app.state, "broadcaster", None) or NullBroadcaster())
    yield pending
    await db.commit()
    await pending.flush()


# Convenience dependencies
require_admin = require_role("ADMIN")
require_faculty = require_role("FACULTY")
require_student = require_role("STUDENT")
require_admin_or_faculty = require_role("ADMIN", "FACULTY")

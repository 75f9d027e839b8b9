"""
Request-scoped identity for the API routers.

Tokens are issued upstream; this module only resolves the bearer token to an
active ``User`` row and applies the admin and self-or-admin rules.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.user import User
from ..utils.auth import verify_token
from ..utils.exceptions import AuthorizationError


security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the bearer token to an active user or answer 401."""
    token_data = verify_token(credentials.credentials)
    user = await db.get(User, token_data.user_id) if token_data else None

    if user is None:
        raise _unauthorized("Could not validate credentials")
    if not user.is_active:
        raise _unauthorized("Inactive user")
    return user


async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """Admins only: sweeps and full recounts."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return current_user


def ensure_self_or_admin(current_user: User, user_id: int, message: str) -> None:
    """Raise ``AuthorizationError`` unless the caller is ``user_id`` or an admin."""
    if user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError(message)

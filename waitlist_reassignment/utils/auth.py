"""
Bearer token handling.

Tokens are HS256 JWTs whose ``sub`` claim is the numeric user ID. The identity
service issues them in production; ``create_access_token`` exists for local
development (``scripts.py token``) and the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from ..config import settings


class TokenData(BaseModel):
    user_id: int
    email: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign ``data`` (which should carry ``sub``) with an ``exp`` claim added."""
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Optional[TokenData]:
    """Decode a token; None when the signature, expiry or subject is bad."""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    subject = str(claims.get("sub", ""))
    if not subject.isdigit():
        return None
    return TokenData(user_id=int(subject), email=claims.get("email"))

"""JWT bearer authentication for payment endpoints.

User accounts live in the storefront; this service only verifies the
access tokens it issues and reads the user id and role claims.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import AuthenticationError, AuthorizationError

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    type: str  # "access"
    jti: str
    roles: list[str] = []


class CurrentUser(BaseModel):
    """Authenticated caller resolved from a bearer token."""

    id: str
    roles: list[str] = []

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def create_access_token(
    user_id: str,
    roles: Optional[list[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create an access token.

    Args:
        user_id: Storefront user id
        roles: Role names granted to the user
        expires_delta: Token lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        str: Encoded JWT
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access",
        "jti": str(uuid.uuid4()),
        "roles": roles or [],
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT access token.

    Args:
        token: Encoded JWT token

    Returns:
        TokenPayload | None: Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        decoded = TokenPayload(
            sub=payload["sub"],
            exp=datetime.utcfromtimestamp(payload["exp"]),
            iat=datetime.utcfromtimestamp(payload["iat"]),
            type=payload["type"],
            jti=payload["jti"],
            roles=payload.get("roles") or [],
        )
    except (JWTError, KeyError, ValueError):
        return None

    if decoded.type != "access":
        return None
    return decoded


security = HTTPBearer(auto_error=False)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[CurrentUser]:
    """Resolve the caller if a bearer token was sent.

    Raises:
        AuthenticationError: If a token was sent but is invalid
    """
    if credentials is None:
        return None

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    return CurrentUser(id=payload.sub, roles=payload.roles)


async def get_current_user(
    user: Optional[CurrentUser] = Depends(get_optional_user),
) -> CurrentUser:
    """Require an authenticated caller."""
    if user is None:
        raise AuthenticationError("Authentication required")
    return user


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require an authenticated caller with the admin role."""
    if not user.is_admin:
        raise AuthorizationError("Administrator role required")
    return user

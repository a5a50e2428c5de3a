"""
Authentication dependencies for FastAPI.

Resolves the bearer token into a `Principal` once per request. The identity
service is trusted: no user table lookup happens here.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from backend.app.core.jwt import decode_access_token
from backend.app.models.enums import UserRole

# HTTP Bearer security scheme
security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as asserted by the identity service."""
    user_id: int
    role: UserRole
    is_verified: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    FastAPI dependency for JWT authentication.

    Raises:
        HTTPException: 401 if the token is invalid or lacks identity claims
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    try:
        user_id = int(payload["user_id"])
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token payload")

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise _unauthorized("Invalid role in token")

    return Principal(
        user_id=user_id,
        role=role,
        is_verified=bool(payload.get("is_verified", False)),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

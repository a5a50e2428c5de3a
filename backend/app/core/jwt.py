"""
Bearer token verification.

Tokens are issued by the identity service and carry `user_id`, `role` and
optionally `is_verified`. This backend only verifies them; `create_access_token`
mints equivalent tokens for local tooling and tests.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.config import settings
from backend.app.models.enums import UserRole

REQUIRED_CLAIMS = ("user_id", "role")


def create_access_token(
    user_id: int,
    role: UserRole,
    is_verified: bool = True,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {
        "sub": str(user_id),
        "user_id": user_id,
        "role": role.value,
        "is_verified": is_verified,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry and check the identity claims are present.

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if any(payload.get(claim) in (None, "") for claim in REQUIRED_CLAIMS):
        return None
    return payload

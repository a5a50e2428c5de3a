"""
Security guards for role-based access control.

Ownership checks live at the top of each service method; this module only
answers "may this role call this endpoint at all".
"""

from typing import List

from fastapi import Depends, HTTPException, status

from backend.app.core.dependencies import Principal, get_current_user
from backend.app.models.enums import UserRole


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/routes")
        async def create_route(principal: Principal = Depends(require_role([UserRole.DRIVER]))):
            ...

    Raises:
        HTTPException 403 if the principal's role is not in allowed_roles
    """
    async def role_checker(principal: Principal = Depends(get_current_user)) -> Principal:
        if principal.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return principal

    return role_checker


def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    """Dependency for admin-only endpoints."""
    if principal.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return principal

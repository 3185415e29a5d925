from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole


def require_roles(*roles: UserRole):
    """
    Dependency factory restricting an endpoint to the given roles. ADMIN always passes.

    Example:
        Depends(require_roles(UserRole.IQA, UserRole.CENTER_ADMIN))
    """
    allowed = {r.value for r in roles} | {UserRole.ADMIN.value}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker


# Roles that manage a center's learners and qualifications
STAFF_ROLES = (
    UserRole.CENTER_ADMIN,
    UserRole.ASSESSOR,
    UserRole.IQA,
    UserRole.EQA,
)

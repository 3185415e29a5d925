import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import LoginRequest, LoginResponse, UserInfo
from app.auth.security import create_access_token, verify_password
from app.core.exceptions import ServiceError, service_boundary

logger = logging.getLogger(__name__)


@service_boundary("logging in")
async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    # Emails are unique ignoring case, see uq_users_email_lower
    user_stmt = select(User).where(func.lower(User.email) == func.lower(payload.email))
    user_result = await db.execute(user_stmt)
    user: Optional[User] = user_result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning("Failed login for %s", payload.email)
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    if user.status != "ACTIVE":
        raise ServiceError("User is inactive", status.HTTP_403_FORBIDDEN)

    issued_at = datetime.now(timezone.utc)
    access_token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "role": user.role,
            "center_id": user.center_id,
        }
    )
    return LoginResponse(
        access_token=access_token,
        user=UserInfo(
            id=user.id,
            name=user.name,
            surname=user.surname,
            email=user.email,
            role=user.role,
            center_id=user.center_id,
        ),
        issued_at=issued_at,
    )

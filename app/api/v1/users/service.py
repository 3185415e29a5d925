import logging
from typing import Optional, Set

from fastapi import status
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.assessments.service import resolve_center_id
from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.auth.security import hash_password, verify_password
from app.core.enums import UserRole
from app.core.exceptions import ServiceError, service_boundary
from app.core.models import LearnerStaff, UserUnit
from app.core.pagination import paginate_select
from app.core.schemas import PaginatedResponse

from .schemas import STAFF_ROLE_VALUES, PasswordChange, ProfileUpdate, StaffCreate, StaffUpdate, UserResponse

logger = logging.getLogger(__name__)


async def check_duplicate_email(db: AsyncSession, email: str, exclude_user_id: Optional[int] = None) -> bool:
    """True when another account already uses the email, compared ignoring case across all centers."""
    stmt = select(User.id).where(func.lower(User.email) == email.strip().lower())
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    result = await db.execute(stmt)
    return result.first() is not None


def _manageable_roles(current_user: CurrentUser) -> Set[str]:
    """Platform admins manage every staff role; center admins manage their assessors and quality staff."""
    if current_user.role == UserRole.ADMIN.value:
        return set(STAFF_ROLE_VALUES)
    if current_user.role == UserRole.CENTER_ADMIN.value:
        return {UserRole.ASSESSOR.value, UserRole.IQA.value, UserRole.EQA.value}
    return set()


async def _get_scoped_staff(db: AsyncSession, current_user: CurrentUser, user_id: int) -> Optional[User]:
    user = await db.get(User, user_id)
    if user is None or user.role not in STAFF_ROLE_VALUES:
        return None
    if current_user.role != UserRole.ADMIN.value and user.center_id != current_user.center_id:
        return None
    return user


@service_boundary("creating user")
async def create_staff_user(db: AsyncSession, current_user: CurrentUser, payload: StaffCreate) -> UserResponse:
    """Create a staff account. Raises ServiceError 403 for a role the caller may not create, 409 on a used email."""
    if payload.role not in _manageable_roles(current_user):
        raise ServiceError(f"Not allowed to create {payload.role} users", status.HTTP_403_FORBIDDEN)
    center_id = await resolve_center_id(db, current_user, payload.center_id)
    if await check_duplicate_email(db, payload.email):
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)

    try:
        user = User(
            center_id=center_id,
            name=payload.name.strip(),
            surname=payload.surname,
            email=payload.email,
            password_hash=hash_password(payload.password),
            role=payload.role,
            status="ACTIVE",
            phone_number=payload.phone_number,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)
    logger.info("%s user %s created in center %s", user.role, user.id, center_id)
    return UserResponse.model_validate(user)


@service_boundary("listing users")
async def list_staff_users(
    db: AsyncSession,
    current_user: CurrentUser,
    role: Optional[str] = None,
    search: Optional[str] = None,
    center_id: Optional[int] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> PaginatedResponse:
    stmt = select(User).where(User.role.in_(STAFF_ROLE_VALUES))
    if current_user.role != UserRole.ADMIN.value:
        center_id = current_user.center_id
    if center_id is not None:
        stmt = stmt.where(User.center_id == center_id)
    if role:
        stmt = stmt.where(User.role == role.strip().upper())
    if search and search.strip():
        term = f"%{search.strip()}%"
        full_name = User.name + " " + func.coalesce(User.surname, "")
        stmt = stmt.where(or_(full_name.ilike(term), User.email.ilike(term)))
    stmt = stmt.order_by(User.name, User.surname, User.id)
    rows, total, total_pages = await paginate_select(db, stmt, page=page, page_size=limit)
    return PaginatedResponse(
        items=[UserResponse.model_validate(u) for u in rows],
        total=total,
        page=page,
        page_size=limit or 0,
        total_pages=total_pages,
    )


@service_boundary("loading user")
async def get_staff_user(db: AsyncSession, current_user: CurrentUser, user_id: int) -> Optional[UserResponse]:
    user = await _get_scoped_staff(db, current_user, user_id)
    return UserResponse.model_validate(user) if user else None


@service_boundary("updating user")
async def update_staff_user(
    db: AsyncSession,
    current_user: CurrentUser,
    user_id: int,
    payload: StaffUpdate,
) -> Optional[UserResponse]:
    user = await _get_scoped_staff(db, current_user, user_id)
    if user is None:
        return None
    if user.role not in _manageable_roles(current_user):
        raise ServiceError(f"Not allowed to manage {user.role} users", status.HTTP_403_FORBIDDEN)
    if payload.email is not None and await check_duplicate_email(db, payload.email, exclude_user_id=user_id):
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)

    if payload.name is not None:
        user.name = payload.name.strip()
    if payload.surname is not None:
        user.surname = payload.surname
    if payload.email is not None:
        user.email = payload.email
    if payload.password is not None:
        user.password_hash = hash_password(payload.password)
    if payload.phone_number is not None:
        user.phone_number = payload.phone_number or None
    if payload.status is not None:
        user.status = payload.status

    try:
        await db.commit()
        await db.refresh(user)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)
    return UserResponse.model_validate(user)


@service_boundary("deleting user")
async def delete_staff_user(db: AsyncSession, current_user: CurrentUser, user_id: int) -> bool:
    """Delete a staff account and its learner links. Sampled units keep their flag but lose the IQA."""
    user = await _get_scoped_staff(db, current_user, user_id)
    if user is None:
        return False
    if user.id == current_user.id:
        raise ServiceError("You cannot delete your own account", status.HTTP_400_BAD_REQUEST)
    if user.role not in _manageable_roles(current_user):
        raise ServiceError(f"Not allowed to manage {user.role} users", status.HTTP_403_FORBIDDEN)
    try:
        await db.execute(
            delete(LearnerStaff).where(LearnerStaff.staff_id == user_id).execution_options(synchronize_session=False)
        )
        await db.execute(
            update(UserUnit)
            .where(UserUnit.iqa_id == user_id)
            .values(iqa_id=None)
            .execution_options(synchronize_session=False)
        )
        await db.delete(user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("User %s deleted", user_id)
    return True


@service_boundary("loading profile")
async def get_profile(db: AsyncSession, current_user: CurrentUser) -> UserResponse:
    user = await db.get(User, current_user.id)
    if user is None:
        raise ServiceError("User not found", status.HTTP_404_NOT_FOUND)
    return UserResponse.model_validate(user)


@service_boundary("updating profile")
async def update_profile(db: AsyncSession, current_user: CurrentUser, payload: ProfileUpdate) -> UserResponse:
    user = await db.get(User, current_user.id)
    if user is None:
        raise ServiceError("User not found", status.HTTP_404_NOT_FOUND)
    if payload.name is not None:
        user.name = payload.name.strip()
    if payload.surname is not None:
        user.surname = payload.surname
    if payload.phone_number is not None:
        user.phone_number = payload.phone_number or None
    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)


@service_boundary("changing password")
async def change_password(db: AsyncSession, current_user: CurrentUser, payload: PasswordChange) -> None:
    user = await db.get(User, current_user.id)
    if user is None:
        raise ServiceError("User not found", status.HTTP_404_NOT_FOUND)
    if not verify_password(payload.current_password, user.password_hash):
        raise ServiceError("Current password is incorrect", status.HTTP_400_BAD_REQUEST)
    user.password_hash = hash_password(payload.new_password)
    await db.commit()
    logger.info("Password changed for user %s", user.id)

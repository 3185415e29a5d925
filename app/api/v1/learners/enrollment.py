"""Helpers shared by every module that reads or re-derives a learner's enrollment."""

from typing import List, Optional

from fastapi import status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.models import Category, Unit, UserQualification, UserUnit


async def get_learner_for_user(db: AsyncSession, current_user: CurrentUser, learner_id: int) -> User:
    """
    Load a learner the caller may see: learners only themselves, staff only their own center.
    Raises 403/404 ServiceError otherwise.
    """
    if current_user.role == UserRole.LEARNER.value and current_user.id != learner_id:
        raise ServiceError("Learners can only access their own records", status.HTTP_403_FORBIDDEN)
    learner = await db.get(User, learner_id)
    if learner is None or learner.role != UserRole.LEARNER.value:
        raise ServiceError("Learner not found", status.HTTP_404_NOT_FOUND)
    if current_user.role != UserRole.ADMIN.value and learner.center_id != current_user.center_id:
        raise ServiceError("Learner not found", status.HTTP_404_NOT_FOUND)
    return learner


async def get_user_qualification(
    db: AsyncSession,
    learner_id: int,
    qualification_id: int,
) -> Optional[UserQualification]:
    result = await db.execute(
        select(UserQualification).where(
            UserQualification.user_id == learner_id,
            UserQualification.qualification_id == qualification_id,
        )
    )
    return result.scalar_one_or_none()


async def create_user_units(db: AsyncSession, user_id: int, qualification_id: int) -> bool:
    """
    Add a UserUnit for every unit of the qualification; mandatory-category units start assigned.
    Returns True when every unit is mandatory, i.e. there is nothing optional left to assign.
    Caller owns the transaction.
    """
    result = await db.execute(
        select(Unit.id, Category.is_mandatory)
        .outerjoin(Category, Unit.category_id == Category.id)
        .where(Unit.qualification_id == qualification_id)
        .order_by(Unit.id)
    )
    rows = result.all()
    for unit_id, is_mandatory in rows:
        db.add(UserUnit(user_id=user_id, unit_id=unit_id, is_assigned=bool(is_mandatory)))
    return bool(rows) and all(bool(is_mandatory) for _, is_mandatory in rows)


async def delete_user_units(db: AsyncSession, user_id: int, qualification_ids: List[int]) -> None:
    if not qualification_ids:
        return
    unit_ids = select(Unit.id).where(Unit.qualification_id.in_(qualification_ids))
    await db.execute(
        delete(UserUnit)
        .where(UserUnit.user_id == user_id, UserUnit.unit_id.in_(unit_ids))
        .execution_options(synchronize_session=False)
    )


async def rederive_enrolled_units(db: AsyncSession, qualification_id: int) -> int:
    """
    Recreate UserUnit rows for everyone enrolled on a qualification whose unit tree was replaced.
    Returns the number of enrollments touched. Caller owns the transaction.
    """
    result = await db.execute(
        select(UserQualification).where(UserQualification.qualification_id == qualification_id)
    )
    enrollments = list(result.scalars().all())
    for uq in enrollments:
        await delete_user_units(db, uq.user_id, [qualification_id])
        uq.is_optional_assigned = await create_user_units(db, uq.user_id, qualification_id)
    return len(enrollments)

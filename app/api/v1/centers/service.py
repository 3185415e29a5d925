import logging
from typing import Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError, service_boundary
from app.core.models import Assessment, Center
from app.core.pagination import paginate_select
from app.core.schemas import PaginatedResponse

from .schemas import CenterCreate, CenterResponse, CenterUpdate

logger = logging.getLogger(__name__)


async def _check_duplicate_name(db: AsyncSession, name: str, exclude_center_id: Optional[int] = None) -> bool:
    stmt = select(Center.id).where(func.lower(Center.center_name) == name.strip().lower())
    if exclude_center_id is not None:
        stmt = stmt.where(Center.id != exclude_center_id)
    result = await db.execute(stmt)
    return result.first() is not None


@service_boundary("creating center")
async def create_center(db: AsyncSession, payload: CenterCreate) -> CenterResponse:
    if await _check_duplicate_name(db, payload.center_name):
        raise ServiceError("A center with this name already exists", status.HTTP_409_CONFLICT)
    try:
        center = Center(center_name=payload.center_name.strip(), center_address=payload.center_address)
        db.add(center)
        await db.commit()
        await db.refresh(center)
    except Exception:
        await db.rollback()
        raise
    logger.info("Center %s created", center.id)
    return CenterResponse.model_validate(center)


@service_boundary("listing centers")
async def list_centers(
    db: AsyncSession,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> PaginatedResponse:
    stmt = select(Center)
    if search and search.strip():
        stmt = stmt.where(Center.center_name.ilike(f"%{search.strip()}%"))
    stmt = stmt.order_by(Center.center_name, Center.id)
    rows, total, total_pages = await paginate_select(db, stmt, page=page, page_size=limit)
    return PaginatedResponse(
        items=[CenterResponse.model_validate(c) for c in rows],
        total=total,
        page=page,
        page_size=limit or 0,
        total_pages=total_pages,
    )


@service_boundary("loading center")
async def get_center(db: AsyncSession, current_user: CurrentUser, center_id: int) -> Optional[CenterResponse]:
    """Platform admins see every center; everyone else only their own."""
    if current_user.role != UserRole.ADMIN.value and current_user.center_id != center_id:
        return None
    center = await db.get(Center, center_id)
    return CenterResponse.model_validate(center) if center else None


@service_boundary("updating center")
async def update_center(db: AsyncSession, center_id: int, payload: CenterUpdate) -> Optional[CenterResponse]:
    center = await db.get(Center, center_id)
    if center is None:
        return None
    if payload.center_name is not None and await _check_duplicate_name(
        db, payload.center_name, exclude_center_id=center_id
    ):
        raise ServiceError("A center with this name already exists", status.HTTP_409_CONFLICT)

    if payload.center_name is not None:
        center.center_name = payload.center_name.strip()
    if payload.center_address is not None:
        center.center_address = payload.center_address
    if payload.is_active is not None:
        center.is_active = payload.is_active
    try:
        await db.commit()
        await db.refresh(center)
    except Exception:
        await db.rollback()
        raise
    return CenterResponse.model_validate(center)


@service_boundary("deleting center")
async def delete_center(db: AsyncSession, center_id: int) -> bool:
    """Only an empty center can be deleted; one with users or assessments is deactivated instead."""
    center = await db.get(Center, center_id)
    if center is None:
        return False
    users = await db.execute(select(User.id).where(User.center_id == center_id).limit(1))
    assessments = await db.execute(select(Assessment.id).where(Assessment.center_id == center_id).limit(1))
    if users.first() is not None or assessments.first() is not None:
        raise ServiceError(
            "Cannot delete center: it still has users or assessments",
            status.HTTP_409_CONFLICT,
        )
    try:
        await db.delete(center)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Center %s deleted", center_id)
    return True

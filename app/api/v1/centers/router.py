from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.schemas import PaginatedResponse
from app.db.session import get_db

from .schemas import CenterCreate, CenterResponse, CenterUpdate
from . import service

router = APIRouter(prefix="/api/v1/centers", tags=["centers"])


@router.post(
    "",
    response_model=CenterResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_center(
    payload: CenterCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> CenterResponse:
    try:
        return await service.create_center(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=PaginatedResponse)
async def list_centers(
    search: Optional[str] = Query(None, description="Matches the center name"),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0, le=500, description="Page size; 0 returns everything"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> PaginatedResponse:
    try:
        return await service.list_centers(db, search=search, page=page, limit=limit)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{center_id}", response_model=CenterResponse)
async def get_center(
    center_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> CenterResponse:
    try:
        center = await service.get_center(db, current_user, center_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not center:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Center not found")
    return center


@router.put("/{center_id}", response_model=CenterResponse)
async def update_center(
    center_id: int,
    payload: CenterUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> CenterResponse:
    try:
        center = await service.update_center(db, center_id, payload)
        if not center:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Center not found")
        return center
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{center_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_center(
    center_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> None:
    try:
        deleted = await service.delete_center(db, center_id)
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Center not found")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.schemas import MessageResponse, PaginatedResponse
from app.db.session import get_db

from .schemas import PasswordChange, ProfileUpdate, StaffCreate, StaffUpdate, UserResponse
from . import service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    payload: StaffCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> UserResponse:
    """Create a staff account. Platform admins create center admins; center admins create the rest."""
    try:
        return await service.create_staff_user(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=PaginatedResponse)
async def list_users(
    role: Optional[str] = Query(None, description="CENTER_ADMIN, ASSESSOR, IQA or EQA"),
    search: Optional[str] = Query(None, description="Matches full name or email"),
    center_id: Optional[int] = Query(None, description="Platform admins only"),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0, le=500, description="Page size; 0 returns everything"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> PaginatedResponse:
    try:
        return await service.list_staff_users(
            db, current_user, role=role, search=search, center_id=center_id, page=page, limit=limit
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/me", response_model=UserResponse)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UserResponse:
    try:
        return await service.get_profile(db, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/me", response_model=UserResponse)
async def update_profile(
    payload: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UserResponse:
    try:
        return await service.update_profile(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/me/password", response_model=MessageResponse)
async def change_password(
    payload: PasswordChange,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MessageResponse:
    try:
        await service.change_password(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageResponse(message="Password updated")


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> UserResponse:
    try:
        user = await service.get_staff_user(db, current_user, user_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    payload: StaffUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> UserResponse:
    try:
        user = await service.update_staff_user(db, current_user, user_id, payload)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> None:
    try:
        deleted = await service.delete_staff_user(db, current_user, user_id)
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.schemas import PaginatedResponse
from app.db.session import get_db

from .schemas import MatrixLearner, SamplingCreate, SamplingResponse, SamplingUpdate
from . import service

router = APIRouter(prefix="/api/v1/sampling", tags=["sampling"])


@router.post(
    "",
    response_model=SamplingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_sampling(
    payload: SamplingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.IQA)),
) -> SamplingResponse:
    try:
        return await service.create_sampling(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=PaginatedResponse)
async def list_samplings(
    learner_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0, le=500, description="Page size; 0 returns everything"),
    center_id: Optional[int] = Query(None, description="Platform admins only"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> PaginatedResponse:
    try:
        return await service.list_samplings(
            db, current_user, learner_id=learner_id, page=page, limit=limit, center_id=center_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/matrix/{qualification_id}", response_model=List[MatrixLearner])
async def get_sampling_matrix(
    qualification_id: int,
    learner_name_search: Optional[str] = Query(None),
    center_id: Optional[int] = Query(None, description="Platform admins only"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> List[MatrixLearner]:
    """Per learner of the center: which units of the qualification were sampled, when and by whom."""
    try:
        return await service.get_sampling_matrix(
            db, current_user, qualification_id, learner_name_search=learner_name_search, center_id=center_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{sampling_id}", response_model=SamplingResponse)
async def get_sampling(
    sampling_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> SamplingResponse:
    try:
        obj = await service.get_sampling(db, current_user, sampling_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sampling not found")
    return obj


@router.put("/{sampling_id}", response_model=SamplingResponse)
async def update_sampling(
    sampling_id: int,
    payload: SamplingUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.IQA)),
) -> SamplingResponse:
    try:
        obj = await service.update_sampling(db, current_user, sampling_id, payload)
        if not obj:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sampling not found")
        return obj
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{sampling_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_sampling(
    sampling_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.IQA)),
) -> None:
    try:
        deleted = await service.delete_sampling(db, current_user, sampling_id)
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sampling not found")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.qualifications.schemas import CategorySummary
from app.auth.dependencies import get_current_user
from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.schemas import PaginatedResponse
from app.db.session import get_db

from .schemas import (
    AssignUnitStatusRequest,
    EnrollmentRequest,
    EnrollmentResponse,
    LearnerCreate,
    LearnerDashboard,
    LearnerResponse,
    LearnerUpdate,
    QualificationProgress,
    SignOffRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/learners", tags=["learners"])


@router.post(
    "",
    response_model=LearnerResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_learner(
    payload: LearnerCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> LearnerResponse:
    """Create a learner, enroll it on the given qualifications and link its assessors and IQAs."""
    try:
        return await service.create_learner(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=PaginatedResponse)
async def list_learners(
    search: Optional[str] = Query(None, description="Matches full name, email or phone number"),
    qualification_id: Optional[int] = Query(None),
    is_signed_off: Optional[bool] = Query(None),
    assessor_id: Optional[int] = Query(None),
    iqa_id: Optional[int] = Query(None),
    center_id: Optional[int] = Query(None, description="Platform admins only"),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0, le=500, description="Page size; 0 returns everything"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> PaginatedResponse:
    try:
        return await service.list_learners(
            db,
            current_user,
            search=search,
            qualification_id=qualification_id,
            is_signed_off=is_signed_off,
            assessor_id=assessor_id,
            iqa_id=iqa_id,
            center_id=center_id,
            page=page,
            limit=limit,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{learner_id}", response_model=LearnerResponse)
async def get_learner(
    learner_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LearnerResponse:
    try:
        return await service.get_learner(db, current_user, learner_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{learner_id}", response_model=LearnerResponse)
async def update_learner(
    learner_id: int,
    payload: LearnerUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> LearnerResponse:
    try:
        return await service.update_learner(db, current_user, learner_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{learner_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_learner(
    learner_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> None:
    try:
        await service.delete_learner(db, current_user, learner_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{learner_id}/qualifications", response_model=List[EnrollmentResponse])
async def enroll_learner(
    learner_id: int,
    payload: EnrollmentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN)),
) -> List[EnrollmentResponse]:
    """Replace the learner's qualifications. Kept ones retain sign-off and unit assignments."""
    try:
        return await service.enroll_learner_qualifications(db, current_user, learner_id, payload.qualification_ids)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{learner_id}/units/assignment", response_model=Optional[CategorySummary])
async def assign_unit_status(
    learner_id: int,
    payload: AssignUnitStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN, UserRole.ASSESSOR)),
) -> Optional[CategorySummary]:
    try:
        return await service.assign_unit_status(db, current_user, learner_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{learner_id}/sign-off", response_model=EnrollmentResponse)
async def sign_off(
    learner_id: int,
    payload: SignOffRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(
        require_roles(UserRole.CENTER_ADMIN, UserRole.ASSESSOR, UserRole.IQA)
    ),
) -> EnrollmentResponse:
    try:
        return await service.sign_off(db, current_user, learner_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{learner_id}/progress", response_model=List[QualificationProgress])
async def get_learner_progress(
    learner_id: int,
    qualification_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[QualificationProgress]:
    try:
        return await service.get_learner_progress(db, current_user, learner_id, qualification_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{learner_id}/dashboard", response_model=LearnerDashboard)
async def get_learner_dashboard(
    learner_id: int,
    qualification_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LearnerDashboard:
    try:
        return await service.get_learner_dashboard(db, current_user, learner_id, qualification_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

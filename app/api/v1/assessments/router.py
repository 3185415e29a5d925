from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import AssessmentCreate, AssessmentResponse, MarkCreate, MarkResponse
from . import service

router = APIRouter(prefix="/api/v1/assessments", tags=["assessments"])


@router.post(
    "",
    response_model=AssessmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_assessment(
    payload: AssessmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.CENTER_ADMIN, UserRole.ASSESSOR)),
) -> AssessmentResponse:
    try:
        return await service.create_assessment(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/marks",
    response_model=MarkResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_mark(
    payload: MarkCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ASSESSOR, UserRole.CENTER_ADMIN)),
) -> MarkResponse:
    """Record a mark for a subpoint or a sub-outcome. Each call adds a new attempt."""
    try:
        return await service.record_mark(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{assessment_id}", response_model=AssessmentResponse)
async def get_assessment(
    assessment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(*STAFF_ROLES)),
) -> AssessmentResponse:
    try:
        obj = await service.get_assessment(db, current_user, assessment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment not found")
    return obj

from typing import List, Optional, Union

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.assessments.service import get_scoped_assessment
from app.api.v1.learners.enrollment import get_learner_for_user
from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.config import Settings, get_settings
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.schemas import PaginatedResponse
from app.db.session import get_db

from .schemas import (
    CategoryBucket,
    CategorySummary,
    CleanupResult,
    ImportSummary,
    QualificationTree,
    UnitListItem,
)
from . import service

router = APIRouter(prefix="/api/v1/qualifications", tags=["qualifications"])


async def _scoped_learner_id(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: Optional[int],
) -> Optional[int]:
    """Learners always see their own marks; staff pass learner_id explicitly."""
    if learner_id is None and current_user.role == UserRole.LEARNER.value:
        return current_user.id
    if learner_id is not None:
        await get_learner_for_user(db, current_user, learner_id)
    return learner_id


@router.post(
    "",
    response_model=ImportSummary,
    status_code=status.HTTP_201_CREATED,
)
async def create_qualification(
    file: UploadFile = File(..., description="Qualification workbook (.xlsx)"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> ImportSummary:
    """Import a qualification: first sheet holds name (B1) and number (B2), one sheet per unit after that."""
    try:
        content, filename = await service.read_upload(file, settings)
        return await service.create_qualification(db, settings, content, filename, created_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=PaginatedResponse)
async def list_qualifications(
    search: Optional[str] = Query(None, description="Matches name or qualification number"),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0, le=500, description="Page size; 0 returns everything"),
    user_id: Optional[int] = Query(None, description="Only qualifications this user is enrolled on"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaginatedResponse:
    if current_user.role == UserRole.LEARNER.value:
        user_id = current_user.id
    try:
        return await service.list_qualifications(db, search=search, page=page, limit=limit, user_id=user_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/maintenance/clean-subpoints", response_model=CleanupResult)
async def clean_subpoints(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> CleanupResult:
    try:
        return await service.cleanup_subpoint_texts(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{qualification_id}", response_model=QualificationTree)
async def get_qualification(
    qualification_id: int,
    learner_id: Optional[int] = Query(None, description="Annotate the tree with this learner's marks"),
    assessment_id: Optional[int] = Query(None, description="Limit to the assessment's units and marks"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> QualificationTree:
    try:
        learner_id = await _scoped_learner_id(db, current_user, learner_id)
        if assessment_id is not None:
            await get_scoped_assessment(db, current_user, assessment_id, qualification_id)
        return await service.get_qualification_tree(db, qualification_id, learner_id, assessment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{qualification_id}", response_model=ImportSummary)
async def update_qualification(
    qualification_id: int,
    file: UploadFile = File(..., description="Qualification workbook (.xlsx)"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> ImportSummary:
    """Replace the qualification's units and outcomes with the workbook's content."""
    try:
        content, filename = await service.read_upload(file, settings)
        return await service.update_qualification(
            db, settings, qualification_id, content, filename, updated_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{qualification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_qualification(
    qualification_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
) -> None:
    try:
        deleted = await service.delete_qualification(db, qualification_id)
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Qualification not found")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{qualification_id}/categories",
    response_model=Union[CategorySummary, List[CategoryBucket]],
)
async def get_qualification_categories(
    qualification_id: int,
    learner_id: Optional[int] = Query(None),
    assigned_only: bool = Query(False, description="Drop units not assigned to the learner"),
    with_summary: bool = Query(False, description="Wrap buckets with qualification and sign-off details"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Union[CategorySummary, List[CategoryBucket]]:
    try:
        learner_id = await _scoped_learner_id(db, current_user, learner_id)
        return await service.get_category_view(
            db,
            qualification_id,
            learner_id=learner_id,
            filter_assigned_only=assigned_only,
            with_summary=with_summary,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{qualification_id}/units", response_model=List[UnitListItem])
async def list_qualification_units(
    qualification_id: int,
    learner_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[UnitListItem]:
    try:
        learner_id = await _scoped_learner_id(db, current_user, learner_id)
        return await service.list_units(db, qualification_id, learner_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

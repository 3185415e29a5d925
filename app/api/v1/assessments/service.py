import logging
from typing import List, Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.learners.enrollment import get_learner_for_user, get_user_qualification
from app.auth.schemas import CurrentUser
from app.core.enums import AssessmentStatus, UserRole
from app.core.exceptions import ServiceError, service_boundary
from app.core.models import (
    Assessment,
    AssessmentMark,
    AssessmentUnit,
    Center,
    OutcomeSubpoint,
    Qualification,
    SubOutcome,
    Unit,
)

from .schemas import AssessmentCreate, AssessmentResponse, MarkCreate, MarkResponse

logger = logging.getLogger(__name__)


async def resolve_center_id(db: AsyncSession, current_user: CurrentUser, center_id: Optional[int]) -> int:
    """Center users always act on their own center; platform admins must name one."""
    if current_user.role != UserRole.ADMIN.value:
        if current_user.center_id is None:
            raise ServiceError("User is not attached to a center", status.HTTP_400_BAD_REQUEST)
        return current_user.center_id
    if center_id is None:
        raise ServiceError("center_id is required", status.HTTP_400_BAD_REQUEST)
    if await db.get(Center, center_id) is None:
        raise ServiceError("Center not found", status.HTTP_404_NOT_FOUND)
    return center_id


async def get_scoped_assessment(
    db: AsyncSession,
    current_user: CurrentUser,
    assessment_id: int,
    qualification_id: int,
) -> Assessment:
    """Load an assessment of the given qualification that the caller's center owns. 404 otherwise."""
    assessment = await db.get(Assessment, assessment_id)
    if (
        assessment is None
        or assessment.qualification_id != qualification_id
        or (current_user.role != UserRole.ADMIN.value and assessment.center_id != current_user.center_id)
    ):
        raise ServiceError("Assessment not found for this qualification", status.HTTP_404_NOT_FOUND)
    return assessment


async def _unit_ids(db: AsyncSession, assessment_id: int) -> List[int]:
    result = await db.execute(
        select(AssessmentUnit.unit_id)
        .where(AssessmentUnit.assessment_id == assessment_id)
        .order_by(AssessmentUnit.unit_id)
    )
    return list(result.scalars().all())


def _to_response(assessment: Assessment, unit_ids: List[int]) -> AssessmentResponse:
    return AssessmentResponse(
        id=assessment.id,
        center_id=assessment.center_id,
        qualification_id=assessment.qualification_id,
        title=assessment.title,
        assessment_status=AssessmentStatus(assessment.assessment_status),
        unit_ids=unit_ids,
        created_by=assessment.created_by,
        created_at=assessment.created_at,
    )


@service_boundary("creating assessment")
async def create_assessment(
    db: AsyncSession,
    current_user: CurrentUser,
    payload: AssessmentCreate,
) -> AssessmentResponse:
    center_id = await resolve_center_id(db, current_user, payload.center_id)
    if await db.get(Qualification, payload.qualification_id) is None:
        raise ServiceError("Qualification not found", status.HTTP_404_NOT_FOUND)

    unit_ids = sorted(set(payload.unit_ids))
    if unit_ids:
        result = await db.execute(
            select(Unit.id).where(
                Unit.id.in_(unit_ids),
                Unit.qualification_id == payload.qualification_id,
            )
        )
        found = set(result.scalars().all())
        if found != set(unit_ids):
            raise ServiceError("Units do not belong to the qualification", status.HTTP_400_BAD_REQUEST)

    try:
        assessment = Assessment(
            center_id=center_id,
            qualification_id=payload.qualification_id,
            title=payload.title.strip(),
            assessment_status=AssessmentStatus.CREATED.value,
            created_by=current_user.id,
        )
        db.add(assessment)
        await db.flush()
        for unit_id in unit_ids:
            db.add(AssessmentUnit(assessment_id=assessment.id, unit_id=unit_id))
        await db.commit()
        await db.refresh(assessment)
    except Exception:
        await db.rollback()
        raise
    return _to_response(assessment, unit_ids)


@service_boundary("loading assessment")
async def get_assessment(
    db: AsyncSession,
    current_user: CurrentUser,
    assessment_id: int,
) -> Optional[AssessmentResponse]:
    assessment = await db.get(Assessment, assessment_id)
    if assessment is None:
        return None
    if current_user.role != UserRole.ADMIN.value and assessment.center_id != current_user.center_id:
        return None
    return _to_response(assessment, await _unit_ids(db, assessment_id))


async def _validate_mark_target(db: AsyncSession, current_user: CurrentUser, payload: MarkCreate) -> None:
    unit = await db.get(Unit, payload.unit_id)
    if unit is None or unit.qualification_id != payload.qualification_id:
        raise ServiceError("Unit not found in this qualification", status.HTTP_400_BAD_REQUEST)

    if payload.subpoint_id is not None:
        result = await db.execute(
            select(SubOutcome.unit_id)
            .join(OutcomeSubpoint, OutcomeSubpoint.outcome_id == SubOutcome.id)
            .where(OutcomeSubpoint.id == payload.subpoint_id)
        )
        owner_unit_id = result.scalar_one_or_none()
        if owner_unit_id != payload.unit_id:
            raise ServiceError("Subpoint not found in this unit", status.HTTP_400_BAD_REQUEST)
    else:
        sub = await db.get(SubOutcome, payload.sub_outcome_id)
        if sub is None or sub.unit_id != payload.unit_id:
            raise ServiceError("Sub-outcome not found in this unit", status.HTTP_400_BAD_REQUEST)

    if payload.assessment_id is not None:
        await get_scoped_assessment(db, current_user, payload.assessment_id, payload.qualification_id)


@service_boundary("recording mark")
async def record_mark(
    db: AsyncSession,
    current_user: CurrentUser,
    payload: MarkCreate,
) -> MarkResponse:
    """Store a new attempt. Earlier attempts are kept; the best one is what counts."""
    await get_learner_for_user(db, current_user, payload.learner_id)
    if await get_user_qualification(db, payload.learner_id, payload.qualification_id) is None:
        raise ServiceError("Learner is not enrolled on this qualification", status.HTTP_400_BAD_REQUEST)
    await _validate_mark_target(db, current_user, payload)

    key = [
        AssessmentMark.learner_id == payload.learner_id,
        AssessmentMark.qualification_id == payload.qualification_id,
    ]
    if payload.subpoint_id is not None:
        key += [AssessmentMark.subpoint_id == payload.subpoint_id, AssessmentMark.sub_outcome_id.is_(None)]
    else:
        key += [AssessmentMark.sub_outcome_id == payload.sub_outcome_id, AssessmentMark.subpoint_id.is_(None)]
    if payload.assessment_id is not None:
        key.append(AssessmentMark.assessment_id == payload.assessment_id)
    else:
        key.append(AssessmentMark.assessment_id.is_(None))

    try:
        result = await db.execute(select(func.count(AssessmentMark.id)).where(*key))
        previous = result.scalar() or 0
        mark = AssessmentMark(
            learner_id=payload.learner_id,
            qualification_id=payload.qualification_id,
            unit_id=payload.unit_id,
            assessment_id=payload.assessment_id,
            sub_outcome_id=payload.sub_outcome_id,
            subpoint_id=payload.subpoint_id,
            marks=payload.marks,
            max_marks=payload.max_marks,
            attempt=previous + 1,
            created_by=current_user.id,
        )
        db.add(mark)
        await db.commit()
        await db.refresh(mark)
    except Exception:
        await db.rollback()
        raise
    return MarkResponse.model_validate(mark)

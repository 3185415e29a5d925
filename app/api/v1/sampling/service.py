import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.assessments.service import resolve_center_id
from app.api.v1.learners.enrollment import get_learner_for_user, get_user_qualification
from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.core.enums import SamplingReferenceType, UserRole
from app.core.exceptions import ServiceError, service_boundary
from app.core.models import (
    Assessment,
    AssessmentUnit,
    Qualification,
    Sampling,
    SamplingAssessment,
    SamplingUnit,
    Unit,
    UserQualification,
    UserUnit,
)
from app.core.pagination import paginate_select
from app.core.schemas import PaginatedResponse

from .schemas import (
    IqaInfo,
    MatrixLearner,
    MatrixQualification,
    MatrixUnit,
    SamplingCreate,
    SamplingResponse,
    SamplingUpdate,
)

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "assessor_id",
    "sampling_type",
    "date",
    "iqa_notes",
    "is_accept_sampling",
    "action_date",
    "further_action_note",
)


async def _links(db: AsyncSession, sampling_ids: List[int]):
    unit_links: Dict[int, List[int]] = {sid: [] for sid in sampling_ids}
    assessment_links: Dict[int, List[int]] = {sid: [] for sid in sampling_ids}
    if not sampling_ids:
        return unit_links, assessment_links
    result = await db.execute(
        select(SamplingUnit.sampling_id, SamplingUnit.unit_id)
        .where(SamplingUnit.sampling_id.in_(sampling_ids))
        .order_by(SamplingUnit.unit_id)
    )
    for sampling_id, unit_id in result.all():
        unit_links[sampling_id].append(unit_id)
    result = await db.execute(
        select(SamplingAssessment.sampling_id, SamplingAssessment.assessment_id)
        .where(SamplingAssessment.sampling_id.in_(sampling_ids))
        .order_by(SamplingAssessment.assessment_id)
    )
    for sampling_id, assessment_id in result.all():
        assessment_links[sampling_id].append(assessment_id)
    return unit_links, assessment_links


def _to_response(s: Sampling, unit_ids: List[int], assessment_ids: List[int]) -> SamplingResponse:
    return SamplingResponse(
        id=s.id,
        center_id=s.center_id,
        learner_id=s.learner_id,
        qualification_id=s.qualification_id,
        assessor_id=s.assessor_id,
        sampling_type=s.sampling_type,
        date=s.date,
        iqa_notes=s.iqa_notes,
        is_accept_sampling=s.is_accept_sampling,
        action_date=s.action_date,
        further_action_note=s.further_action_note,
        reference_type=s.reference_type,
        unit_ids=unit_ids,
        assessment_ids=assessment_ids,
        created_by=s.created_by,
        created_at=s.created_at,
    )


async def _validate_units(db: AsyncSession, qualification_id: int, unit_ids: List[int]) -> None:
    result = await db.execute(
        select(Unit.id).where(Unit.id.in_(unit_ids), Unit.qualification_id == qualification_id)
    )
    if set(result.scalars().all()) != set(unit_ids):
        raise ServiceError("Units do not belong to the qualification", status.HTTP_400_BAD_REQUEST)


async def _validate_assessments(
    db: AsyncSession,
    center_id: int,
    qualification_id: int,
    assessment_ids: List[int],
) -> None:
    result = await db.execute(
        select(Assessment.id).where(
            Assessment.id.in_(assessment_ids),
            Assessment.center_id == center_id,
            Assessment.qualification_id == qualification_id,
        )
    )
    if set(result.scalars().all()) != set(assessment_ids):
        raise ServiceError("Assessments not found for this qualification", status.HTTP_400_BAD_REQUEST)


async def _units_of_assessments(db: AsyncSession, qualification_id: int, assessment_ids: List[int]) -> List[int]:
    """Units covered by the assessments; an assessment with no unit rows covers the whole qualification."""
    result = await db.execute(
        select(AssessmentUnit.assessment_id, AssessmentUnit.unit_id).where(
            AssessmentUnit.assessment_id.in_(assessment_ids)
        )
    )
    rows = result.all()
    if len({assessment_id for assessment_id, _ in rows}) < len(set(assessment_ids)):
        result = await db.execute(select(Unit.id).where(Unit.qualification_id == qualification_id))
        return list(result.scalars().all())
    return sorted({unit_id for _, unit_id in rows})


async def _get_scoped(db: AsyncSession, current_user: CurrentUser, sampling_id: int) -> Optional[Sampling]:
    sampling = await db.get(Sampling, sampling_id)
    if sampling is None:
        return None
    if current_user.role != UserRole.ADMIN.value and sampling.center_id != current_user.center_id:
        return None
    return sampling


@service_boundary("creating sampling")
async def create_sampling(
    db: AsyncSession,
    current_user: CurrentUser,
    payload: SamplingCreate,
) -> SamplingResponse:
    """
    Record a sample and flag the learner's sampled units with the IQA and time.
    Units are taken directly from unit_ids, or from the units of the sampled assessments.
    """
    center_id = await resolve_center_id(db, current_user, payload.center_id)
    learner = await get_learner_for_user(db, current_user, payload.learner_id)
    if learner.center_id != center_id:
        raise ServiceError("Learner not found", status.HTTP_404_NOT_FOUND)
    if await get_user_qualification(db, payload.learner_id, payload.qualification_id) is None:
        raise ServiceError("Learner is not enrolled on this qualification", status.HTTP_400_BAD_REQUEST)

    unit_ids = sorted(set(payload.unit_ids))
    assessment_ids = sorted(set(payload.assessment_ids))
    if unit_ids:
        await _validate_units(db, payload.qualification_id, unit_ids)
        reference_type = SamplingReferenceType.UNIT
        sampled_units = unit_ids
    else:
        await _validate_assessments(db, center_id, payload.qualification_id, assessment_ids)
        reference_type = SamplingReferenceType.ASSESSMENT
        sampled_units = await _units_of_assessments(db, payload.qualification_id, assessment_ids)

    try:
        sampling = Sampling(
            center_id=center_id,
            learner_id=payload.learner_id,
            qualification_id=payload.qualification_id,
            reference_type=reference_type.value,
            created_by=current_user.id,
            **payload.model_dump(include=set(_SCALAR_FIELDS)),
        )
        db.add(sampling)
        await db.flush()
        for unit_id in unit_ids:
            db.add(SamplingUnit(sampling_id=sampling.id, unit_id=unit_id))
        for assessment_id in assessment_ids:
            db.add(SamplingAssessment(sampling_id=sampling.id, assessment_id=assessment_id))
        if sampled_units:
            await db.execute(
                update(UserUnit)
                .where(UserUnit.user_id == payload.learner_id, UserUnit.unit_id.in_(sampled_units))
                .values(
                    is_sampling=True,
                    reference_type=reference_type.value,
                    iqa_id=current_user.id,
                    sampled_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        await db.commit()
        await db.refresh(sampling)
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Sampling %s created for learner %s covering %s units",
        sampling.id,
        payload.learner_id,
        len(sampled_units),
    )
    return _to_response(sampling, unit_ids, assessment_ids)


@service_boundary("updating sampling")
async def update_sampling(
    db: AsyncSession,
    current_user: CurrentUser,
    sampling_id: int,
    payload: SamplingUpdate,
) -> Optional[SamplingResponse]:
    sampling = await _get_scoped(db, current_user, sampling_id)
    if sampling is None:
        return None
    changes = payload.model_dump(exclude_unset=True)
    unit_links, assessment_links = await _links(db, [sampling_id])
    unit_ids = unit_links[sampling_id]
    assessment_ids = assessment_links[sampling_id]
    relink = payload.unit_ids is not None or payload.assessment_ids is not None
    # New links of one kind replace the links of the other kind
    if payload.unit_ids is not None:
        unit_ids = sorted(set(payload.unit_ids))
        if unit_ids:
            await _validate_units(db, sampling.qualification_id, unit_ids)
            assessment_ids = []
    if payload.assessment_ids is not None:
        assessment_ids = sorted(set(payload.assessment_ids))
        if assessment_ids:
            await _validate_assessments(db, sampling.center_id, sampling.qualification_id, assessment_ids)
            unit_ids = []
    if not unit_ids and not assessment_ids:
        raise ServiceError("A sampling must reference at least one unit or assessment", status.HTTP_400_BAD_REQUEST)

    try:
        for field in _SCALAR_FIELDS:
            if field in changes:
                setattr(sampling, field, changes[field])
        if relink:
            await db.execute(delete(SamplingUnit).where(SamplingUnit.sampling_id == sampling_id))
            await db.execute(delete(SamplingAssessment).where(SamplingAssessment.sampling_id == sampling_id))
            for unit_id in unit_ids:
                db.add(SamplingUnit(sampling_id=sampling_id, unit_id=unit_id))
            for assessment_id in assessment_ids:
                db.add(SamplingAssessment(sampling_id=sampling_id, assessment_id=assessment_id))
            reference_type = SamplingReferenceType.UNIT if unit_ids else SamplingReferenceType.ASSESSMENT
            sampling.reference_type = reference_type.value
        await db.commit()
        await db.refresh(sampling)
    except Exception:
        await db.rollback()
        raise
    return _to_response(sampling, unit_ids, assessment_ids)


@service_boundary("deleting sampling")
async def delete_sampling(db: AsyncSession, current_user: CurrentUser, sampling_id: int) -> bool:
    sampling = await _get_scoped(db, current_user, sampling_id)
    if sampling is None:
        return False
    try:
        await db.execute(delete(SamplingUnit).where(SamplingUnit.sampling_id == sampling_id))
        await db.execute(delete(SamplingAssessment).where(SamplingAssessment.sampling_id == sampling_id))
        await db.delete(sampling)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return True


@service_boundary("loading sampling")
async def get_sampling(db: AsyncSession, current_user: CurrentUser, sampling_id: int) -> Optional[SamplingResponse]:
    sampling = await _get_scoped(db, current_user, sampling_id)
    if sampling is None:
        return None
    unit_links, assessment_links = await _links(db, [sampling_id])
    return _to_response(sampling, unit_links[sampling_id], assessment_links[sampling_id])


@service_boundary("listing samplings")
async def list_samplings(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: Optional[int] = None,
    page: int = 1,
    limit: Optional[int] = None,
    center_id: Optional[int] = None,
) -> PaginatedResponse:
    center_id = await resolve_center_id(db, current_user, center_id)
    stmt = select(Sampling).where(Sampling.center_id == center_id)
    if learner_id is not None:
        stmt = stmt.where(Sampling.learner_id == learner_id)
    stmt = stmt.order_by(Sampling.created_at.desc(), Sampling.id.desc())
    rows, total, total_pages = await paginate_select(db, stmt, page=page, page_size=limit)
    unit_links, assessment_links = await _links(db, [s.id for s in rows])
    return PaginatedResponse(
        items=[_to_response(s, unit_links[s.id], assessment_links[s.id]) for s in rows],
        total=total,
        page=page,
        page_size=limit or 0,
        total_pages=total_pages,
    )


@service_boundary("building sampling matrix")
async def get_sampling_matrix(
    db: AsyncSession,
    current_user: CurrentUser,
    qualification_id: int,
    learner_name_search: Optional[str] = None,
    center_id: Optional[int] = None,
) -> List[MatrixLearner]:
    """Every learner of the center enrolled on the qualification, with per-unit sampling state."""
    center_id = await resolve_center_id(db, current_user, center_id)
    qualification = await db.get(Qualification, qualification_id)
    if qualification is None:
        raise ServiceError("Qualification not found", status.HTTP_404_NOT_FOUND)

    stmt = (
        select(User, UserQualification)
        .join(UserQualification, UserQualification.user_id == User.id)
        .where(
            User.center_id == center_id,
            User.role == UserRole.LEARNER.value,
            UserQualification.qualification_id == qualification_id,
        )
        .order_by(User.name, User.surname, User.id)
    )
    if learner_name_search and learner_name_search.strip():
        term = f"%{learner_name_search.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(term), User.surname.ilike(term)))
    result = await db.execute(stmt)
    enrolled = result.all()
    if not enrolled:
        return []

    result = await db.execute(
        select(Unit).where(Unit.qualification_id == qualification_id).order_by(Unit.unit_number, Unit.id)
    )
    units = list(result.scalars().all())
    learner_ids = [learner.id for learner, _ in enrolled]
    result = await db.execute(
        select(UserUnit).where(
            UserUnit.user_id.in_(learner_ids),
            UserUnit.unit_id.in_([u.id for u in units]),
        )
    )
    user_units = {(uu.user_id, uu.unit_id): uu for uu in result.scalars().all()}

    iqa_ids = {uu.iqa_id for uu in user_units.values() if uu.iqa_id is not None}
    iqas: Dict[int, User] = {}
    if iqa_ids:
        result = await db.execute(select(User).where(User.id.in_(iqa_ids)))
        iqas = {u.id: u for u in result.scalars().all()}

    matrix = []
    for learner, uq in enrolled:
        matrix_units = []
        for unit in units:
            uu = user_units.get((learner.id, unit.id))
            iqa = iqas.get(uu.iqa_id) if uu and uu.iqa_id else None
            matrix_units.append(
                MatrixUnit(
                    id=unit.id,
                    unitNumber=unit.unit_number,
                    unitTitle=unit.unit_title,
                    is_sampled=bool(uu and uu.is_sampling),
                    is_assigned=bool(uu and uu.is_assigned),
                    iqa=IqaInfo(id=iqa.id, name=iqa.name, surname=iqa.surname) if iqa else None,
                    sampled_date=uu.sampled_at if uu else None,
                )
            )
        matrix.append(
            MatrixLearner(
                learner_id=learner.id,
                learner_name=" ".join(part for part in (learner.name, learner.surname) if part),
                is_signed_off=bool(uq.is_signed_off),
                is_optional_assigned=bool(uq.is_optional_assigned),
                qualifications=[
                    MatrixQualification(
                        qualification_id=qualification.id,
                        qualification_name=qualification.name,
                        units=matrix_units,
                    )
                ],
            )
        )
    return matrix

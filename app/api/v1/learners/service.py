import logging
from collections import defaultdict
from typing import Dict, List, Optional

from fastapi import status
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.assessments.service import resolve_center_id
from app.api.v1.qualifications.grouping import categorywise_with_summary
from app.api.v1.qualifications.schemas import CategorySummary
from app.api.v1.qualifications.tree import build_qualification_tree
from app.api.v1.users.service import check_duplicate_email
from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.auth.security import hash_password
from app.core.enums import UserRole
from app.core.exceptions import ServiceError, service_boundary
from app.core.models import AssessmentMark, LearnerStaff, Qualification, Sampling, UserQualification, UserUnit
from app.core.pagination import paginate_select
from app.core.schemas import PaginatedResponse

from .enrollment import create_user_units, delete_user_units, get_learner_for_user, get_user_qualification
from .progress import compute_qualification_progress
from .schemas import (
    AssignUnitStatusRequest,
    EnrollmentResponse,
    LearnerCreate,
    LearnerDashboard,
    LearnerResponse,
    LearnerUpdate,
    QualificationProgress,
    SignOffRequest,
)

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = ("phone_number", "date_of_birth", "employer", "start_date", "expected_end_date")


async def _check_qualifications_exist(db: AsyncSession, qualification_ids: List[int]) -> None:
    if not qualification_ids:
        return
    result = await db.execute(select(Qualification.id).where(Qualification.id.in_(qualification_ids)))
    missing = set(qualification_ids) - set(result.scalars().all())
    if missing:
        raise ServiceError(
            f"Unknown qualification ids: {', '.join(str(i) for i in sorted(missing))}",
            status.HTTP_400_BAD_REQUEST,
        )


async def _replace_enrollments(db: AsyncSession, learner_id: int, wanted: List[int]) -> List[UserQualification]:
    """
    Bring the learner's enrollments in line with `wanted`. Qualifications the learner keeps
    retain their row, sign-off and unit assignments; removed ones lose their unit rows, and
    added ones get fresh rows: mandatory units start assigned, and a qualification with no
    optional units is flagged as fully assigned.
    A signed-off qualification cannot be removed (409). Caller owns the transaction.
    """
    result = await db.execute(select(UserQualification).where(UserQualification.user_id == learner_id))
    current = {uq.qualification_id: uq for uq in result.scalars().all()}
    removed = [qid for qid in current if qid not in wanted]
    locked = sorted(qid for qid in removed if current[qid].is_signed_off)
    if locked:
        raise ServiceError(
            f"Signed-off qualifications cannot be removed: {', '.join(str(i) for i in locked)}",
            status.HTTP_409_CONFLICT,
        )

    await delete_user_units(db, learner_id, removed)
    for qualification_id in removed:
        await db.delete(current[qualification_id])

    enrollments = []
    for qualification_id in wanted:
        uq = current.get(qualification_id)
        if uq is None:
            all_mandatory = await create_user_units(db, learner_id, qualification_id)
            uq = UserQualification(
                user_id=learner_id,
                qualification_id=qualification_id,
                is_signed_off=False,
                is_optional_assigned=all_mandatory,
            )
            db.add(uq)
        enrollments.append(uq)
    await db.flush()
    return enrollments


async def _validate_staff(db: AsyncSession, center_id: int, staff_ids: List[int], role: UserRole) -> List[int]:
    """Staff linked to a learner must hold the role and work in the learner's center."""
    staff_ids = sorted(set(staff_ids))
    if not staff_ids:
        return staff_ids
    result = await db.execute(
        select(User.id).where(User.id.in_(staff_ids), User.role == role.value, User.center_id == center_id)
    )
    missing = set(staff_ids) - set(result.scalars().all())
    if missing:
        raise ServiceError(
            f"Unknown {role.value} ids: {', '.join(str(i) for i in sorted(missing))}",
            status.HTTP_400_BAD_REQUEST,
        )
    return staff_ids


async def _replace_staff_links(db: AsyncSession, learner_id: int, role: UserRole, staff_ids: List[int]) -> None:
    await db.execute(
        delete(LearnerStaff)
        .where(LearnerStaff.learner_id == learner_id, LearnerStaff.staff_role == role.value)
        .execution_options(synchronize_session=False)
    )
    for staff_id in staff_ids:
        db.add(LearnerStaff(learner_id=learner_id, staff_id=staff_id, staff_role=role.value))


async def _to_learner_responses(db: AsyncSession, learners: List[User]) -> List[LearnerResponse]:
    """Attach enrollments and staff links with one query each."""
    learner_ids = [learner.id for learner in learners]
    enrollments: Dict[int, List[UserQualification]] = defaultdict(list)
    links: Dict[int, Dict[str, List[int]]] = defaultdict(lambda: defaultdict(list))
    if learner_ids:
        result = await db.execute(
            select(UserQualification)
            .where(UserQualification.user_id.in_(learner_ids))
            .order_by(UserQualification.id)
        )
        for uq in result.scalars().all():
            enrollments[uq.user_id].append(uq)
        result = await db.execute(
            select(LearnerStaff.learner_id, LearnerStaff.staff_role, LearnerStaff.staff_id)
            .where(LearnerStaff.learner_id.in_(learner_ids))
            .order_by(LearnerStaff.staff_id)
        )
        for learner_id, staff_role, staff_id in result.all():
            links[learner_id][staff_role].append(staff_id)

    responses = []
    for learner in learners:
        responses.append(
            LearnerResponse(
                id=learner.id,
                center_id=learner.center_id,
                name=learner.name,
                surname=learner.surname,
                email=learner.email,
                status=learner.status,
                created_at=learner.created_at,
                qualifications=[EnrollmentResponse.model_validate(uq) for uq in enrollments[learner.id]],
                assessor_ids=links[learner.id][UserRole.ASSESSOR.value],
                iqa_ids=links[learner.id][UserRole.IQA.value],
                **{field: getattr(learner, field) for field in _PROFILE_FIELDS},
            )
        )
    return responses


@service_boundary("creating learner")
async def create_learner(db: AsyncSession, current_user: CurrentUser, payload: LearnerCreate) -> LearnerResponse:
    """
    Create a learner account in the caller's center, enroll it and link its assessors and IQAs
    in one transaction. Raises ServiceError 400 for unknown ids and 409 for a used email.
    """
    center_id = await resolve_center_id(db, current_user, payload.center_id)
    if await check_duplicate_email(db, payload.email):
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)
    wanted = list(dict.fromkeys(payload.qualification_ids))
    await _check_qualifications_exist(db, wanted)
    assessor_ids = await _validate_staff(db, center_id, payload.assessor_ids, UserRole.ASSESSOR)
    iqa_ids = await _validate_staff(db, center_id, payload.iqa_ids, UserRole.IQA)

    try:
        learner = User(
            center_id=center_id,
            name=payload.name.strip(),
            surname=payload.surname.strip(),
            email=payload.email,
            password_hash=hash_password(payload.password),
            role=UserRole.LEARNER.value,
            status="ACTIVE",
            **payload.model_dump(include=set(_PROFILE_FIELDS)),
        )
        db.add(learner)
        await db.flush()
        await _replace_enrollments(db, learner.id, wanted)
        await _replace_staff_links(db, learner.id, UserRole.ASSESSOR, assessor_ids)
        await _replace_staff_links(db, learner.id, UserRole.IQA, iqa_ids)
        await db.commit()
        await db.refresh(learner)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)
    except Exception:
        await db.rollback()
        raise
    logger.info("Learner %s created in center %s", learner.id, center_id)
    return (await _to_learner_responses(db, [learner]))[0]


@service_boundary("listing learners")
async def list_learners(
    db: AsyncSession,
    current_user: CurrentUser,
    search: Optional[str] = None,
    qualification_id: Optional[int] = None,
    is_signed_off: Optional[bool] = None,
    assessor_id: Optional[int] = None,
    iqa_id: Optional[int] = None,
    center_id: Optional[int] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> PaginatedResponse:
    """Learners of the caller's center. Assessors only see the learners linked to them."""
    stmt = select(User).where(User.role == UserRole.LEARNER.value)
    if current_user.role != UserRole.ADMIN.value:
        center_id = current_user.center_id
    if center_id is not None:
        stmt = stmt.where(User.center_id == center_id)
    if current_user.role == UserRole.ASSESSOR.value:
        assessor_id = current_user.id
    for staff_id in (assessor_id, iqa_id):
        if staff_id is not None:
            stmt = stmt.where(User.id.in_(select(LearnerStaff.learner_id).where(LearnerStaff.staff_id == staff_id)))
    if qualification_id is not None or is_signed_off is not None:
        enrolled = select(UserQualification.user_id)
        if qualification_id is not None:
            enrolled = enrolled.where(UserQualification.qualification_id == qualification_id)
        if is_signed_off is not None:
            enrolled = enrolled.where(UserQualification.is_signed_off.is_(is_signed_off))
        stmt = stmt.where(User.id.in_(enrolled))
    if search and search.strip():
        term = f"%{search.strip()}%"
        full_name = User.name + " " + func.coalesce(User.surname, "")
        stmt = stmt.where(or_(full_name.ilike(term), User.email.ilike(term), User.phone_number.ilike(term)))
    stmt = stmt.order_by(User.created_at.desc(), User.id.desc())

    rows, total, total_pages = await paginate_select(db, stmt, page=page, page_size=limit)
    return PaginatedResponse(
        items=await _to_learner_responses(db, rows),
        total=total,
        page=page,
        page_size=limit or 0,
        total_pages=total_pages,
    )


@service_boundary("loading learner")
async def get_learner(db: AsyncSession, current_user: CurrentUser, learner_id: int) -> LearnerResponse:
    learner = await get_learner_for_user(db, current_user, learner_id)
    return (await _to_learner_responses(db, [learner]))[0]


@service_boundary("updating learner")
async def update_learner(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: int,
    payload: LearnerUpdate,
) -> LearnerResponse:
    learner = await get_learner_for_user(db, current_user, learner_id)
    if payload.email is not None and await check_duplicate_email(db, payload.email, exclude_user_id=learner_id):
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)
    wanted = None
    if payload.qualification_ids is not None:
        wanted = list(dict.fromkeys(payload.qualification_ids))
        await _check_qualifications_exist(db, wanted)
    assessor_ids = iqa_ids = None
    if payload.assessor_ids is not None:
        assessor_ids = await _validate_staff(db, learner.center_id, payload.assessor_ids, UserRole.ASSESSOR)
    if payload.iqa_ids is not None:
        iqa_ids = await _validate_staff(db, learner.center_id, payload.iqa_ids, UserRole.IQA)

    changes = payload.model_dump(exclude_unset=True, include={"name", "surname", "email", "status", *_PROFILE_FIELDS})
    try:
        for field, value in changes.items():
            if value is not None or field in _PROFILE_FIELDS:
                setattr(learner, field, value)
        if payload.password is not None:
            learner.password_hash = hash_password(payload.password)
        if wanted is not None:
            await _replace_enrollments(db, learner_id, wanted)
        if assessor_ids is not None:
            await _replace_staff_links(db, learner_id, UserRole.ASSESSOR, assessor_ids)
        if iqa_ids is not None:
            await _replace_staff_links(db, learner_id, UserRole.IQA, iqa_ids)
        await db.commit()
        await db.refresh(learner)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Email already in use", status.HTTP_409_CONFLICT)
    except Exception:
        await db.rollback()
        raise
    return (await _to_learner_responses(db, [learner]))[0]


@service_boundary("deleting learner")
async def delete_learner(db: AsyncSession, current_user: CurrentUser, learner_id: int) -> None:
    """Remove a learner with no assessment history. Marks or samplings make it a 409."""
    learner = await get_learner_for_user(db, current_user, learner_id)
    marks = await db.execute(select(AssessmentMark.id).where(AssessmentMark.learner_id == learner_id).limit(1))
    samplings = await db.execute(select(Sampling.id).where(Sampling.learner_id == learner_id).limit(1))
    if marks.first() is not None or samplings.first() is not None:
        raise ServiceError(
            "Cannot delete learner: marks or samplings have been recorded",
            status.HTTP_409_CONFLICT,
        )
    try:
        for model, column in (
            (UserUnit, UserUnit.user_id),
            (UserQualification, UserQualification.user_id),
            (LearnerStaff, LearnerStaff.learner_id),
        ):
            await db.execute(delete(model).where(column == learner_id).execution_options(synchronize_session=False))
        await db.delete(learner)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Learner %s deleted", learner_id)


@service_boundary("enrolling learner")
async def enroll_learner_qualifications(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: int,
    qualification_ids: List[int],
) -> List[EnrollmentResponse]:
    """Replace the learner's qualification set; see _replace_enrollments for what is kept."""
    await get_learner_for_user(db, current_user, learner_id)
    wanted = list(dict.fromkeys(qualification_ids))
    await _check_qualifications_exist(db, wanted)
    try:
        enrollments = await _replace_enrollments(db, learner_id, wanted)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Learner %s enrolled on qualifications %s", learner_id, wanted)
    return [EnrollmentResponse.model_validate(uq) for uq in enrollments]


@service_boundary("updating unit assignment")
async def assign_unit_status(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: int,
    payload: AssignUnitStatusRequest,
) -> Optional[CategorySummary]:
    """Flip unit assignment flags and return the category view of the first qualification given."""
    await get_learner_for_user(db, current_user, learner_id)
    try:
        if payload.unit_ids:
            await db.execute(
                update(UserUnit)
                .where(UserUnit.user_id == learner_id, UserUnit.unit_id.in_(payload.unit_ids))
                .values(is_assigned=True)
                .execution_options(synchronize_session=False)
            )
        if payload.not_assigned_unit_ids:
            await db.execute(
                update(UserUnit)
                .where(UserUnit.user_id == learner_id, UserUnit.unit_id.in_(payload.not_assigned_unit_ids))
                .values(is_assigned=False)
                .execution_options(synchronize_session=False)
            )
        if payload.qualification_ids and payload.is_optional_assigned is not None:
            await db.execute(
                update(UserQualification)
                .where(
                    UserQualification.user_id == learner_id,
                    UserQualification.qualification_id.in_(payload.qualification_ids),
                )
                .values(is_optional_assigned=payload.is_optional_assigned)
                .execution_options(synchronize_session=False)
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    # Bulk updates above bypass the identity map
    db.expire_all()

    if not payload.qualification_ids:
        return None
    qualification_id = payload.qualification_ids[0]
    qualification = await db.get(Qualification, qualification_id)
    if qualification is None:
        raise ServiceError("Qualification not found", status.HTTP_404_NOT_FOUND)
    tree = await build_qualification_tree(db, qualification_id, learner_id)
    user_qualification = await get_user_qualification(db, learner_id, qualification_id)
    return categorywise_with_summary(qualification, tree, user_qualification)


@service_boundary("signing off qualification")
async def sign_off(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: int,
    payload: SignOffRequest,
) -> EnrollmentResponse:
    """
    Sign-off is one-way. Signing off twice, or trying to undo a sign-off, is a conflict
    and leaves the row untouched.
    """
    await get_learner_for_user(db, current_user, learner_id)
    uq = await get_user_qualification(db, learner_id, payload.qualification_id)
    if uq is None:
        raise ServiceError("Learner is not enrolled on this qualification", status.HTTP_404_NOT_FOUND)
    if uq.is_signed_off:
        if payload.is_signed_off:
            raise ServiceError("Qualification already signed off", status.HTTP_409_CONFLICT)
        raise ServiceError("A signed-off qualification cannot be reopened", status.HTTP_409_CONFLICT)
    if payload.is_signed_off:
        uq.is_signed_off = True
        await db.commit()
        await db.refresh(uq)
        logger.info("Qualification %s signed off for learner %s", payload.qualification_id, learner_id)
    return EnrollmentResponse.model_validate(uq)


@service_boundary("computing learner progress")
async def get_learner_progress(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: int,
    qualification_id: Optional[int] = None,
) -> List[QualificationProgress]:
    await get_learner_for_user(db, current_user, learner_id)
    return await compute_qualification_progress(db, learner_id, qualification_id)


@service_boundary("loading learner dashboard")
async def get_learner_dashboard(
    db: AsyncSession,
    current_user: CurrentUser,
    learner_id: int,
    qualification_id: Optional[int] = None,
) -> LearnerDashboard:
    await get_learner_for_user(db, current_user, learner_id)
    stmt = select(
        func.count(UserQualification.id),
        func.count(UserQualification.id).filter(UserQualification.is_signed_off.is_(True)),
    ).where(UserQualification.user_id == learner_id)
    if qualification_id is not None:
        stmt = stmt.where(UserQualification.qualification_id == qualification_id)
    result = await db.execute(stmt)
    total, signed_off = result.one()
    total = total or 0
    signed_off = signed_off or 0
    return LearnerDashboard(
        numberOfQualifications=total,
        numberOfQualificationsSignedOff=signed_off,
        progressOfQualifications=round(signed_off / total * 100) if total else 0,
        qualificationProgressData=await compute_qualification_progress(db, learner_id, qualification_id),
    )

import logging
from typing import Dict, List, Optional, Tuple, Union

from fastapi import UploadFile, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.learners.enrollment import get_user_qualification, rederive_enrolled_units
from app.core.config import Settings
from app.core.exceptions import ServiceError, service_boundary
from app.core.models import (
    AssessmentMark,
    AssessmentUnit,
    Category,
    MainOutcome,
    OutcomeSubpoint,
    Qualification,
    SamplingUnit,
    SubOutcome,
    Unit,
    UserQualification,
    UserUnit,
)
from app.core.pagination import paginate_select
from app.core.retry import retry_database_operation
from app.core.schemas import PaginatedResponse

from .grouping import categorywise_with_summary, group_by_category
from .importer import (
    ImportValidationError,
    ParsedQualification,
    ParsedSubOutcome,
    ParsedUnit,
    clean_point_text,
    parse_qualification_workbook,
)
from .schemas import (
    CategoryBucket,
    CategorySummary,
    CleanupResult,
    ImportSummary,
    QualificationResponse,
    QualificationTree,
    UnitListItem,
)
from .tree import build_qualification_tree

logger = logging.getLogger(__name__)


# ----- Import -----


async def read_upload(file: UploadFile, settings: Settings) -> Tuple[bytes, str]:
    """Read an uploaded workbook, enforcing extension and size limits."""
    filename = file.filename or ""
    if not filename.lower().endswith(".xlsx"):
        raise ServiceError("File must be an Excel file (.xlsx)", status.HTTP_400_BAD_REQUEST)
    content = await file.read()
    if not content:
        raise ServiceError("Please upload a valid file.", status.HTTP_400_BAD_REQUEST)
    if len(content) > settings.max_upload_bytes:
        raise ServiceError("Uploaded file is too large", status.HTTP_400_BAD_REQUEST)
    return content, filename


def _parse(content: bytes) -> ParsedQualification:
    try:
        return parse_qualification_workbook(content)
    except ImportValidationError as e:
        logger.warning("Rejected qualification import: %s", e)
        raise ServiceError(str(e), status.HTTP_400_BAD_REQUEST) from e


async def _resolve_categories(db: AsyncSession, units: List[ParsedUnit]) -> Tuple[Dict[str, int], int]:
    """
    Map lower-cased category name -> id, creating missing categories in the current transaction.
    An existing category keeps its mandatory flag; a file that disagrees with it is rejected.
    """
    ids: Dict[str, int] = {}
    created = 0
    for unit in units:
        key = unit.category.lower()
        if not key or key in ids:
            continue
        result = await db.execute(select(Category).where(func.lower(Category.category_name) == key))
        category = result.scalars().first()
        if category is None:
            category = Category(category_name=unit.category, is_mandatory=unit.is_mandatory)
            db.add(category)
            await db.flush()
            created += 1
        elif bool(category.is_mandatory) != unit.is_mandatory:
            expected = "mandatory" if category.is_mandatory else "optional"
            raise ServiceError(
                f"Category '{category.category_name}' already exists as {expected}; "
                f"unit {unit.unit_ref_no} declares it otherwise.",
                status.HTTP_400_BAD_REQUEST,
            )
        ids[key] = category.id
    return ids, created


async def _check_unique_refs(
    db: AsyncSession,
    units: List[ParsedUnit],
    exclude_qualification_id: Optional[int] = None,
) -> None:
    refs = [u.unit_ref_no for u in units]
    if not refs:
        return
    stmt = select(Unit.unit_ref_no).where(Unit.unit_ref_no.in_(refs))
    if exclude_qualification_id is not None:
        stmt = stmt.where(Unit.qualification_id != exclude_qualification_id)
    result = await db.execute(stmt.limit(1))
    existing = result.scalar_one_or_none()
    if existing is not None:
        raise ServiceError(
            f"Unit Reference Number {existing} already exists",
            status.HTTP_400_BAD_REQUEST,
        )


async def _check_unique_number(
    db: AsyncSession,
    qualification_no: str,
    exclude_qualification_id: Optional[int] = None,
) -> None:
    stmt = select(Qualification.id).where(Qualification.qualification_no == qualification_no)
    if exclude_qualification_id is not None:
        stmt = stmt.where(Qualification.id != exclude_qualification_id)
    result = await db.execute(stmt.limit(1))
    if result.scalar_one_or_none() is not None:
        raise ServiceError("Qualification number already exists", status.HTTP_400_BAD_REQUEST)


async def _add_sub_outcome(
    db: AsyncSession,
    sub: ParsedSubOutcome,
    unit_id: int,
    qualification_id: int,
    main_outcome_id: Optional[int],
    created_by: Optional[int],
) -> int:
    row = SubOutcome(
        unit_id=unit_id,
        qualification_id=qualification_id,
        main_outcome_id=main_outcome_id,
        outcome_number=sub.number,
        description=sub.description,
        created_by=created_by,
    )
    db.add(row)
    await db.flush()
    for text in sub.subpoints:
        db.add(OutcomeSubpoint(outcome_id=row.id, point_text=text, created_by=created_by))
    return len(sub.subpoints)


async def _write_tree(
    db: AsyncSession,
    qualification: Qualification,
    parsed: ParsedQualification,
    category_ids: Dict[str, int],
    created_by: Optional[int],
) -> Dict[str, int]:
    counts = {"units": 0, "main_outcomes": 0, "sub_outcomes": 0, "subpoints": 0}
    for parsed_unit in parsed.units:
        unit = Unit(
            qualification_id=qualification.id,
            unit_title=parsed_unit.unit_title,
            unit_number=parsed_unit.unit_number or None,
            unit_ref_no=parsed_unit.unit_ref_no,
            category_id=category_ids.get(parsed_unit.category.lower()),
            created_by=created_by,
        )
        db.add(unit)
        await db.flush()
        counts["units"] += 1

        for orphan in parsed_unit.orphan_sub_outcomes:
            counts["subpoints"] += await _add_sub_outcome(db, orphan, unit.id, qualification.id, None, created_by)
            counts["sub_outcomes"] += 1

        for parsed_main in parsed_unit.main_outcomes:
            main = MainOutcome(
                unit_id=unit.id,
                qualification_id=qualification.id,
                main_number=parsed_main.number,
                description=parsed_main.description,
                created_by=created_by,
            )
            db.add(main)
            await db.flush()
            counts["main_outcomes"] += 1
            for sub in parsed_main.sub_outcomes:
                counts["subpoints"] += await _add_sub_outcome(db, sub, unit.id, qualification.id, main.id, created_by)
                counts["sub_outcomes"] += 1
    await db.flush()
    return counts


async def _delete_tree(db: AsyncSession, qualification_id: int) -> None:
    """Hard-delete every unit of a qualification together with the rows hanging off those units."""
    unit_ids = select(Unit.id).where(Unit.qualification_id == qualification_id)
    sub_ids = select(SubOutcome.id).where(SubOutcome.qualification_id == qualification_id)
    for stmt in (
        delete(AssessmentMark).where(AssessmentMark.unit_id.in_(unit_ids)),
        delete(UserUnit).where(UserUnit.unit_id.in_(unit_ids)),
        delete(AssessmentUnit).where(AssessmentUnit.unit_id.in_(unit_ids)),
        delete(SamplingUnit).where(SamplingUnit.unit_id.in_(unit_ids)),
        delete(OutcomeSubpoint).where(OutcomeSubpoint.outcome_id.in_(sub_ids)),
        delete(SubOutcome).where(SubOutcome.qualification_id == qualification_id),
        delete(MainOutcome).where(MainOutcome.qualification_id == qualification_id),
        delete(Unit).where(Unit.qualification_id == qualification_id),
    ):
        await db.execute(stmt.execution_options(synchronize_session=False))


def _summary(qualification: Qualification, counts: Dict[str, int], categories_created: int) -> ImportSummary:
    return ImportSummary(
        qualification=QualificationResponse.model_validate(qualification),
        categories_created=categories_created,
        **counts,
    )


async def _in_transaction(db: AsyncSession, work):
    try:
        result = await work()
        await db.commit()
        return result
    except IntegrityError as e:
        await db.rollback()
        raise ServiceError("Qualification conflicts with existing data", status.HTTP_400_BAD_REQUEST) from e
    except Exception:
        await db.rollback()
        raise


@service_boundary("importing qualification")
async def create_qualification(
    db: AsyncSession,
    settings: Settings,
    content: bytes,
    filename: str,
    created_by: Optional[int] = None,
) -> ImportSummary:
    """Import a new qualification from a workbook. All rows, categories included, commit together or not at all."""
    parsed = _parse(content)

    async def work() -> ImportSummary:
        await _check_unique_number(db, parsed.qualification_no)
        await _check_unique_refs(db, parsed.units)
        category_ids, categories_created = await _resolve_categories(db, parsed.units)
        qualification = Qualification(
            name=parsed.name,
            qualification_no=parsed.qualification_no,
            source_file=filename,
            created_by=created_by,
        )
        db.add(qualification)
        await db.flush()
        counts = await _write_tree(db, qualification, parsed, category_ids, created_by)
        return _summary(qualification, counts, categories_created)

    summary = await retry_database_operation(lambda: _in_transaction(db, work), settings.import_retry_attempts)
    logger.info(
        "Imported qualification %s with %s units and %s subpoints",
        summary.qualification.qualification_no,
        summary.units,
        summary.subpoints,
    )
    return summary


@service_boundary("updating qualification")
async def update_qualification(
    db: AsyncSession,
    settings: Settings,
    qualification_id: int,
    content: bytes,
    filename: str,
    updated_by: Optional[int] = None,
) -> ImportSummary:
    """Replace a qualification's whole unit tree with the workbook's content."""
    parsed = _parse(content)

    async def work() -> ImportSummary:
        qualification = await db.get(Qualification, qualification_id)
        if qualification is None:
            raise ServiceError("Qualification not found", status.HTTP_404_NOT_FOUND)
        await _check_unique_number(db, parsed.qualification_no, exclude_qualification_id=qualification_id)
        await _check_unique_refs(db, parsed.units, exclude_qualification_id=qualification_id)
        category_ids, categories_created = await _resolve_categories(db, parsed.units)

        await _delete_tree(db, qualification_id)
        qualification.name = parsed.name
        qualification.qualification_no = parsed.qualification_no
        qualification.source_file = filename
        counts = await _write_tree(db, qualification, parsed, category_ids, updated_by)
        enrollments = await rederive_enrolled_units(db, qualification_id)
        if enrollments:
            logger.info("Re-derived units for %s enrollments of qualification %s", enrollments, qualification_id)
        return _summary(qualification, counts, categories_created)

    summary = await retry_database_operation(lambda: _in_transaction(db, work), settings.import_retry_attempts)
    logger.info("Replaced unit tree of qualification %s", qualification_id)
    return summary


@service_boundary("cleaning subpoint texts")
async def cleanup_subpoint_texts(db: AsyncSession) -> CleanupResult:
    """Re-apply bullet cleaning to stored subpoint texts. Texts that would become empty are left alone."""
    result = await db.execute(select(OutcomeSubpoint).order_by(OutcomeSubpoint.id))
    points = list(result.scalars().all())
    updated = 0
    for point in points:
        cleaned = clean_point_text(point.point_text)
        if cleaned and cleaned != point.point_text:
            point.point_text = cleaned
            updated += 1
    await db.commit()
    logger.info("Cleaned %s of %s subpoint texts", updated, len(points))
    return CleanupResult(scanned=len(points), updated=updated)


# ----- Catalogue -----


@service_boundary("listing qualifications")
async def list_qualifications(
    db: AsyncSession,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    user_id: Optional[int] = None,
) -> PaginatedResponse:
    stmt = select(Qualification)
    if search and search.strip():
        term = f"%{search.strip()}%"
        stmt = stmt.where(or_(Qualification.name.ilike(term), Qualification.qualification_no.ilike(term)))
    if user_id is not None:
        stmt = stmt.join(UserQualification, UserQualification.qualification_id == Qualification.id).where(
            UserQualification.user_id == user_id
        )
    stmt = stmt.order_by(Qualification.created_at.desc(), Qualification.id.desc())
    rows, total, total_pages = await paginate_select(db, stmt, page=page, page_size=limit)
    return PaginatedResponse(
        items=[QualificationResponse.model_validate(q) for q in rows],
        total=total,
        page=page,
        page_size=limit or 0,
        total_pages=total_pages,
    )


@service_boundary("deleting qualification")
async def delete_qualification(db: AsyncSession, qualification_id: int) -> bool:
    qualification = await db.get(Qualification, qualification_id)
    if qualification is None:
        return False
    used = await db.execute(
        select(UserQualification.id).where(UserQualification.qualification_id == qualification_id).limit(1)
    )
    if used.scalar_one_or_none() is not None:
        raise ServiceError(
            "Cannot delete qualification: it is assigned to one or more users",
            status.HTTP_400_BAD_REQUEST,
        )
    try:
        await _delete_tree(db, qualification_id)
        await db.delete(qualification)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Deleted qualification %s", qualification_id)
    return True


@service_boundary("loading qualification tree")
async def get_qualification_tree(
    db: AsyncSession,
    qualification_id: int,
    learner_id: Optional[int] = None,
    assessment_id: Optional[int] = None,
) -> QualificationTree:
    return await build_qualification_tree(db, qualification_id, learner_id, assessment_id)


@service_boundary("loading qualification categories")
async def get_category_view(
    db: AsyncSession,
    qualification_id: int,
    learner_id: Optional[int] = None,
    filter_assigned_only: bool = False,
    with_summary: bool = False,
) -> Union[List[CategoryBucket], CategorySummary]:
    tree = await build_qualification_tree(db, qualification_id, learner_id)
    if not with_summary:
        return group_by_category(tree, filter_assigned_only=filter_assigned_only)
    qualification = await db.get(Qualification, qualification_id)
    user_qualification = None
    if learner_id is not None:
        user_qualification = await get_user_qualification(db, learner_id, qualification_id)
    return categorywise_with_summary(
        qualification,
        tree,
        user_qualification,
        filter_assigned_only=filter_assigned_only,
    )


@service_boundary("listing units")
async def list_units(
    db: AsyncSession,
    qualification_id: int,
    learner_id: Optional[int] = None,
) -> List[UnitListItem]:
    if await db.get(Qualification, qualification_id) is None:
        raise ServiceError("Qualification not found", status.HTTP_404_NOT_FOUND)
    result = await db.execute(
        select(Unit).where(Unit.qualification_id == qualification_id).order_by(Unit.unit_number, Unit.id)
    )
    units = list(result.scalars().all())
    user_units: Dict[int, UserUnit] = {}
    if learner_id is not None and units:
        uu_result = await db.execute(
            select(UserUnit).where(
                UserUnit.user_id == learner_id,
                UserUnit.unit_id.in_([u.id for u in units]),
            )
        )
        user_units = {uu.unit_id: uu for uu in uu_result.scalars().all()}
    items = []
    for unit in units:
        uu = user_units.get(unit.id)
        items.append(
            UnitListItem(
                id=unit.id,
                unit_title=unit.unit_title,
                unit_number=unit.unit_number,
                unit_ref_no=unit.unit_ref_no,
                category_id=unit.category_id,
                is_assigned=bool(uu and uu.is_assigned),
                is_sampling=bool(uu and uu.is_sampling),
            )
        )
    return items

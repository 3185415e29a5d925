"""
Build the qualification -> unit -> main outcome -> sub-outcome -> subpoint tree.

Each level is loaded with one query and joined here through id-keyed maps.
With a learner, every sub-outcome and subpoint is annotated with the learner's best mark.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ServiceError
from app.core.models import (
    AssessmentUnit,
    Category,
    MainOutcome,
    OutcomeSubpoint,
    Qualification,
    SubOutcome,
    Unit,
    UserUnit,
)

from .marks import MarkValue, resolve_outcome_marks, resolve_subpoint_marks
from .schemas import MainOutcomeNode, QualificationTree, SubOutcomeNode, SubpointNode, UnitNode


def format_mark(value: Optional[float]) -> str:
    """4.0 -> "4", 2.5 -> "2.5", None -> "0"."""
    if value is None:
        return "0"
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def outcome_sort_key(number: str) -> Tuple[int, int]:
    """Numeric (section, outcome) pair, so "1.2" sorts before "1.10"."""
    section, _, outcome = number.partition(".")
    return int(section), int(outcome or 0)


def normalize_outcome_number(number: str) -> str:
    section, outcome = outcome_sort_key(number)
    return f"{section}.{outcome}"


def _achieved_and_max(mark: Optional[MarkValue], declared: Optional[float]) -> Tuple[str, str]:
    if mark is None:
        return "0", format_mark(declared)
    max_marks = mark.max_marks if mark.max_marks is not None else declared
    return format_mark(mark.marks), format_mark(max_marks)


async def _load_units(db: AsyncSession, qualification_id: int, assessment_id: Optional[int]) -> List[Unit]:
    stmt = select(Unit).where(Unit.qualification_id == qualification_id)
    if assessment_id is not None:
        result = await db.execute(
            select(AssessmentUnit.unit_id).where(AssessmentUnit.assessment_id == assessment_id)
        )
        assessment_unit_ids = list(result.scalars().all())
        # An assessment without unit rows covers the whole qualification
        if assessment_unit_ids:
            stmt = stmt.where(Unit.id.in_(assessment_unit_ids))
    stmt = stmt.order_by(Unit.unit_number, Unit.id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def build_qualification_tree(
    db: AsyncSession,
    qualification_id: int,
    learner_id: Optional[int] = None,
    assessment_id: Optional[int] = None,
) -> QualificationTree:
    qualification = await db.get(Qualification, qualification_id)
    if qualification is None:
        raise ServiceError("Qualification not found", status.HTTP_404_NOT_FOUND)

    units = await _load_units(db, qualification_id, assessment_id)
    if not units:
        return QualificationTree(units=[])
    unit_ids = [u.id for u in units]

    category_ids = {u.category_id for u in units if u.category_id is not None}
    categories: Dict[int, Category] = {}
    if category_ids:
        result = await db.execute(select(Category).where(Category.id.in_(category_ids)))
        categories = {c.id: c for c in result.scalars().all()}

    result = await db.execute(select(MainOutcome).where(MainOutcome.unit_id.in_(unit_ids)))
    mains_by_unit: Dict[int, List[MainOutcome]] = defaultdict(list)
    for main in result.scalars().all():
        mains_by_unit[main.unit_id].append(main)

    result = await db.execute(select(SubOutcome).where(SubOutcome.unit_id.in_(unit_ids)))
    sub_outcomes = list(result.scalars().all())
    subs_by_main: Dict[int, List[SubOutcome]] = defaultdict(list)
    orphans_by_unit: Dict[int, List[SubOutcome]] = defaultdict(list)
    for sub in sub_outcomes:
        if sub.main_outcome_id is None:
            orphans_by_unit[sub.unit_id].append(sub)
        else:
            subs_by_main[sub.main_outcome_id].append(sub)

    sub_ids = [s.id for s in sub_outcomes]
    points_by_sub: Dict[int, List[OutcomeSubpoint]] = defaultdict(list)
    if sub_ids:
        result = await db.execute(
            select(OutcomeSubpoint)
            .where(OutcomeSubpoint.outcome_id.in_(sub_ids))
            .order_by(OutcomeSubpoint.id)
        )
        for point in result.scalars().all():
            points_by_sub[point.outcome_id].append(point)

    user_units: Dict[int, UserUnit] = {}
    outcome_marks: Dict[int, MarkValue] = {}
    subpoint_marks: Dict[int, MarkValue] = {}
    if learner_id is not None:
        result = await db.execute(
            select(UserUnit).where(UserUnit.user_id == learner_id, UserUnit.unit_id.in_(unit_ids))
        )
        user_units = {uu.unit_id: uu for uu in result.scalars().all()}
        outcome_marks = await resolve_outcome_marks(db, sub_ids, learner_id, qualification_id, assessment_id)
        point_ids = [p.id for points in points_by_sub.values() for p in points]
        subpoint_marks = await resolve_subpoint_marks(db, point_ids, learner_id, qualification_id, assessment_id)

    def sub_node(sub: SubOutcome) -> SubOutcomeNode:
        achieved, max_marks = _achieved_and_max(outcome_marks.get(sub.id), sub.marks)
        points = []
        for p in points_by_sub.get(sub.id, []):
            mark, point_max = _achieved_and_max(subpoint_marks.get(p.id), p.marks)
            points.append(SubpointNode(id=p.id, point_text=p.point_text, mark=mark, max_marks=point_max))
        return SubOutcomeNode(
            id=sub.id,
            number=normalize_outcome_number(sub.outcome_number),
            description=sub.description or "",
            outcome_marks=achieved,
            max_outcome_marks=max_marks,
            sub_points=points,
        )

    def sorted_subs(subs: List[SubOutcome]) -> List[SubOutcomeNode]:
        ordered = sorted(subs, key=lambda s: (outcome_sort_key(s.outcome_number), s.id))
        return [sub_node(s) for s in ordered]

    tree_units = []
    for unit in units:
        mains = sorted(mains_by_unit.get(unit.id, []), key=lambda m: (m.main_number, m.id))
        category = categories.get(unit.category_id)
        user_unit = user_units.get(unit.id)
        tree_units.append(
            UnitNode(
                id=unit.id,
                unitTitle=unit.unit_title,
                unitNumber=unit.unit_number,
                unit_ref_no=unit.unit_ref_no,
                category=category.category_name if category else None,
                category_id=category.id if category else None,
                is_mandatory=bool(category and category.is_mandatory),
                main_outcomes=[
                    MainOutcomeNode(
                        id=m.id,
                        main_number=m.main_number,
                        description=m.description or "",
                        outcome_marks="0",
                        max_outcome_marks=format_mark(m.marks),
                        sub_outcomes=sorted_subs(subs_by_main.get(m.id, [])),
                    )
                    for m in mains
                ],
                orphan_sub_outcomes=sorted_subs(orphans_by_unit.get(unit.id, [])),
                isSampling=bool(user_unit and user_unit.is_sampling),
                is_assigned=bool(user_unit and user_unit.is_assigned),
            )
        )
    return QualificationTree(units=tree_units)

"""
Per-unit completion for a learner's open (not signed off) qualifications.

A subpoint counts as achieved when the learner's best mark for it is at least 1.
Everything is computed in one aggregate query.
"""

from typing import Dict, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import (
    AssessmentMark,
    OutcomeSubpoint,
    Qualification,
    SubOutcome,
    Unit,
    UserQualification,
)

from .schemas import QualificationProgress, UnitProgress

ACHIEVED_THRESHOLD = 1


def progress_percent(achieved: int, total: int) -> float:
    # Units without subpoints have nothing to achieve and report 0.0
    if not total:
        return 0.0
    return round(achieved / total * 100, 2)


async def compute_qualification_progress(
    db: AsyncSession,
    learner_id: int,
    qualification_id: Optional[int] = None,
) -> List[QualificationProgress]:
    best = (
        select(
            AssessmentMark.qualification_id,
            AssessmentMark.subpoint_id,
            func.max(AssessmentMark.marks).label("best_marks"),
        )
        .where(
            AssessmentMark.learner_id == learner_id,
            AssessmentMark.subpoint_id.is_not(None),
            AssessmentMark.sub_outcome_id.is_(None),
        )
        .group_by(AssessmentMark.qualification_id, AssessmentMark.subpoint_id)
        .subquery()
    )

    achieved_point = case((best.c.best_marks >= ACHIEVED_THRESHOLD, OutcomeSubpoint.id))
    stmt = (
        select(
            UserQualification.qualification_id,
            Qualification.name,
            Unit.id,
            Unit.unit_title,
            func.count(func.distinct(OutcomeSubpoint.id)),
            func.count(func.distinct(achieved_point)),
        )
        .join(Qualification, Qualification.id == UserQualification.qualification_id)
        .join(Unit, Unit.qualification_id == UserQualification.qualification_id)
        .outerjoin(SubOutcome, SubOutcome.unit_id == Unit.id)
        .outerjoin(OutcomeSubpoint, OutcomeSubpoint.outcome_id == SubOutcome.id)
        .outerjoin(
            best,
            and_(
                best.c.subpoint_id == OutcomeSubpoint.id,
                best.c.qualification_id == UserQualification.qualification_id,
            ),
        )
        .where(
            UserQualification.user_id == learner_id,
            UserQualification.is_signed_off.is_(False),
        )
        .group_by(
            UserQualification.qualification_id,
            Qualification.name,
            Unit.id,
            Unit.unit_title,
            Unit.unit_number,
        )
        .order_by(UserQualification.qualification_id, Unit.unit_number, Unit.id)
    )
    if qualification_id is not None:
        stmt = stmt.where(UserQualification.qualification_id == qualification_id)

    result = await db.execute(stmt)
    by_qualification: Dict[int, QualificationProgress] = {}
    for q_id, q_name, unit_id, unit_title, total, achieved in result.all():
        entry = by_qualification.get(q_id)
        if entry is None:
            entry = QualificationProgress(qualification_id=q_id, qualification_name=q_name, units=[])
            by_qualification[q_id] = entry
        entry.units.append(
            UnitProgress(
                unit_id=unit_id,
                unit_title=unit_title,
                total_subpoints=total or 0,
                achieved_subpoints=achieved or 0,
                progress_percent=progress_percent(achieved or 0, total or 0),
            )
        )
    return list(by_qualification.values())

"""
Resolve the current mark a learner holds for a subpoint or a sub-outcome.

A key may have several AssessmentMark rows (re-attempts). The current mark is the
best attempt: highest `marks`, ties broken by the lowest row id. Subpoint marks and
sub-outcome marks are separate grains and never mix.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import AssessmentMark


@dataclass(frozen=True)
class MarkValue:
    marks: float
    max_marks: Optional[float] = None


def _scoped_marks(learner_id: int, qualification_id: int, assessment_id: Optional[int]):
    stmt = select(AssessmentMark).where(
        AssessmentMark.learner_id == learner_id,
        AssessmentMark.qualification_id == qualification_id,
    )
    if assessment_id is not None:
        stmt = stmt.where(AssessmentMark.assessment_id == assessment_id)
    return stmt.order_by(AssessmentMark.marks.desc(), AssessmentMark.id.asc())


def _best_per_key(rows: Iterable[AssessmentMark], key_attr: str) -> Dict[int, MarkValue]:
    # Rows arrive best-first, so the first row seen for a key wins
    best: Dict[int, MarkValue] = {}
    for row in rows:
        key = getattr(row, key_attr)
        if key not in best:
            best[key] = MarkValue(marks=float(row.marks or 0), max_marks=row.max_marks)
    return best


async def resolve_subpoint_marks(
    db: AsyncSession,
    subpoint_ids: List[int],
    learner_id: int,
    qualification_id: int,
    assessment_id: Optional[int] = None,
) -> Dict[int, MarkValue]:
    """Best mark per subpoint id, in one query. Subpoints without any mark are absent from the result."""
    if not subpoint_ids:
        return {}
    stmt = _scoped_marks(learner_id, qualification_id, assessment_id).where(
        AssessmentMark.subpoint_id.in_(subpoint_ids),
        AssessmentMark.sub_outcome_id.is_(None),
    )
    result = await db.execute(stmt)
    return _best_per_key(result.scalars().all(), "subpoint_id")


async def resolve_outcome_marks(
    db: AsyncSession,
    outcome_ids: List[int],
    learner_id: int,
    qualification_id: int,
    assessment_id: Optional[int] = None,
) -> Dict[int, MarkValue]:
    """Best outcome-level mark per sub-outcome id, in one query."""
    if not outcome_ids:
        return {}
    stmt = _scoped_marks(learner_id, qualification_id, assessment_id).where(
        AssessmentMark.sub_outcome_id.in_(outcome_ids),
        AssessmentMark.subpoint_id.is_(None),
    )
    result = await db.execute(stmt)
    return _best_per_key(result.scalars().all(), "sub_outcome_id")


async def resolve_subpoint_mark(
    db: AsyncSession,
    subpoint_id: int,
    learner_id: int,
    qualification_id: int,
    assessment_id: Optional[int] = None,
) -> Optional[MarkValue]:
    """None means the subpoint has not been assessed yet."""
    marks = await resolve_subpoint_marks(db, [subpoint_id], learner_id, qualification_id, assessment_id)
    return marks.get(subpoint_id)


async def resolve_outcome_mark(
    db: AsyncSession,
    outcome_id: int,
    learner_id: int,
    qualification_id: int,
    assessment_id: Optional[int] = None,
) -> Optional[MarkValue]:
    marks = await resolve_outcome_marks(db, [outcome_id], learner_id, qualification_id, assessment_id)
    return marks.get(outcome_id)

from typing import Dict, List, Optional

from app.core.models import Qualification, UserQualification

from .schemas import CategoryBucket, CategorySummary, QualificationTree

UNCATEGORIZED_ID = 0
UNCATEGORIZED_NAME = "Uncategorized"


def group_by_category(tree: QualificationTree, filter_assigned_only: bool = False) -> List[CategoryBucket]:
    """
    Bucket the tree's units by category, in order of first appearance.

    Units keep their tree order inside a bucket. With filter_assigned_only, unassigned
    units are left out but their bucket is still returned (possibly with no units).
    The input tree is not modified.
    """
    buckets: Dict[int, CategoryBucket] = {}
    for unit in tree.units:
        key = unit.category_id or UNCATEGORIZED_ID
        bucket = buckets.get(key)
        if bucket is None:
            bucket = CategoryBucket(
                category_id=key,
                category=unit.category or UNCATEGORIZED_NAME,
                is_mandatory=unit.is_mandatory,
                units=[],
            )
            buckets[key] = bucket
        if filter_assigned_only and not unit.is_assigned:
            continue
        bucket.units.append(unit.model_copy(deep=True))
    return list(buckets.values())


def categorywise_with_summary(
    qualification: Qualification,
    tree: QualificationTree,
    user_qualification: Optional[UserQualification] = None,
    filter_assigned_only: bool = False,
) -> CategorySummary:
    return CategorySummary(
        qualification_id=qualification.id,
        qualification_name=qualification.name,
        qualification_no=qualification.qualification_no,
        is_signed_off=bool(user_qualification and user_qualification.is_signed_off),
        is_optional_assigned=bool(user_qualification and user_qualification.is_optional_assigned),
        categories=group_by_category(tree, filter_assigned_only=filter_assigned_only),
    )

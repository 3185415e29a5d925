from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ----- Outcome tree -----


class SubpointNode(BaseModel):
    id: int
    point_text: str
    mark: str = "0"
    max_marks: str = "0"


class SubOutcomeNode(BaseModel):
    id: int
    number: str = Field(..., description="Normalized outcome number, e.g. stored '01.02' -> '1.2'")
    description: str
    outcome_marks: str = "0"
    max_outcome_marks: str = "0"
    sub_points: List[SubpointNode] = Field(default_factory=list)


class MainOutcomeNode(BaseModel):
    id: int
    main_number: str
    description: str
    outcome_marks: str = "0"
    max_outcome_marks: str = "0"
    sub_outcomes: List[SubOutcomeNode] = Field(default_factory=list)


class UnitNode(BaseModel):
    id: int
    unitTitle: str
    unitNumber: Optional[str] = None
    unit_ref_no: str
    category: Optional[str] = None
    category_id: Optional[int] = None
    is_mandatory: bool = False
    main_outcomes: List[MainOutcomeNode] = Field(default_factory=list)
    # Sub-outcomes imported before any main outcome row on their sheet
    orphan_sub_outcomes: List[SubOutcomeNode] = Field(default_factory=list)
    isSampling: bool = False
    is_assigned: bool = False


class QualificationTree(BaseModel):
    units: List[UnitNode] = Field(default_factory=list)


class CategoryBucket(BaseModel):
    category_id: int = Field(..., description="0 for units without a category")
    category: str
    is_mandatory: bool = False
    units: List[UnitNode] = Field(default_factory=list)


class CategorySummary(BaseModel):
    """Category view wrapped with qualification metadata and the learner's flags."""

    qualification_id: int
    qualification_name: str
    qualification_no: str
    is_signed_off: bool = False
    is_optional_assigned: bool = False
    categories: List[CategoryBucket] = Field(default_factory=list)


# ----- Catalogue -----


class QualificationResponse(BaseModel):
    id: int
    name: str
    qualification_no: str
    source_file: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ImportSummary(BaseModel):
    """Result of a spreadsheet import or re-import."""

    qualification: QualificationResponse
    units: int
    main_outcomes: int
    sub_outcomes: int
    subpoints: int
    categories_created: int


class UnitListItem(BaseModel):
    id: int
    unit_title: str
    unit_number: Optional[str] = None
    unit_ref_no: str
    category_id: Optional[int] = None
    is_assigned: bool = False
    is_sampling: bool = False


class CleanupResult(BaseModel):
    scanned: int
    updated: int

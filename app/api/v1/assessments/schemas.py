from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.core.enums import AssessmentStatus


class AssessmentCreate(BaseModel):
    qualification_id: int
    title: str = Field(..., min_length=1, max_length=255)
    unit_ids: List[int] = Field(default_factory=list, description="Empty means the whole qualification")
    center_id: Optional[int] = Field(None, description="Required for platform admins only")


class AssessmentResponse(BaseModel):
    id: int
    center_id: int
    qualification_id: int
    title: str
    assessment_status: AssessmentStatus
    unit_ids: List[int] = Field(default_factory=list)
    created_by: Optional[int] = None
    created_at: datetime


class MarkCreate(BaseModel):
    """A mark for exactly one of a subpoint or a sub-outcome."""

    learner_id: int
    qualification_id: int
    unit_id: int
    assessment_id: Optional[int] = None
    sub_outcome_id: Optional[int] = None
    subpoint_id: Optional[int] = None
    marks: float = Field(..., ge=0)
    max_marks: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def one_target(self):
        if (self.sub_outcome_id is None) == (self.subpoint_id is None):
            raise ValueError("Provide exactly one of sub_outcome_id or subpoint_id")
        if self.max_marks is not None and self.marks > self.max_marks:
            raise ValueError("marks cannot exceed max_marks")
        return self


class MarkResponse(BaseModel):
    id: int
    learner_id: int
    qualification_id: int
    unit_id: int
    assessment_id: Optional[int] = None
    sub_outcome_id: Optional[int] = None
    subpoint_id: Optional[int] = None
    marks: float
    max_marks: Optional[float] = None
    attempt: int
    created_at: datetime

    class Config:
        from_attributes = True

import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class SamplingCreate(BaseModel):
    """An IQA sample of a learner's work, covering either units or assessments."""

    learner_id: int
    qualification_id: int
    assessor_id: Optional[int] = None
    sampling_type: Optional[int] = None
    date: Optional[datetime.date] = None
    iqa_notes: Optional[str] = None
    is_accept_sampling: Optional[str] = Field(None, max_length=20)
    action_date: Optional[datetime.date] = None
    further_action_note: Optional[str] = None
    unit_ids: List[int] = Field(default_factory=list)
    assessment_ids: List[int] = Field(default_factory=list)
    center_id: Optional[int] = Field(None, description="Required for platform admins only")

    @model_validator(mode="after")
    def one_reference_kind(self):
        if bool(self.unit_ids) == bool(self.assessment_ids):
            raise ValueError("Provide either unit_ids or assessment_ids")
        return self


class SamplingUpdate(BaseModel):
    """Fields left out are unchanged. Passing unit_ids or assessment_ids replaces the links."""

    assessor_id: Optional[int] = None
    sampling_type: Optional[int] = None
    date: Optional[datetime.date] = None
    iqa_notes: Optional[str] = None
    is_accept_sampling: Optional[str] = Field(None, max_length=20)
    action_date: Optional[datetime.date] = None
    further_action_note: Optional[str] = None
    unit_ids: Optional[List[int]] = None
    assessment_ids: Optional[List[int]] = None

    @model_validator(mode="after")
    def one_reference_kind(self):
        if self.unit_ids and self.assessment_ids:
            raise ValueError("Provide either unit_ids or assessment_ids, not both")
        return self


class SamplingResponse(BaseModel):
    id: int
    center_id: int
    learner_id: int
    qualification_id: int
    assessor_id: Optional[int] = None
    sampling_type: Optional[int] = None
    date: Optional[datetime.date] = None
    iqa_notes: Optional[str] = None
    is_accept_sampling: Optional[str] = None
    action_date: Optional[datetime.date] = None
    further_action_note: Optional[str] = None
    reference_type: Optional[int] = None
    unit_ids: List[int] = Field(default_factory=list)
    assessment_ids: List[int] = Field(default_factory=list)
    created_by: Optional[int] = None
    created_at: datetime.datetime


class IqaInfo(BaseModel):
    id: int
    name: str
    surname: Optional[str] = None


class MatrixUnit(BaseModel):
    id: int
    unitNumber: Optional[str] = None
    unitTitle: str
    is_sampled: bool = False
    is_assigned: bool = False
    iqa: Optional[IqaInfo] = None
    sampled_date: Optional[datetime.datetime] = None


class MatrixQualification(BaseModel):
    qualification_id: int
    qualification_name: str
    units: List[MatrixUnit] = Field(default_factory=list)


class MatrixLearner(BaseModel):
    learner_id: int
    learner_name: str
    is_signed_off: bool = False
    is_optional_assigned: bool = False
    qualifications: List[MatrixQualification] = Field(default_factory=list)

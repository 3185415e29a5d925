from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator


class EnrollmentRequest(BaseModel):
    """Full replacement of a learner's qualification set."""

    qualification_ids: List[int] = Field(default_factory=list)


class EnrollmentResponse(BaseModel):
    id: int
    user_id: int
    qualification_id: int
    is_signed_off: bool
    is_optional_assigned: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AssignUnitStatusRequest(BaseModel):
    unit_ids: List[int] = Field(default_factory=list, description="Units to mark assigned")
    not_assigned_unit_ids: List[int] = Field(default_factory=list, description="Units to mark unassigned")
    qualification_ids: List[int] = Field(default_factory=list)
    is_optional_assigned: Optional[bool] = None


class SignOffRequest(BaseModel):
    qualification_id: int
    is_signed_off: bool = True


class UnitProgress(BaseModel):
    unit_id: int
    unit_title: str
    total_subpoints: int
    achieved_subpoints: int
    progress_percent: float


class QualificationProgress(BaseModel):
    qualification_id: int
    qualification_name: str
    units: List[UnitProgress] = Field(default_factory=list)


class LearnerDashboard(BaseModel):
    numberOfQualifications: int
    numberOfQualificationsSignedOff: int
    progressOfQualifications: int = Field(..., description="Signed-off share of enrolled qualifications, in percent")
    qualificationProgressData: List[QualificationProgress] = Field(default_factory=list)


class LearnerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    surname: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    phone_number: Optional[str] = Field(None, max_length=50)
    date_of_birth: Optional[date] = None
    employer: Optional[str] = Field(None, max_length=255)
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    qualification_ids: List[int] = Field(..., min_length=1)
    assessor_ids: List[int] = Field(default_factory=list)
    iqa_ids: List[int] = Field(default_factory=list)
    center_id: Optional[int] = Field(None, description="Required for platform admins only")

    @model_validator(mode="after")
    def end_after_start(self):
        if self.start_date and self.expected_end_date and self.expected_end_date < self.start_date:
            raise ValueError("expected_end_date must not be before start_date")
        return self


class LearnerUpdate(BaseModel):
    """
    Fields left out are unchanged. qualification_ids, assessor_ids and iqa_ids replace the
    current set when given; qualifications the learner keeps retain their sign-off and units.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    surname: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)
    phone_number: Optional[str] = Field(None, max_length=50)
    date_of_birth: Optional[date] = None
    employer: Optional[str] = Field(None, max_length=255)
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    status: Optional[Literal["ACTIVE", "INACTIVE"]] = None
    qualification_ids: Optional[List[int]] = None
    assessor_ids: Optional[List[int]] = None
    iqa_ids: Optional[List[int]] = None


class LearnerResponse(BaseModel):
    id: int
    center_id: Optional[int] = None
    name: str
    surname: Optional[str] = None
    email: EmailStr
    status: str
    phone_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    employer: Optional[str] = None
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    created_at: datetime
    qualifications: List[EnrollmentResponse] = Field(default_factory=list)
    assessor_ids: List[int] = Field(default_factory=list)
    iqa_ids: List[int] = Field(default_factory=list)

from app.core.models.center import Center
from app.core.models.qualification import (
    Category,
    MainOutcome,
    OutcomeSubpoint,
    Qualification,
    SubOutcome,
    Unit,
)
from app.core.models.enrollment import LearnerStaff, UserQualification, UserUnit
from app.core.models.assessment import Assessment, AssessmentMark, AssessmentUnit
from app.core.models.sampling import Sampling, SamplingAssessment, SamplingUnit

__all__ = [
    "Assessment",
    "AssessmentMark",
    "AssessmentUnit",
    "Category",
    "Center",
    "LearnerStaff",
    "MainOutcome",
    "OutcomeSubpoint",
    "Qualification",
    "Sampling",
    "SamplingAssessment",
    "SamplingUnit",
    "SubOutcome",
    "Unit",
    "UserQualification",
    "UserUnit",
]

from enum import Enum, IntEnum


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    CENTER_ADMIN = "CENTER_ADMIN"
    ASSESSOR = "ASSESSOR"
    IQA = "IQA"
    EQA = "EQA"
    LEARNER = "LEARNER"


class SamplingReferenceType(IntEnum):
    UNIT = 1
    ASSESSMENT = 2


class AssessmentStatus(IntEnum):
    CREATED = 1
    EVIDENCE_SUBMITTED = 2
    UNDER_REVIEW = 3
    COMPLETED = 4
    WITH_IQA = 5
    IQA_APPROVED = 6

"""Assessments and the marks recorded against outcomes and subpoints."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint

from app.db.session import Base


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    center_id = Column(Integer, ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    assessment_status = Column(Integer, nullable=False, default=1)  # AssessmentStatus
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class AssessmentUnit(Base):
    __tablename__ = "assessment_units"
    __table_args__ = (
        UniqueConstraint("assessment_id", "unit_id", name="uq_assessment_unit"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False)


class AssessmentMark(Base):
    """
    One recorded attempt. Several rows may share a key; the current mark for a key
    is the row with the highest `marks`, not the latest one.
    Exactly one of sub_outcome_id / subpoint_id is set.
    """

    __tablename__ = "assessment_marks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=True)
    sub_outcome_id = Column(Integer, ForeignKey("sub_outcomes.id", ondelete="CASCADE"), nullable=True, index=True)
    subpoint_id = Column(Integer, ForeignKey("outcome_subpoints.id", ondelete="CASCADE"), nullable=True, index=True)
    marks = Column(Float, nullable=False, default=0)
    max_marks = Column(Float, nullable=True)
    attempt = Column(Integer, nullable=False, default=1)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

"""IQA sampling records and the units / assessments each one covers."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from app.db.session import Base


class Sampling(Base):
    __tablename__ = "samplings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    center_id = Column(Integer, ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    learner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="CASCADE"), nullable=False)
    assessor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sampling_type = Column(Integer, nullable=True)
    date = Column(Date, nullable=True)
    iqa_notes = Column(Text, nullable=True)
    is_accept_sampling = Column(String(20), nullable=True)
    action_date = Column(Date, nullable=True)
    further_action_note = Column(Text, nullable=True)
    reference_type = Column(Integer, nullable=True)  # SamplingReferenceType
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class SamplingUnit(Base):
    __tablename__ = "sampling_units"
    __table_args__ = (
        UniqueConstraint("sampling_id", "unit_id", name="uq_sampling_unit"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sampling_id = Column(Integer, ForeignKey("samplings.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False)


class SamplingAssessment(Base):
    __tablename__ = "sampling_assessments"
    __table_args__ = (
        UniqueConstraint("sampling_id", "assessment_id", name="uq_sampling_assessment"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sampling_id = Column(Integer, ForeignKey("samplings.id", ondelete="CASCADE"), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False)

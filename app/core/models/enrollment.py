"""Learner enrollment: which qualifications and units a learner holds, plus sampling state per unit."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.db.session import Base


class UserQualification(Base):
    __tablename__ = "user_qualifications"
    __table_args__ = (
        UniqueConstraint("user_id", "qualification_id", name="uq_user_qualification"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="RESTRICT"), nullable=False, index=True)
    # Terminal once true; see learners service sign_off
    is_signed_off = Column(Boolean, nullable=False, default=False)
    is_optional_assigned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class UserUnit(Base):
    __tablename__ = "user_units"
    __table_args__ = (
        UniqueConstraint("user_id", "unit_id", name="uq_user_unit"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    is_assigned = Column(Boolean, nullable=False, default=False)
    is_sampling = Column(Boolean, nullable=False, default=False)
    reference_type = Column(Integer, nullable=True)  # SamplingReferenceType
    iqa_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sampled_at = Column(DateTime(timezone=True), nullable=True)


class LearnerStaff(Base):
    """Assessor or IQA responsible for a learner. Assessors only list the learners linked here."""

    __tablename__ = "learner_staff"
    __table_args__ = (
        UniqueConstraint("learner_id", "staff_id", name="uq_learner_staff"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    staff_role = Column(String(50), nullable=False)  # ASSESSOR or IQA
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

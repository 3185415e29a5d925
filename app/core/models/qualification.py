"""Qualification catalogue: qualification -> unit -> main outcome -> sub-outcome -> subpoint."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, func

from app.db.session import Base


class Qualification(Base):
    """A certification program. Created and replaced wholesale from a spreadsheet import."""

    __tablename__ = "qualifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    qualification_no = Column(String(100), nullable=False, unique=True)
    source_file = Column(String(255), nullable=True)  # Name of the uploaded spreadsheet
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class Category(Base):
    """Unit category shared across qualifications. First import to use a name fixes is_mandatory."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_name = Column(String(255), nullable=False)
    is_mandatory = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


# Names match case-insensitively on import
Index("uq_categories_name_lower", func.lower(Category.category_name), unique=True)


class Unit(Base):
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, autoincrement=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_title = Column(Text, nullable=False)
    unit_number = Column(String(50), nullable=True)
    unit_ref_no = Column(String(100), nullable=False, unique=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class MainOutcome(Base):
    __tablename__ = "main_outcomes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="CASCADE"), nullable=False, index=True)
    main_number = Column(String(20), nullable=False)  # "1", "2", ...
    description = Column(Text, nullable=False, default="")
    marks = Column(Float, nullable=True)  # Declared maximum
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class SubOutcome(Base):
    __tablename__ = "sub_outcomes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    qualification_id = Column(Integer, ForeignKey("qualifications.id", ondelete="CASCADE"), nullable=False, index=True)
    # NULL when the sheet had no main outcome row before this sub-outcome
    main_outcome_id = Column(Integer, ForeignKey("main_outcomes.id", ondelete="CASCADE"), nullable=True, index=True)
    outcome_number = Column(String(20), nullable=False)  # "1.2", stored as typed in the sheet
    description = Column(Text, nullable=False, default="")
    marks = Column(Float, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class OutcomeSubpoint(Base):
    __tablename__ = "outcome_subpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    outcome_id = Column(Integer, ForeignKey("sub_outcomes.id", ondelete="CASCADE"), nullable=False, index=True)
    point_text = Column(Text, nullable=False)
    marks = Column(Float, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

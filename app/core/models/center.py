"""Training centers. Learners, assessments and sampling records are scoped to a center."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.db.session import Base


class Center(Base):
    __tablename__ = "centers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    center_name = Column(String(255), nullable=False)
    center_address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

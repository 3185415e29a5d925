from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, func

from app.db.session import Base


class User(Base):
    """Any account: admin, center admin, assessor, IQA, EQA or learner."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Platform admins have no center
    center_id = Column(Integer, ForeignKey("centers.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    surname = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False)
    password_hash = Column(Text, nullable=False)
    # ADMIN, CENTER_ADMIN, ASSESSOR, IQA, EQA, LEARNER
    role = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    phone_number = Column(String(50), nullable=True)
    # Learner profile
    date_of_birth = Column(Date, nullable=True)
    employer = Column(String(255), nullable=True)
    start_date = Column(Date, nullable=True)
    expected_end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


# One account per email across all centers; login looks users up by email alone
Index("uq_users_email_lower", func.lower(User.email), unique=True)

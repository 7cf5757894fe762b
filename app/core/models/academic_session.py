import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from app.db.session import Base


class AcademicSession(Base):
    """
    Academic session (school year) per school. Only one per school can be is_active = true;
    the partial unique index makes the database the final arbiter under concurrent activation.
    """

    __tablename__ = "academic_sessions"
    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_academic_sessions_school_name"),
        CheckConstraint("start_date < end_date", name="ck_academic_sessions_dates"),
        Index(
            "uq_academic_sessions_one_active_per_school",
            "school_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("ix_academic_sessions_dates", "start_date", "end_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)  # e.g. "2025-2026"
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school = relationship("School", back_populates="academic_sessions")
    terms = relationship("Term", back_populates="academic_session", passive_deletes="all")

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
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from app.db.session import Base


class Term(Base):
    """
    Term (semester/quarter) inside an academic session. academic_session_id is fixed at creation.
    Only one term per session can be is_current = true, and only while the session is active.
    Non-overlap of [start_date, end_date) ranges is enforced by ex_terms_no_overlap (PostgreSQL migration).
    """

    __tablename__ = "terms"
    __table_args__ = (
        UniqueConstraint("academic_session_id", "name", name="uq_terms_session_name"),
        UniqueConstraint("academic_session_id", "sequence", name="uq_terms_session_sequence"),
        CheckConstraint("start_date < end_date", name="ck_terms_dates"),
        Index(
            "uq_terms_one_current_per_session",
            "academic_session_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
        Index("ix_terms_dates", "start_date", "end_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    academic_session_id = Column(
        Uuid,
        ForeignKey("academic_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(100), nullable=False)  # e.g. "First Term"
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    sequence = Column(Integer, nullable=False, default=1)
    is_current = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    academic_session = relationship("AcademicSession", back_populates="terms")

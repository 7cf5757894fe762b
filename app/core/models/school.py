import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class School(Base):
    """
    School (tenant). Owned by the platform; the academic calendar only references it.
    School scope of sessions and terms is resolved through school_id.
    """

    __tablename__ = "schools"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    academic_sessions = relationship("AcademicSession", back_populates="school")

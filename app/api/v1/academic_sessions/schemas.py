from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.pagination import PaginationMeta


class AcademicSessionCreate(BaseModel):
    """Create academic session. name must be unique per school."""

    name: str = Field(..., min_length=1, max_length=100, description="e.g. 2025-2026")
    description: Optional[str] = None
    school_id: Optional[UUID] = Field(
        None, description="Target school. Required for system admins, ignored for school users."
    )
    start_date: date = Field(..., description="Session start date")
    end_date: date = Field(..., description="Session end date (must be after start_date)")


class AcademicSessionUpdate(BaseModel):
    """Partial update. Omitted fields keep their value; an explicit null description clears it."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AcademicSessionResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    description: Optional[str] = None
    start_date: date
    end_date: date
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AcademicSessionWithStatsResponse(AcademicSessionResponse):
    term_count: int = 0


class AcademicSessionFilterParams(BaseModel):
    is_active: Optional[bool] = None


class PaginatedAcademicSessionsResponse(BaseModel):
    data: List[AcademicSessionWithStatsResponse]
    meta: PaginationMeta

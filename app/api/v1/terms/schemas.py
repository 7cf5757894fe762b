from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.pagination import PaginationMeta


class TermCreate(BaseModel):
    """Create a term inside an academic session. sequence defaults to the next free slot."""

    name: str = Field(..., min_length=1, max_length=100, description="e.g. First Term")
    description: Optional[str] = None
    start_date: date
    end_date: date
    sequence: Optional[int] = Field(None, ge=1, description="Order within the session; auto-assigned if omitted")


class TermUpdate(BaseModel):
    """Partial update. The parent session cannot be changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sequence: Optional[int] = Field(None, ge=1)


class TermResponse(BaseModel):
    id: UUID
    academic_session_id: UUID
    name: str
    description: Optional[str] = None
    start_date: date
    end_date: date
    sequence: int
    is_current: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TermWithSessionResponse(TermResponse):
    """Term joined with its parent session."""

    session_name: str
    school_id: UUID
    session_is_active: bool


class TermFilterParams(BaseModel):
    is_current: Optional[bool] = None


class PaginatedTermsResponse(BaseModel):
    data: List[TermResponse]
    meta: PaginationMeta

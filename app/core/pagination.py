"""
Offset/page pagination shared by list endpoints.

- limit: items per page, clamped to [1, 100], default 10.
- offset: items to skip, default 0.
- page: 1-based page number; when given it takes precedence over offset.
"""
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class PaginationParams(BaseModel):
    limit: Optional[int] = Field(None, description="Items per page (1-100, default 10)")
    offset: Optional[int] = Field(None, description="Items to skip (ignored when page is given)")
    page: Optional[int] = Field(None, description="1-based page number")

    def resolved_limit(self) -> int:
        if self.limit is None:
            return DEFAULT_LIMIT
        return max(1, min(self.limit, MAX_LIMIT))

    def resolved_page(self) -> Optional[int]:
        if self.page is None:
            return None
        return max(1, self.page)

    def resolved_offset(self) -> int:
        page = self.resolved_page()
        if page is not None:
            return (page - 1) * self.resolved_limit()
        return max(0, self.offset or 0)

    def meta(self, total: int) -> "PaginationMeta":
        limit = self.resolved_limit()
        offset = self.resolved_offset()
        return PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            page=self.resolved_page(),
            has_more=offset + limit < total,
        )


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: Optional[int] = None
    page: Optional[int] = None
    has_more: bool

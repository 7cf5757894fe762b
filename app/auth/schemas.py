from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel

SYSTEM_ADMIN_ROLE = "SYSTEM_ADMIN"


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC and school scoping.
    school_id is None only for system admins, who operate across schools.
    """

    id: UUID
    role: str
    school_id: Optional[UUID] = None
    permissions: Dict[str, Dict[str, bool]] = {}

    @property
    def is_system_admin(self) -> bool:
        return self.role == SYSTEM_ADMIN_ROLE

from app.core.models.school import School
from app.core.models.academic_session import AcademicSession
from app.core.models.term import Term

__all__ = [
    "School",
    "AcademicSession",
    "Term",
]

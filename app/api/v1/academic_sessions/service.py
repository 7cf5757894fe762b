import logging
from datetime import date
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, ServiceError, ValidationError
from app.core.models import AcademicSession, Term
from app.core.pagination import PaginationParams
from app.db.transaction import atomic, constraint_message, read_only

from .schemas import (
    AcademicSessionCreate,
    AcademicSessionFilterParams,
    AcademicSessionResponse,
    AcademicSessionUpdate,
    AcademicSessionWithStatsResponse,
    PaginatedAcademicSessionsResponse,
)

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Academic session not found"
DUPLICATE_NAME = "An academic session with this name already exists in this school"


def _to_response(s: AcademicSession) -> AcademicSessionResponse:
    return AcademicSessionResponse(
        id=s.id,
        school_id=s.school_id,
        name=s.name,
        description=s.description,
        start_date=s.start_date,
        end_date=s.end_date,
        is_active=s.is_active,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


def _to_stats_response(s: AcademicSession, term_count: int) -> AcademicSessionWithStatsResponse:
    return AcademicSessionWithStatsResponse(**_to_response(s).model_dump(), term_count=term_count or 0)


def _validate_dates(start_date: date, end_date: date) -> None:
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date")


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Name must not be blank")
    return name


def _session_integrity_error(e: IntegrityError) -> ServiceError:
    msg = constraint_message(e)
    if "uq_academic_sessions_school_name" in msg or "academic_sessions.school_id, academic_sessions.name" in msg:
        return ConflictError(DUPLICATE_NAME)
    if "uq_academic_sessions_one_active_per_school" in msg or "academic_sessions.school_id" in msg:
        return ConflictError("Another academic session is already active for this school")
    if "ck_academic_sessions_dates" in msg:
        return ValidationError("Start date must be before end date")
    if "foreign key" in msg.lower():
        return NotFoundError("School not found")
    return ConflictError("Academic session conflicts with existing data")


def _delete_integrity_error(e: IntegrityError) -> ServiceError:
    return ConflictError("Cannot delete an academic session that still has terms")


def _term_count_column():
    return (
        select(func.count(Term.id))
        .where(Term.academic_session_id == AcademicSession.id)
        .correlate(AcademicSession)
        .scalar_subquery()
        .label("term_count")
    )


def _scoped(stmt, school_id: Optional[UUID]):
    """Apply the school filter for tenant-scoped callers; None means unscoped (system admin)."""
    if school_id is not None:
        stmt = stmt.where(AcademicSession.school_id == school_id)
    return stmt


async def load_academic_session(
    db: AsyncSession,
    session_id: UUID,
    school_id: Optional[UUID],
    for_update: bool = False,
) -> AcademicSession:
    """Load the session ORM row in scope. for_update locks it until the caller's transaction ends."""
    stmt = _scoped(select(AcademicSession).where(AcademicSession.id == session_id), school_id)
    if for_update:
        # Re-read under a row lock; the identity map must not hand back stale attributes.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    session = result.scalar_one_or_none()
    if not session:
        raise NotFoundError(SESSION_NOT_FOUND)
    return session


async def _count_terms(db: AsyncSession, session_id: UUID) -> int:
    result = await db.execute(select(func.count(Term.id)).where(Term.academic_session_id == session_id))
    return result.scalar_one()


async def _name_taken(db: AsyncSession, school_id: UUID, name: str, exclude_id: Optional[UUID] = None) -> bool:
    stmt = select(AcademicSession.id).where(
        AcademicSession.school_id == school_id,
        AcademicSession.name == name,
    )
    if exclude_id is not None:
        stmt = stmt.where(AcademicSession.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def create_academic_session(
    db: AsyncSession,
    school_id: UUID,
    payload: AcademicSessionCreate,
) -> AcademicSessionResponse:
    """Create an inactive academic session for a school. Name must be unique per school."""
    _validate_dates(payload.start_date, payload.end_date)
    name = _clean_name(payload.name)
    async with atomic(db, _session_integrity_error):
        if await _name_taken(db, school_id, name):
            raise ConflictError(DUPLICATE_NAME)
        session = AcademicSession(
            school_id=school_id,
            name=name,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            is_active=False,
        )
        db.add(session)
    await db.refresh(session)
    return _to_response(session)


async def list_academic_sessions(
    db: AsyncSession,
    school_id: Optional[UUID],
    filters: AcademicSessionFilterParams,
    pagination: PaginationParams,
) -> PaginatedAcademicSessionsResponse:
    """List sessions with their term counts, newest first."""
    conditions = []
    if school_id is not None:
        conditions.append(AcademicSession.school_id == school_id)
    if filters.is_active is not None:
        conditions.append(AcademicSession.is_active.is_(filters.is_active))

    stmt = (
        select(AcademicSession, _term_count_column())
        .where(*conditions)
        .order_by(AcademicSession.start_date.desc(), AcademicSession.id)
        .offset(pagination.resolved_offset())
        .limit(pagination.resolved_limit())
    )
    async with read_only(db):
        total_result = await db.execute(select(func.count(AcademicSession.id)).where(*conditions))
        total = total_result.scalar_one()
        result = await db.execute(stmt)
        rows = result.all()
    data = [_to_stats_response(s, count) for s, count in rows]
    return PaginatedAcademicSessionsResponse(data=data, meta=pagination.meta(total))


async def get_academic_session(
    db: AsyncSession,
    session_id: UUID,
    school_id: Optional[UUID] = None,
) -> AcademicSessionWithStatsResponse:
    """Get one session with its term count. Sessions of other schools are reported as not found."""
    stmt = _scoped(
        select(AcademicSession, _term_count_column()).where(AcademicSession.id == session_id),
        school_id,
    )
    async with read_only(db):
        result = await db.execute(stmt)
        row: Optional[Tuple[AcademicSession, int]] = result.one_or_none()
    if row is None:
        raise NotFoundError(SESSION_NOT_FOUND)
    return _to_stats_response(row[0], row[1])


async def get_active_academic_session(
    db: AsyncSession,
    school_id: UUID,
) -> Optional[AcademicSessionWithStatsResponse]:
    """The school's active session, or None when no session is active."""
    async with read_only(db):
        result = await db.execute(
            select(AcademicSession, _term_count_column()).where(
                AcademicSession.school_id == school_id,
                AcademicSession.is_active.is_(True),
            )
        )
        row = result.one_or_none()
    return _to_stats_response(row[0], row[1]) if row else None


async def update_academic_session(
    db: AsyncSession,
    session_id: UUID,
    payload: AcademicSessionUpdate,
    school_id: Optional[UUID] = None,
) -> AcademicSessionResponse:
    """
    Partial update. Omitted fields keep their values; description sent as null is cleared.
    New dates must still contain every existing term of the session.
    """
    async with atomic(db, _session_integrity_error):
        session = await load_academic_session(db, session_id, school_id, for_update=True)

        provided = payload.model_fields_set
        name = _clean_name(payload.name) if payload.name is not None else session.name
        description = payload.description if "description" in provided else session.description
        start_date = payload.start_date if payload.start_date is not None else session.start_date
        end_date = payload.end_date if payload.end_date is not None else session.end_date

        _validate_dates(start_date, end_date)

        if name != session.name and await _name_taken(db, session.school_id, name, exclude_id=session.id):
            raise ConflictError(DUPLICATE_NAME)

        if start_date != session.start_date or end_date != session.end_date:
            outside = await db.execute(
                select(func.count(Term.id)).where(
                    Term.academic_session_id == session.id,
                    or_(Term.start_date < start_date, Term.end_date > end_date),
                )
            )
            outside_count = outside.scalar_one()
            if outside_count > 0:
                raise ValidationError(
                    f"Cannot change session dates: {outside_count} existing term(s) would fall "
                    f"outside the new range ({start_date} to {end_date})"
                )

        session.name = name
        session.description = description
        session.start_date = start_date
        session.end_date = end_date
    await db.refresh(session)
    return _to_response(session)


async def delete_academic_session(
    db: AsyncSession,
    session_id: UUID,
    school_id: Optional[UUID] = None,
) -> None:
    """Hard delete. Blocked while the session still has terms."""
    async with atomic(db, _delete_integrity_error):
        session = await load_academic_session(db, session_id, school_id, for_update=True)
        term_count = await _count_terms(db, session.id)
        if term_count > 0:
            raise ConflictError(
                f"Cannot delete an academic session that still has terms ({term_count}); delete its terms first"
            )
        await db.delete(session)
    logger.info("Deleted academic session %s", session_id)


async def activate_academic_session(
    db: AsyncSession,
    session_id: UUID,
    school_id: Optional[UUID] = None,
) -> AcademicSessionResponse:
    """Make this the school's only active session. Every other session of the school is deactivated,
    and loses its current term, in the same transaction."""
    async with atomic(db, _session_integrity_error):
        owner = await db.execute(
            _scoped(select(AcademicSession.school_id).where(AcademicSession.id == session_id), school_id)
        )
        owner_school_id = owner.scalar_one_or_none()
        if owner_school_id is None:
            raise NotFoundError(SESSION_NOT_FOUND)

        # Lock the school's sessions in a fixed order so concurrent activations serialize.
        await db.execute(
            select(AcademicSession.id)
            .where(AcademicSession.school_id == owner_school_id)
            .order_by(AcademicSession.id)
            .with_for_update()
        )
        session = await load_academic_session(db, session_id, school_id, for_update=True)

        # Sessions losing the active flag must not keep a current term.
        others = select(AcademicSession.id).where(
            AcademicSession.school_id == owner_school_id,
            AcademicSession.id != session.id,
        )
        await db.execute(
            update(Term)
            .where(Term.academic_session_id.in_(others), Term.is_current.is_(True))
            .values(is_current=False)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(AcademicSession)
            .where(
                AcademicSession.school_id == owner_school_id,
                AcademicSession.id != session.id,
                AcademicSession.is_active.is_(True),
            )
            .values(is_active=False)
        )
        session.is_active = True
    await db.refresh(session)
    logger.info("Activated academic session %s for school %s", session.id, session.school_id)
    return _to_response(session)


async def deactivate_academic_session(
    db: AsyncSession,
    session_id: UUID,
    school_id: Optional[UUID] = None,
) -> AcademicSessionResponse:
    """Deactivate the session and clear the current flag on all of its terms. Idempotent."""
    async with atomic(db, _session_integrity_error):
        session = await load_academic_session(db, session_id, school_id, for_update=True)
        session.is_active = False
        await db.execute(
            update(Term)
            .where(Term.academic_session_id == session.id, Term.is_current.is_(True))
            .values(is_current=False)
        )
    await db.refresh(session)
    logger.info("Deactivated academic session %s", session.id)
    return _to_response(session)

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.academic_sessions.service import SESSION_NOT_FOUND, load_academic_session
from app.core.exceptions import ConflictError, NotFoundError, ServiceError, ValidationError
from app.core.models import AcademicSession, Term
from app.core.pagination import PaginationParams
from app.db.transaction import atomic, constraint_message, read_only

from .schemas import (
    PaginatedTermsResponse,
    TermCreate,
    TermFilterParams,
    TermResponse,
    TermUpdate,
    TermWithSessionResponse,
)

logger = logging.getLogger(__name__)

TERM_NOT_FOUND = "Term not found"
DUPLICATE_NAME = "A term with this name already exists in this session"
DUPLICATE_SEQUENCE = "A term with this sequence already exists in this session"


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Name must not be blank")
    return name


def _to_response(t: Term) -> TermResponse:
    return TermResponse(
        id=t.id,
        academic_session_id=t.academic_session_id,
        name=t.name,
        description=t.description,
        start_date=t.start_date,
        end_date=t.end_date,
        sequence=t.sequence,
        is_current=t.is_current,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def _to_session_response(t: Term, session_name: str, school_id: UUID, session_is_active: bool) -> TermWithSessionResponse:
    return TermWithSessionResponse(
        **_to_response(t).model_dump(),
        session_name=session_name,
        school_id=school_id,
        session_is_active=session_is_active,
    )


def _term_integrity_error(e: IntegrityError) -> ServiceError:
    msg = constraint_message(e)
    if "uq_terms_session_name" in msg or "terms.academic_session_id, terms.name" in msg:
        return ConflictError(DUPLICATE_NAME)
    if "uq_terms_session_sequence" in msg or "terms.academic_session_id, terms.sequence" in msg:
        return ConflictError(DUPLICATE_SEQUENCE)
    if "uq_terms_one_current_per_session" in msg or "terms.academic_session_id" in msg:
        return ConflictError("Another term is already current in this session")
    if "ex_terms_no_overlap" in msg:
        return ValidationError("Term dates overlap with an existing term in this session")
    if "ck_terms_dates" in msg:
        return ValidationError("Start date must be before end date")
    if "foreign key" in msg.lower():
        return NotFoundError(SESSION_NOT_FOUND)
    return ConflictError("Term conflicts with existing data")


def _with_session_columns():
    return select(
        Term,
        AcademicSession.name,
        AcademicSession.school_id,
        AcademicSession.is_active,
    ).join(AcademicSession, AcademicSession.id == Term.academic_session_id)


def _scoped(stmt, school_id: Optional[UUID]):
    """Terms inherit school scope from their session; the statement must join academic_sessions."""
    if school_id is not None:
        stmt = stmt.where(AcademicSession.school_id == school_id)
    return stmt


def dates_overlap(start1: date, end1: date, start2: date, end2: date) -> bool:
    """Half-open [start, end) overlap test."""
    return start1 < end2 and start2 < end1


async def _validate_term_dates(
    db: AsyncSession,
    session: AcademicSession,
    start_date: date,
    end_date: date,
    exclude_term_id: Optional[UUID] = None,
) -> None:
    """Order, containment in the session range, and no overlap with sibling terms."""
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date")

    if start_date < session.start_date or end_date > session.end_date:
        raise ValidationError(
            f"Term dates fall outside the academic session range "
            f"({session.start_date} to {session.end_date})"
        )

    stmt = select(Term).where(
        Term.academic_session_id == session.id,
        Term.start_date < end_date,
        Term.end_date > start_date,
    )
    if exclude_term_id is not None:
        stmt = stmt.where(Term.id != exclude_term_id)
    result = await db.execute(stmt.order_by(Term.sequence).limit(1))
    clash = result.scalar_one_or_none()
    if clash is not None:
        raise ValidationError(
            f"Term dates overlap with existing term: {clash.name} ({clash.start_date} to {clash.end_date})"
        )


async def _check_unique(
    db: AsyncSession,
    session_id: UUID,
    name: Optional[str] = None,
    sequence: Optional[int] = None,
    exclude_term_id: Optional[UUID] = None,
) -> None:
    base = select(Term.id).where(Term.academic_session_id == session_id)
    if exclude_term_id is not None:
        base = base.where(Term.id != exclude_term_id)
    if name is not None:
        taken = await db.execute(base.where(Term.name == name).limit(1))
        if taken.scalar_one_or_none() is not None:
            raise ConflictError(DUPLICATE_NAME)
    if sequence is not None:
        taken = await db.execute(base.where(Term.sequence == sequence).limit(1))
        if taken.scalar_one_or_none() is not None:
            raise ConflictError(DUPLICATE_SEQUENCE)


async def _next_sequence(db: AsyncSession, session_id: UUID) -> int:
    result = await db.execute(select(func.max(Term.sequence)).where(Term.academic_session_id == session_id))
    return (result.scalar_one_or_none() or 0) + 1


async def _term_session_id(db: AsyncSession, term_id: UUID, school_id: Optional[UUID]) -> UUID:
    """Parent session id of a term in scope; NotFoundError otherwise."""
    stmt = _scoped(
        select(Term.academic_session_id)
        .join(AcademicSession, AcademicSession.id == Term.academic_session_id)
        .where(Term.id == term_id),
        school_id,
    )
    result = await db.execute(stmt)
    session_id = result.scalar_one_or_none()
    if session_id is None:
        raise NotFoundError(TERM_NOT_FOUND)
    return session_id


async def _load_term(db: AsyncSession, term_id: UUID) -> Term:
    result = await db.execute(
        select(Term).where(Term.id == term_id).execution_options(populate_existing=True)
    )
    term = result.scalar_one_or_none()
    if term is None:
        raise NotFoundError(TERM_NOT_FOUND)
    return term


async def create_term(
    db: AsyncSession,
    session_id: UUID,
    payload: TermCreate,
    school_id: Optional[UUID] = None,
) -> TermResponse:
    """Create a term within a session. sequence defaults to max(sequence) + 1."""
    name = _clean_name(payload.name)
    async with atomic(db, _term_integrity_error):
        # The parent row lock serializes term writes per session, so the checks below stay valid until commit.
        session = await load_academic_session(db, session_id, school_id, for_update=True)
        await _validate_term_dates(db, session, payload.start_date, payload.end_date)
        await _check_unique(db, session.id, name=name, sequence=payload.sequence)

        sequence = payload.sequence if payload.sequence is not None else await _next_sequence(db, session.id)
        term = Term(
            academic_session_id=session.id,
            name=name,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            sequence=sequence,
            is_current=False,
        )
        db.add(term)
    await db.refresh(term)
    return _to_response(term)


async def list_terms(
    db: AsyncSession,
    session_id: UUID,
    filters: TermFilterParams,
    pagination: PaginationParams,
    school_id: Optional[UUID] = None,
) -> PaginatedTermsResponse:
    """List a session's terms in sequence order."""
    conditions = [Term.academic_session_id == session_id]
    if filters.is_current is not None:
        conditions.append(Term.is_current.is_(filters.is_current))

    async with read_only(db):
        await load_academic_session(db, session_id, school_id)

        total_result = await db.execute(select(func.count(Term.id)).where(*conditions))
        total = total_result.scalar_one()

        result = await db.execute(
            select(Term)
            .where(*conditions)
            .order_by(Term.sequence.asc())
            .offset(pagination.resolved_offset())
            .limit(pagination.resolved_limit())
        )
        terms = result.scalars().all()
    data = [_to_response(t) for t in terms]
    return PaginatedTermsResponse(data=data, meta=pagination.meta(total))


async def get_term(
    db: AsyncSession,
    term_id: UUID,
    school_id: Optional[UUID] = None,
) -> TermWithSessionResponse:
    """Get a term with its session's name, school and active flag."""
    async with read_only(db):
        result = await db.execute(_scoped(_with_session_columns().where(Term.id == term_id), school_id))
        row = result.one_or_none()
    if row is None:
        raise NotFoundError(TERM_NOT_FOUND)
    return _to_session_response(*row)


async def get_current_term(
    db: AsyncSession,
    school_id: UUID,
) -> Optional[TermWithSessionResponse]:
    """Current term of the school's active session, or None."""
    async with read_only(db):
        result = await db.execute(
            _with_session_columns().where(
                AcademicSession.school_id == school_id,
                AcademicSession.is_active.is_(True),
                Term.is_current.is_(True),
            )
        )
        row = result.one_or_none()
    return _to_session_response(*row) if row else None


async def update_term(
    db: AsyncSession,
    term_id: UUID,
    payload: TermUpdate,
    school_id: Optional[UUID] = None,
) -> TermResponse:
    """Partial update; dates are re-validated against the session and every other term."""
    async with atomic(db, _term_integrity_error):
        session_id = await _term_session_id(db, term_id, school_id)
        session = await load_academic_session(db, session_id, None, for_update=True)
        term = await _load_term(db, term_id)

        provided = payload.model_fields_set
        name = _clean_name(payload.name) if payload.name is not None else term.name
        description = payload.description if "description" in provided else term.description
        start_date = payload.start_date if payload.start_date is not None else term.start_date
        end_date = payload.end_date if payload.end_date is not None else term.end_date
        sequence = payload.sequence if payload.sequence is not None else term.sequence

        await _validate_term_dates(db, session, start_date, end_date, exclude_term_id=term.id)
        await _check_unique(
            db,
            session.id,
            name=name if name != term.name else None,
            sequence=sequence if sequence != term.sequence else None,
            exclude_term_id=term.id,
        )

        term.name = name
        term.description = description
        term.start_date = start_date
        term.end_date = end_date
        term.sequence = sequence
    await db.refresh(term)
    return _to_response(term)


async def delete_term(
    db: AsyncSession,
    term_id: UUID,
    school_id: Optional[UUID] = None,
) -> None:
    """Hard delete a term."""
    async with atomic(db, _term_integrity_error):
        session_id = await _term_session_id(db, term_id, school_id)
        await load_academic_session(db, session_id, None, for_update=True)
        term = await _load_term(db, term_id)
        await db.delete(term)
    logger.info("Deleted term %s from academic session %s", term_id, session_id)


async def set_current_term(
    db: AsyncSession,
    term_id: UUID,
    school_id: Optional[UUID] = None,
) -> TermResponse:
    """
    Mark the term as current. Any other current term in the same session is cleared
    in the same transaction. The parent session must be active.
    """
    async with atomic(db, _term_integrity_error):
        session_id = await _term_session_id(db, term_id, school_id)
        # Lock and re-read the session so a concurrent deactivate cannot slip in between check and write.
        session = await load_academic_session(db, session_id, None, for_update=True)
        if not session.is_active:
            raise ValidationError("Cannot set current term: the academic session is not active")

        await db.execute(
            update(Term)
            .where(
                Term.academic_session_id == session.id,
                Term.id != term_id,
                Term.is_current.is_(True),
            )
            .values(is_current=False)
        )
        term = await _load_term(db, term_id)
        term.is_current = True
    await db.refresh(term)
    logger.info("Set term %s as current for academic session %s", term.id, term.academic_session_id)
    return _to_response(term)

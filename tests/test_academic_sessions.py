import asyncio
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import event, func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.v1.academic_sessions import service
from app.api.v1.academic_sessions.schemas import (
    AcademicSessionCreate,
    AcademicSessionFilterParams,
    AcademicSessionUpdate,
)
from app.api.v1.terms import service as term_service
from app.api.v1.terms.schemas import TermCreate
from app.core.exceptions import ConflictError, InternalError, NotFoundError, ServiceError, ValidationError
from app.core.models import AcademicSession, School
from app.core.pagination import PaginationParams
from app.db.session import Base


async def _active_count(db: AsyncSession, school_id) -> int:
    result = await db.execute(
        select(func.count(AcademicSession.id)).where(
            AcademicSession.school_id == school_id,
            AcademicSession.is_active.is_(True),
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_create_session_starts_inactive(db_session: AsyncSession, school_id) -> None:
    created = await service.create_academic_session(
        db_session,
        school_id,
        AcademicSessionCreate(
            name="2025-2026",
            description="Main school year",
            start_date=date(2025, 9, 1),
            end_date=date(2026, 6, 30),
        ),
    )

    assert created.is_active is False
    assert created.school_id == school_id

    fetched = await service.get_academic_session(db_session, created.id, school_id)
    assert fetched.name == "2025-2026"
    assert fetched.description == "Main school year"
    assert fetched.start_date == date(2025, 9, 1)
    assert fetched.end_date == date(2026, 6, 30)
    assert fetched.term_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("end_date", [date(2025, 9, 1), date(2025, 8, 1)])
async def test_create_session_rejects_bad_dates(db_session: AsyncSession, school_id, end_date) -> None:
    with pytest.raises(ValidationError):
        await service.create_academic_session(
            db_session,
            school_id,
            AcademicSessionCreate(name="Bad", start_date=date(2025, 9, 1), end_date=end_date),
        )


@pytest.mark.asyncio
async def test_create_session_duplicate_name_is_conflict(db_session: AsyncSession, school_id, make_session) -> None:
    await make_session(name="2025-2026")
    with pytest.raises(ConflictError) as exc_info:
        await make_session(name="2025-2026")
    assert "already exists" in exc_info.value.message


@pytest.mark.asyncio
async def test_same_name_allowed_in_other_school(db_session: AsyncSession, make_school, make_session) -> None:
    other_school = await make_school()
    await make_session(name="2025-2026")
    other_id = await make_session(name="2025-2026", for_school=other_school)

    fetched = await service.get_academic_session(db_session, other_id, other_school)
    assert fetched.school_id == other_school


@pytest.mark.asyncio
async def test_get_session_out_of_scope_is_not_found(db_session: AsyncSession, make_school, make_session) -> None:
    session_id = await make_session()
    other_school = await make_school()

    with pytest.raises(NotFoundError):
        await service.get_academic_session(db_session, session_id, other_school)
    with pytest.raises(NotFoundError):
        await service.get_academic_session(db_session, uuid4(), None)

    # Unscoped callers see every school's sessions
    fetched = await service.get_academic_session(db_session, session_id, None)
    assert fetched.id == session_id


@pytest.mark.asyncio
async def test_list_sessions_orders_by_start_date_desc_with_term_count(
    db_session: AsyncSession, school_id, make_session
) -> None:
    old_id = await make_session(name="2024-2025", start_date=date(2024, 9, 1), end_date=date(2025, 6, 30))
    new_id = await make_session(name="2025-2026")
    await term_service.create_term(
        db_session,
        new_id,
        TermCreate(name="First Term", start_date=date(2025, 9, 1), end_date=date(2025, 12, 20)),
    )

    page = await service.list_academic_sessions(
        db_session, school_id, AcademicSessionFilterParams(), PaginationParams()
    )

    assert [s.id for s in page.data] == [new_id, old_id]
    assert page.data[0].term_count == 1
    assert page.data[1].term_count == 0
    assert page.meta.total == 2
    assert page.meta.has_more is False


@pytest.mark.asyncio
async def test_list_sessions_filters_and_paginates(db_session: AsyncSession, school_id, make_session) -> None:
    ids = []
    for year in range(2020, 2025):
        ids.append(
            await make_session(
                name=f"{year}-{year + 1}", start_date=date(year, 9, 1), end_date=date(year + 1, 6, 30)
            )
        )
    await service.activate_academic_session(db_session, ids[2], school_id)

    first_page = await service.list_academic_sessions(
        db_session, school_id, AcademicSessionFilterParams(), PaginationParams(limit=2)
    )
    assert first_page.meta.total == 5
    assert first_page.meta.has_more is True
    assert len(first_page.data) == 2

    last_page = await service.list_academic_sessions(
        db_session, school_id, AcademicSessionFilterParams(), PaginationParams(limit=2, page=3)
    )
    assert last_page.meta.offset == 4
    assert last_page.meta.has_more is False
    assert [s.id for s in last_page.data] == [ids[0]]

    active_only = await service.list_academic_sessions(
        db_session, school_id, AcademicSessionFilterParams(is_active=True), PaginationParams()
    )
    assert [s.id for s in active_only.data] == [ids[2]]


@pytest.mark.asyncio
async def test_update_merges_fields_and_clears_description(db_session: AsyncSession, school_id) -> None:
    created = await service.create_academic_session(
        db_session,
        school_id,
        AcademicSessionCreate(
            name="2025-2026", description="Draft", start_date=date(2025, 9, 1), end_date=date(2026, 6, 30)
        ),
    )

    renamed = await service.update_academic_session(
        db_session, created.id, AcademicSessionUpdate(name="2025/26"), school_id
    )
    assert renamed.name == "2025/26"
    assert renamed.description == "Draft"
    assert renamed.end_date == date(2026, 6, 30)

    cleared = await service.update_academic_session(
        db_session, created.id, AcademicSessionUpdate(description=None), school_id
    )
    assert cleared.description is None
    assert cleared.name == "2025/26"


@pytest.mark.asyncio
async def test_update_validates_merged_dates(db_session: AsyncSession, school_id, make_session) -> None:
    session_id = await make_session()
    with pytest.raises(ValidationError):
        await service.update_academic_session(
            db_session, session_id, AcademicSessionUpdate(start_date=date(2026, 7, 1)), school_id
        )

    fetched = await service.get_academic_session(db_session, session_id, school_id)
    assert fetched.start_date == date(2025, 9, 1)


@pytest.mark.asyncio
async def test_update_rejects_range_that_orphans_terms(db_session: AsyncSession, school_id, make_session) -> None:
    session_id = await make_session()
    await term_service.create_term(
        db_session,
        session_id,
        TermCreate(name="Third Term", start_date=date(2026, 4, 1), end_date=date(2026, 6, 30)),
    )

    with pytest.raises(ValidationError) as exc_info:
        await service.update_academic_session(
            db_session, session_id, AcademicSessionUpdate(end_date=date(2026, 5, 31)), school_id
        )
    assert "outside" in exc_info.value.message

    widened = await service.update_academic_session(
        db_session, session_id, AcademicSessionUpdate(end_date=date(2026, 7, 31)), school_id
    )
    assert widened.end_date == date(2026, 7, 31)


@pytest.mark.asyncio
async def test_update_name_collision_is_conflict(db_session: AsyncSession, school_id, make_session) -> None:
    await make_session(name="2024-2025", start_date=date(2024, 9, 1), end_date=date(2025, 6, 30))
    session_id = await make_session(name="2025-2026")

    with pytest.raises(ConflictError):
        await service.update_academic_session(
            db_session, session_id, AcademicSessionUpdate(name="2024-2025"), school_id
        )


@pytest.mark.asyncio
async def test_activate_switches_active_session(db_session: AsyncSession, school_id, make_session) -> None:
    s1 = await make_session(name="2024-2025", start_date=date(2024, 9, 1), end_date=date(2025, 6, 30))
    s2 = await make_session(name="2025-2026")

    await service.activate_academic_session(db_session, s1, school_id)
    activated = await service.activate_academic_session(db_session, s2, school_id)

    assert activated.is_active is True
    assert (await service.get_academic_session(db_session, s1, school_id)).is_active is False
    assert (await service.get_academic_session(db_session, s2, school_id)).is_active is True
    assert await _active_count(db_session, school_id) == 1

    active = await service.get_active_academic_session(db_session, school_id)
    assert active is not None and active.id == s2


@pytest.mark.asyncio
async def test_activate_does_not_touch_other_schools(db_session: AsyncSession, school_id, make_school, make_session) -> None:
    other_school = await make_school()
    mine = await make_session()
    theirs = await make_session(for_school=other_school)

    await service.activate_academic_session(db_session, theirs, other_school)
    await service.activate_academic_session(db_session, mine, school_id)

    assert (await service.get_academic_session(db_session, theirs, None)).is_active is True
    assert await _active_count(db_session, other_school) == 1


@pytest.mark.asyncio
async def test_activate_out_of_scope_is_not_found(db_session: AsyncSession, make_school, make_session) -> None:
    session_id = await make_session()
    other_school = await make_school()

    with pytest.raises(NotFoundError):
        await service.activate_academic_session(db_session, session_id, other_school)
    with pytest.raises(NotFoundError):
        await service.activate_academic_session(db_session, uuid4(), None)


@pytest.mark.asyncio
async def test_get_active_returns_none_when_nothing_active(db_session: AsyncSession, school_id, make_session) -> None:
    await make_session()
    assert await service.get_active_academic_session(db_session, school_id) is None


@pytest.mark.asyncio
async def test_deactivate_clears_current_term_and_is_idempotent(
    db_session: AsyncSession, school_id, make_session
) -> None:
    session_id = await make_session()
    term = await term_service.create_term(
        db_session,
        session_id,
        TermCreate(name="First Term", start_date=date(2025, 9, 1), end_date=date(2025, 12, 20)),
    )
    await service.activate_academic_session(db_session, session_id, school_id)
    await term_service.set_current_term(db_session, term.id, school_id)

    first = await service.deactivate_academic_session(db_session, session_id, school_id)
    assert first.is_active is False
    assert (await term_service.get_term(db_session, term.id, school_id)).is_current is False

    second = await service.deactivate_academic_session(db_session, session_id, school_id)
    assert second.is_active is False
    assert (await term_service.get_term(db_session, term.id, school_id)).is_current is False
    assert await service.get_active_academic_session(db_session, school_id) is None


@pytest.mark.asyncio
async def test_delete_session(db_session: AsyncSession, school_id, make_session) -> None:
    session_id = await make_session()
    await service.delete_academic_session(db_session, session_id, school_id)

    with pytest.raises(NotFoundError):
        await service.get_academic_session(db_session, session_id, school_id)
    with pytest.raises(NotFoundError):
        await service.delete_academic_session(db_session, session_id, school_id)


@pytest.mark.asyncio
async def test_delete_session_with_terms_is_blocked(db_session: AsyncSession, school_id, make_session) -> None:
    session_id = await make_session()
    term = await term_service.create_term(
        db_session,
        session_id,
        TermCreate(name="First Term", start_date=date(2025, 9, 1), end_date=date(2025, 12, 20)),
    )

    with pytest.raises(ConflictError):
        await service.delete_academic_session(db_session, session_id, school_id)

    await term_service.delete_term(db_session, term.id, school_id)
    await service.delete_academic_session(db_session, session_id, school_id)


@pytest.mark.asyncio
async def test_delete_out_of_scope_is_not_found(db_session: AsyncSession, make_school, make_session) -> None:
    session_id = await make_session()
    other_school = await make_school()

    with pytest.raises(NotFoundError):
        await service.delete_academic_session(db_session, session_id, other_school)
    assert (await service.get_academic_session(db_session, session_id, None)).id == session_id


@pytest.mark.asyncio
async def test_store_rejects_second_active_session(db_session: AsyncSession, school_id) -> None:
    """The partial unique index backs the single-active rule even when the service is bypassed."""
    db_session.add_all(
        [
            AcademicSession(
                school_id=school_id, name="A", start_date=date(2024, 9, 1), end_date=date(2025, 6, 30), is_active=True
            ),
            AcademicSession(
                school_id=school_id, name="B", start_date=date(2025, 9, 1), end_date=date(2026, 6, 30), is_active=True
            ),
        ]
    )
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()

    assert await _active_count(db_session, school_id) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["   ", "\t\n"])
async def test_blank_session_name_is_rejected(db_session: AsyncSession, school_id, make_session, name) -> None:
    with pytest.raises(ValidationError):
        await service.create_academic_session(
            db_session,
            school_id,
            AcademicSessionCreate(name=name, start_date=date(2025, 9, 1), end_date=date(2026, 6, 30)),
        )

    session_id = await make_session()
    with pytest.raises(ValidationError):
        await service.update_academic_session(db_session, session_id, AcademicSessionUpdate(name=name), school_id)

    fetched = await service.get_academic_session(db_session, session_id, school_id)
    assert fetched.name == "2025-2026"


@pytest.mark.asyncio
async def test_read_failures_surface_as_internal_error(db_session: AsyncSession, school_id, make_session) -> None:
    session_id = await make_session()
    await db_session.execute(text("DROP TABLE terms"))
    await db_session.commit()

    with pytest.raises(InternalError):
        await service.list_academic_sessions(
            db_session, school_id, AcademicSessionFilterParams(), PaginationParams()
        )
    with pytest.raises(InternalError):
        await service.get_academic_session(db_session, session_id, school_id)
    with pytest.raises(InternalError):
        await service.get_active_academic_session(db_session, school_id)


@pytest.mark.asyncio
async def test_concurrent_activations_leave_one_active(tmp_path) -> None:
    """
    Two activations race on separate connections to a file database.

    SQLite ignores FOR UPDATE and serializes writers per file, so this covers the
    outcome (exactly one active session) rather than the PostgreSQL row locks.
    A writer that loses the file lock fails as InternalError and commits nothing.
    """
    file_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'calendar.db'}")

    @event.listens_for(file_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    make_db = async_sessionmaker(bind=file_engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with make_db() as setup:
            school = School(id=uuid4(), name="Riverside")
            setup.add(school)
            await setup.commit()
            first = await service.create_academic_session(
                setup,
                school.id,
                AcademicSessionCreate(name="2024-2025", start_date=date(2024, 9, 1), end_date=date(2025, 6, 30)),
            )
            second = await service.create_academic_session(
                setup,
                school.id,
                AcademicSessionCreate(name="2025-2026", start_date=date(2025, 9, 1), end_date=date(2026, 6, 30)),
            )

        async def _activate(session_id):
            async with make_db() as db:
                return await service.activate_academic_session(db, session_id, school.id)

        results = await asyncio.gather(_activate(first.id), _activate(second.id), return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                assert isinstance(outcome, ServiceError)

        async with make_db() as check:
            assert await _active_count(check, school.id) == 1
    finally:
        await file_engine.dispose()

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from datetime import date
from typing import AsyncGenerator, Awaitable, Callable, Dict, Optional
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.academic_sessions import service as session_service
from app.api.v1.academic_sessions.schemas import AcademicSessionCreate
from app.auth.security import create_access_token
from app.core.models import School
from app.db.session import Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test. StaticPool keeps the single connection alive."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override the FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def make_school(db_session: AsyncSession) -> Callable[..., Awaitable[UUID]]:
    """Insert a school and return its id (plain UUID, safe to keep across rollbacks)."""

    async def _make(name: Optional[str] = None) -> UUID:
        school = School(id=uuid.uuid4(), name=name or f"School {uuid.uuid4().hex[:8]}")
        db_session.add(school)
        await db_session.commit()
        return school.id

    return _make


@pytest.fixture()
async def school_id(make_school) -> UUID:
    return await make_school("Greenfield High")


@pytest.fixture()
def make_session(db_session: AsyncSession, school_id: UUID):
    """Create an academic session (default 2025-09-01 to 2026-06-30) and return its id."""

    async def _make(
        name: str = "2025-2026",
        start_date: date = date(2025, 9, 1),
        end_date: date = date(2026, 6, 30),
        for_school: Optional[UUID] = None,
    ) -> UUID:
        created = await session_service.create_academic_session(
            db_session,
            for_school or school_id,
            AcademicSessionCreate(name=name, start_date=start_date, end_date=end_date),
        )
        return created.id

    return _make


def _auth_headers(
    role: str = "SCHOOL_ADMIN",
    school_id: Optional[UUID] = None,
    permissions: Optional[Dict[str, Dict[str, bool]]] = None,
) -> Dict[str, str]:
    """Bearer header for a caller. Default permissions grant full access to sessions and terms."""
    if permissions is None:
        full = {"create": True, "read": True, "update": True, "delete": True}
        permissions = {"academic_sessions": dict(full), "terms": dict(full)}
    payload = {
        "sub": str(uuid.uuid4()),
        "role": role,
        "permissions": permissions,
    }
    if school_id is not None:
        payload["school_id"] = str(school_id)
    token = create_access_token(subject=payload)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers() -> Callable[..., Dict[str, str]]:
    return _auth_headers

"""
Migration: create academic_sessions and terms (PostgreSQL).

- One active session per school: partial unique index on academic_sessions(school_id) WHERE is_active.
- One current term per session: partial unique index on terms(academic_session_id) WHERE is_current.
- Terms of a session never overlap: exclusion constraint on daterange(start_date, end_date, '[)').
- Deleting a session with terms is refused (ON DELETE RESTRICT).

Run once:
  python -m app.db.migrations.001_create_academic_calendar

Idempotent; safe to re-run.
"""
import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import settings
from app.core.logging import configure_logging
from app.db.session import engine

logger = logging.getLogger(__name__)


STATEMENTS = [
    "CREATE EXTENSION IF NOT EXISTS btree_gist;",
    """
    CREATE TABLE IF NOT EXISTS schools (
        id UUID PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS academic_sessions (
        id UUID PRIMARY KEY,
        school_id UUID NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
        name VARCHAR(100) NOT NULL,
        description TEXT,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_academic_sessions_school_name UNIQUE (school_id, name),
        CONSTRAINT ck_academic_sessions_dates CHECK (start_date < end_date)
    );
    """,
    "CREATE INDEX IF NOT EXISTS ix_academic_sessions_school_id ON academic_sessions(school_id);",
    "CREATE INDEX IF NOT EXISTS ix_academic_sessions_dates ON academic_sessions(start_date, end_date);",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_academic_sessions_one_active_per_school
        ON academic_sessions(school_id) WHERE is_active;
    """,
    """
    CREATE TABLE IF NOT EXISTS terms (
        id UUID PRIMARY KEY,
        academic_session_id UUID NOT NULL REFERENCES academic_sessions(id) ON DELETE RESTRICT,
        name VARCHAR(100) NOT NULL,
        description TEXT,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        sequence INT NOT NULL DEFAULT 1,
        is_current BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_terms_session_name UNIQUE (academic_session_id, name),
        CONSTRAINT uq_terms_session_sequence UNIQUE (academic_session_id, sequence),
        CONSTRAINT ck_terms_dates CHECK (start_date < end_date)
    );
    """,
    "CREATE INDEX IF NOT EXISTS ix_terms_academic_session_id ON terms(academic_session_id);",
    "CREATE INDEX IF NOT EXISTS ix_terms_dates ON terms(start_date, end_date);",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_terms_one_current_per_session
        ON terms(academic_session_id) WHERE is_current;
    """,
    """
    DO $$
    BEGIN
        IF NOT EXISTS (
            SELECT 1 FROM pg_constraint WHERE conname = 'ex_terms_no_overlap'
        ) THEN
            ALTER TABLE terms ADD CONSTRAINT ex_terms_no_overlap
                EXCLUDE USING gist (
                    academic_session_id WITH =,
                    daterange(start_date, end_date, '[)') WITH &&
                );
        END IF;
    END $$;
    """,
]


async def run_migration(db_engine: AsyncEngine) -> None:
    async with db_engine.begin() as conn:
        for statement in STATEMENTS:
            await conn.execute(text(statement))
    logger.info("Migration 001_create_academic_calendar done.")


if __name__ == "__main__":
    configure_logging(settings.log_level)
    asyncio.run(run_migration(engine))

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InternalError, ServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(
    db: AsyncSession,
    on_integrity_error: Callable[[IntegrityError], ServiceError],
) -> AsyncIterator[AsyncSession]:
    """
    Run one read-validate-write unit and commit it at the end of the block.

    Any error (service validation, constraint violation, driver failure, cancellation)
    rolls the whole unit back so no partial state is ever committed. Constraint violations
    are translated with on_integrity_error; other database failures become InternalError.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise on_integrity_error(e) from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Database write failed")
        raise InternalError() from e
    except BaseException:
        await db.rollback()
        raise


@asynccontextmanager
async def read_only(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run queries that write nothing. Database failures are rolled back and surface as InternalError."""
    try:
        yield db
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Database read failed")
        raise InternalError() from e


def constraint_message(e: IntegrityError) -> str:
    """Driver message for an IntegrityError; carries the constraint name (PostgreSQL) or columns (SQLite)."""
    return str(e.orig) if e.orig is not None else str(e)

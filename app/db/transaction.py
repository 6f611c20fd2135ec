import logging
from typing import Awaitable, Callable, Type

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError, UnavailableError

logger = logging.getLogger(__name__)


async def _run_or_raise(
    db: AsyncSession,
    operation: Callable[[], Awaitable[None]],
    conflict_message: str,
    conflict_error: Type[ConflictError],
) -> None:
    try:
        await operation()
    except (StaleDataError, IntegrityError) as e:
        await db.rollback()
        logger.warning("Write conflict: %s", e)
        raise conflict_error(conflict_message) from e
    except OperationalError as e:
        await db.rollback()
        logger.error("Database unavailable: %s", e)
        raise UnavailableError() from e
    except DBAPIError as e:
        await db.rollback()
        if e.connection_invalidated:
            logger.error("Database connection lost: %s", e)
            raise UnavailableError() from e
        raise


async def commit_or_raise(
    db: AsyncSession,
    conflict_message: str = "Record was modified concurrently; retry",
    conflict_error: Type[ConflictError] = ConflictError,
) -> None:
    """
    Commit the unit of work. On failure the session is rolled back and the error is
    mapped: lost updates / constraint violations -> ConflictError, lost connection -> UnavailableError.
    """
    await _run_or_raise(db, db.commit, conflict_message, conflict_error)


async def flush_or_raise(
    db: AsyncSession,
    conflict_message: str = "Record was modified concurrently; retry",
    conflict_error: Type[ConflictError] = ConflictError,
) -> None:
    """Flush pending writes mid-operation (e.g. to get generated ids) with the same error mapping as commit."""
    await _run_or_raise(db, db.flush, conflict_message, conflict_error)

"""
Base class for the stats and ranking services.

Services receive the Database's async session factory instead of the
Database itself, so a stats store can be handed to the aggregator on its
own. SQLite reports a locked database as OperationalError while another
connection holds the write lock; execute_with_retry absorbs that with a
short backoff and turns anything it cannot recover from into DatabaseError.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from league.utils.exceptions import DatabaseError

logger = logging.getLogger(__name__)

T = TypeVar('T')

class BaseService:
    """Services sharing a session factory and the retry policy."""

    # Attempts for a unit of work that keeps hitting a locked database
    MAX_RETRIES = 3

    def __init__(self, session_factory):
        """
        Args:
            session_factory: Database.async_session
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits when the block succeeds and rolls back otherwise."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def execute_with_retry(self, func: Callable[[], Awaitable[T]],
                                 operation: str = None,
                                 max_retries: int = None) -> T:
        """
        Run one unit of work, retrying it while the database is locked.

        `func` must open its own session so every attempt starts a fresh
        transaction. Domain exceptions pass through untouched.

        Raises:
            DatabaseError: When retries run out, or on a non-transient
                SQLAlchemy error
        """
        operation = operation or func.__name__
        max_retries = max_retries or self.MAX_RETRIES

        for attempt in range(max_retries):
            try:
                return await func()
            except OperationalError as e:
                if attempt == max_retries - 1:
                    logger.error(f"{operation} failed after {max_retries} attempts: {e}")
                    raise DatabaseError(operation, str(e)) from e
                logger.warning(f"Retry attempt {attempt + 1} for {operation}: {e}")
                await asyncio.sleep(0.1 * (2 ** attempt))
            except SQLAlchemyError as e:
                logger.error(f"{operation} failed: {e}")
                raise DatabaseError(operation, str(e)) from e

"""Transaction management for async database operations.

Provides context managers for handling database transactions with
proper commit/rollback semantics. Callers pass the session factory they
own; nothing here reaches for a global engine.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for one database transaction.

    Commits when the block exits cleanly and rolls back on any exception,
    including cancellation, so a timed-out request never leaves partial
    row state behind.

    Usage:
        async with transaction(session_factory) as session:
            session.add(row)

    Yields:
        AsyncSession: Database session with an open transaction.
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
        logger.debug("Transaction committed")
    except BaseException as exc:
        await session.rollback()
        logger.debug(f"Transaction rolled back due to: {type(exc).__name__}")
        raise
    finally:
        await session.close()


@asynccontextmanager
async def read_only_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for read-only database operations.

    The session always rolls back at the end, so nothing is persisted.
    Loaded rows are detached first and stay readable after the block.

    Usage:
        async with read_only_session(session_factory) as session:
            result = await session.execute(select(Model))

    Yields:
        AsyncSession: Read-only database session.
    """
    session = session_factory()
    try:
        yield session
    finally:
        # A rollback expires every instance still attached to the session
        session.expunge_all()
        await session.rollback()
        await session.close()

"""
Shared transaction runner for the RBAC services.

Wraps ``database.transaction`` so every service turns SQLAlchemy failures
into ``StorageFailure`` the same way: rolled back, logged with context, and
surfaced without internal detail.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.transaction import read_only_session, transaction

from .errors import RBACError, StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def storage_failure(operation: str, context: Optional[Dict[str, Any]] = None) -> StorageFailure:
    """Log the active exception and build the caller-facing error."""
    context = context or {}
    logger.error(
        f"Storage failure during {operation}",
        extra={"operation": operation, **context},
        exc_info=True,
    )
    return StorageFailure(operation)


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    work: Callable[[AsyncSession], Awaitable[T]],
    context: Optional[Dict[str, Any]] = None,
    retry_on_conflict: bool = False,
    on_conflict: Optional[Callable[[], RBACError]] = None,
) -> T:
    """
    Run ``work`` inside one transaction.

    Args:
        retry_on_conflict: Re-run the whole transaction once when it fails
            on a unique constraint. ``work`` must look the row up again.
        on_conflict: Builds the error raised for a unique-constraint failure
            that is not retried. Defaults to ``StorageFailure``.
    """
    context = context or {}
    attempts = 2 if retry_on_conflict else 1
    for attempt in range(1, attempts + 1):
        try:
            async with transaction(session_factory) as session:
                return await work(session)
        except IntegrityError as exc:
            if attempt < attempts:
                logger.info(f"{operation}: concurrent write hit a unique constraint, retrying", extra=context)
                continue
            if on_conflict is not None:
                raise on_conflict() from exc
            raise storage_failure(operation, context) from exc
        except SQLAlchemyError as exc:
            raise storage_failure(operation, context) from exc
    raise AssertionError("unreachable")


async def run_read(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    stmt,
    context: Optional[Dict[str, Any]] = None,
) -> List[Any]:
    """Execute a select in a read-only session and return all rows."""
    try:
        async with read_only_session(session_factory) as session:
            return list((await session.execute(stmt)).all())
    except SQLAlchemyError as exc:
        raise storage_failure(operation, context) from exc

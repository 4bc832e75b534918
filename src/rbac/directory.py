"""
Read-only lookups against the external user directory (``users`` table).

The directory is owned by the identity service. Admin screens use the
search to find the user id to assign a role to.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import DirectoryUser

from .storage import run_read

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 3
SEARCH_LIMIT = 20


def directory_user_to_dict(user: DirectoryUser) -> Dict[str, Any]:
    return {
        "user_id": user.user_id,
        "user_email": user.user_email,
        "user_name": user.user_name,
    }


class UserDirectory:
    """Search over directory users by email or name."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def search(self, term: str, limit: int = SEARCH_LIMIT) -> List[Dict[str, Any]]:
        """
        Case-insensitive substring match on email and name, ordered by email.

        Terms shorter than ``MIN_SEARCH_LENGTH`` (after trimming) match
        nothing. ``%`` and ``_`` in the term are matched literally.
        """
        term = term.strip()
        if len(term) < MIN_SEARCH_LENGTH:
            return []

        needle = term.lower()
        stmt = (
            select(DirectoryUser)
            .where(
                or_(
                    func.lower(DirectoryUser.user_email).contains(needle, autoescape=True),
                    func.lower(DirectoryUser.user_name).contains(needle, autoescape=True),
                )
            )
            .order_by(DirectoryUser.user_email, DirectoryUser.user_id)
            .limit(limit)
        )
        rows = await run_read(self._session_factory, "search_users", stmt, context={"term": term})
        logger.debug(f"User search matched {len(rows)} rows", extra={"term": term})
        return [directory_user_to_dict(user) for (user,) in rows]

"""
Role and permission resolution.

Computes a user's current active roles and flattened permission set from
assignments, roles and bindings, reading through the ``ResolutionCache``.

A role resolves for a user when:
- an assignment row for (user, role_name) is active and not past expires_at
- a role with that name exists and is active

A permission resolves when it is reachable from a resolved role through a
binding with ``is_granted`` set, and the permission itself is active.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cache import ResolutionCache
from .models import Permission, Role, RoleAssignment, RolePermission, utcnow
from .storage import run_read

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRole:
    """Immutable snapshot of one active role held by a user."""
    role_id: int
    role_name: str
    role_type: str
    role_category: str
    description: Optional[str]
    assignment_id: int
    assigned_at: datetime
    assigned_by: Optional[int]
    assignment_type: str
    assignment_source: str
    expires_at: Optional[datetime]
    metadata: Optional[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role_id": self.role_id,
            "role_name": self.role_name,
            "role_type": self.role_type,
            "role_category": self.role_category,
            "description": self.description,
            "assignment_id": self.assignment_id,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "assigned_by": self.assigned_by,
            "assignment_type": self.assignment_type,
            "assignment_source": self.assignment_source,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "metadata": dict(self.metadata) if self.metadata else None,
        }


def _active_assignment_clause(user_id: int, now: datetime):
    return and_(
        RoleAssignment.user_id == user_id,
        RoleAssignment.is_active.is_(True),
        or_(RoleAssignment.expires_at.is_(None), RoleAssignment.expires_at > now),
        Role.is_active.is_(True),
    )


def _earliest_expiry(expiries: Iterable[Optional[datetime]]) -> Optional[datetime]:
    return min((e for e in expiries if e is not None), default=None)


class RoleResolver:
    """Read-through resolver for a user's roles and permissions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: ResolutionCache,
        now: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self._now = now

    async def get_roles(self, user_id: int) -> List[ResolvedRole]:
        """Active roles for ``user_id``, ordered by role type then name."""
        now = self._now()
        cached = self.cache.get_roles(user_id, now=now)
        if cached is not None:
            return list(cached)

        logger.debug(f"Role cache miss for user {user_id}")
        version = self.cache.version
        roles = await self._load_roles(user_id, now)
        self.cache.set_roles(
            user_id,
            tuple(roles),
            version=version,
            valid_until=_earliest_expiry(role.expires_at for role in roles),
        )
        return roles

    async def get_permissions(self, user_id: int) -> List[str]:
        """Sorted permission names granted to ``user_id`` through active roles."""
        now = self._now()
        cached = self.cache.get_permissions(user_id, now=now)
        if cached is not None:
            return sorted(cached)

        logger.debug(f"Permission cache miss for user {user_id}")
        version = self.cache.version
        permissions, valid_until = await self._load_permissions(user_id, now)
        self.cache.set_permissions(user_id, frozenset(permissions), version=version, valid_until=valid_until)
        return permissions

    async def get_role_names(self, user_id: int) -> List[str]:
        return [role.role_name for role in await self.get_roles(user_id)]

    async def _load_roles(self, user_id: int, now: datetime) -> List[ResolvedRole]:
        stmt = (
            select(RoleAssignment, Role)
            .join(Role, Role.role_name == RoleAssignment.role_name)
            .where(_active_assignment_clause(user_id, now))
            .order_by(Role.role_type, Role.role_name)
        )
        rows = await run_read(self._session_factory, "resolve_roles", stmt, context={"user_id": user_id})

        return [
            ResolvedRole(
                role_id=role.role_id,
                role_name=role.role_name,
                role_type=role.role_type,
                role_category=role.role_category,
                description=role.description,
                assignment_id=assignment.assignment_id,
                assigned_at=assignment.assigned_at,
                assigned_by=assignment.assigned_by,
                assignment_type=assignment.assignment_type,
                assignment_source=assignment.assignment_source,
                expires_at=assignment.expires_at,
                metadata=dict(assignment.assignment_metadata) if assignment.assignment_metadata else None,
            )
            for assignment, role in rows
        ]

    async def _load_permissions(self, user_id: int, now: datetime) -> Tuple[List[str], Optional[datetime]]:
        """Permission names plus the earliest expiry among the assignments granting them."""
        stmt = (
            select(Permission.permission_name, RoleAssignment.expires_at)
            .select_from(RoleAssignment)
            .join(Role, Role.role_name == RoleAssignment.role_name)
            .join(RolePermission, RolePermission.role_id == Role.role_id)
            .join(Permission, Permission.permission_id == RolePermission.permission_id)
            .where(
                _active_assignment_clause(user_id, now),
                RolePermission.is_granted.is_(True),
                Permission.is_active.is_(True),
            )
        )
        rows = await run_read(self._session_factory, "resolve_permissions", stmt, context={"user_id": user_id})
        names = sorted({name for name, _ in rows})
        return names, _earliest_expiry(expires_at for _, expires_at in rows)

"""
Assignment Engine - the only writer of user role assignments.

Every mutation runs in one database transaction and touches exactly one
(user_id, role_name) pair; the user's other assignments are never read for
update or modified. The resolution cache entry for the user is dropped only
after the transaction commits.

Invariants enforced here:
- At most one row per (user_id, role_name): ``assign`` is an upsert and the
  unique constraint backs it; a concurrent insert that loses the race is
  retried once as an update.
- The baseline role may be deactivated but is never hard-deleted.
- A user's last active role is never hard-deleted.
- Nobody assigns themselves an admin-type role.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from database.models import DirectoryUser
from database.transaction import read_only_session

from .cache import ResolutionCache
from .defaults import BASELINE_ROLE
from .errors import NotFoundError, PolicyViolationError, ValidationError
from .models import AssignmentType, Role, RoleAssignment, RoleType, utcnow
from .storage import run_in_transaction, run_read

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNMENT_SOURCE = "role_service"
DEFAULT_DEACTIVATION_REASON = "Deactivated by admin"
EXPIRATION_REASON = "automatic expiration"
DEFAULT_HISTORY_LIMIT = 50


@dataclass
class AssignmentOptions:
    """Per-call attributes written onto an assignment row."""
    assigned_by: Optional[int] = None
    assignment_type: AssignmentType = AssignmentType.MANUAL
    assignment_source: str = DEFAULT_ASSIGNMENT_SOURCE
    expires_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class AssignmentFilters:
    """Optional filters for ``list_assignments``."""
    user_id: Optional[int] = None
    role_name: Optional[str] = None
    is_active: Optional[bool] = None
    assignment_type: Optional[str] = None
    assignment_source: Optional[str] = None


@dataclass
class ExpirySweepResult:
    """Outcome of one ``expire()`` run."""
    expired: List[RoleAssignment] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.expired)

    @property
    def user_ids(self) -> List[int]:
        return sorted({row.user_id for row in self.expired})


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def assignment_to_dict(row: RoleAssignment) -> Dict[str, Any]:
    """Plain-dict view of an assignment row."""
    return {
        "assignment_id": row.assignment_id,
        "user_id": row.user_id,
        "role_name": row.role_name,
        "is_active": row.is_active,
        "assigned_at": _isoformat(row.assigned_at),
        "assigned_by": row.assigned_by,
        "assignment_type": row.assignment_type,
        "assignment_source": row.assignment_source,
        "expires_at": _isoformat(row.expires_at),
        "metadata": row.assignment_metadata,
        "deactivated_at": _isoformat(row.deactivated_at),
        "deactivated_by": row.deactivated_by,
        "deactivation_reason": row.deactivation_reason,
    }


class AssignmentEngine:
    """
    Transactional assign / deactivate / reactivate / delete / expire.

    Args:
        session_factory: Async session factory owning the connection pool.
        cache: Resolution cache shared with the resolver and the gate.
        baseline_role: Name of the role every user must keep.
        now: Clock returning naive UTC datetimes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: ResolutionCache,
        baseline_role: str = BASELINE_ROLE,
        now: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self.baseline_role = baseline_role
        self._now = now

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def assign(
        self,
        user_id: int,
        role_name: str,
        options: Optional[AssignmentOptions] = None,
    ) -> RoleAssignment:
        """
        Grant ``role_name`` to ``user_id``, or refresh the existing grant.

        An existing row (active or not) is updated in place: it becomes
        active, the assigner, type, source, expiry and metadata are
        overwritten, ``assigned_at`` is refreshed and the deactivation
        record is cleared. Otherwise a new row is inserted.

        Raises:
            ValidationError: missing or malformed identifiers
            NotFoundError: the role does not exist or is inactive
            PolicyViolationError: self-assignment of an admin-type role
        """
        user_id = self._require_user_id(user_id)
        role_name = self._require_role_name(role_name)
        options = options or AssignmentOptions()
        assigned_by = options.assigned_by
        if assigned_by is not None:
            assigned_by = self._require_user_id(assigned_by, field_name="assigned_by")
        try:
            assignment_type = AssignmentType(options.assignment_type).value
        except ValueError:
            raise ValidationError(
                f"Unknown assignment_type: {options.assignment_type}",
                reason="invalid_value",
                details={"field": "assignment_type"},
            )

        async def work(session: AsyncSession) -> Tuple[RoleAssignment, bool, List[str]]:
            role = await self._get_active_role(session, role_name)
            self._check_self_assignment(user_id, assigned_by, role)

            now = self._now()
            row = await self._find_assignment(session, user_id, role_name)
            created = row is None
            if created:
                row = RoleAssignment(user_id=user_id, role_name=role_name)
                session.add(row)

            row.is_active = True
            row.assigned_at = now
            row.assigned_by = assigned_by
            row.assignment_type = assignment_type
            row.assignment_source = options.assignment_source or DEFAULT_ASSIGNMENT_SOURCE
            row.expires_at = options.expires_at
            row.assignment_metadata = dict(options.metadata) if options.metadata is not None else None
            row.clear_deactivation()
            await session.flush()

            active_roles = await self._active_role_names(session, user_id)
            return row, created, active_roles

        row, created, active_roles = await run_in_transaction(
            self._session_factory, "assign", work,
            context={"user_id": user_id, "role_name": role_name},
            retry_on_conflict=True,
        )

        self.cache.invalidate_user(user_id)
        logger.info(
            f"{'Created' if created else 'Updated'} role assignment: user {user_id} -> {role_name}",
            extra={
                "user_id": user_id,
                "role_name": role_name,
                "assigned_by": row.assigned_by,
                "assignment_type": row.assignment_type,
            },
        )
        logger.info(
            f"User {user_id} now has {len(active_roles)} active roles: [{', '.join(active_roles)}]",
            extra={"user_id": user_id, "active_roles": active_roles},
        )
        return row

    async def deactivate(
        self,
        user_id: int,
        role_name: str,
        deactivated_by: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RoleAssignment:
        """
        Soft-remove an active assignment.

        Raises:
            NotFoundError: there is no active row for the pair
        """
        user_id = self._require_user_id(user_id)
        role_name = self._require_role_name(role_name)
        if deactivated_by is not None:
            deactivated_by = self._require_user_id(deactivated_by, field_name="deactivated_by")
        reason = reason or DEFAULT_DEACTIVATION_REASON

        async def work(session: AsyncSession) -> RoleAssignment:
            row = await self._find_assignment(session, user_id, role_name)
            if row is None or not row.is_active:
                raise NotFoundError(
                    f"Active role assignment not found: user {user_id} -> {role_name}",
                    reason="assignment_not_found",
                    details={"user_id": user_id, "role_name": role_name},
                )
            row.is_active = False
            row.deactivated_at = self._now()
            row.deactivated_by = deactivated_by
            row.deactivation_reason = reason
            return row

        row = await run_in_transaction(
            self._session_factory, "deactivate", work, context={"user_id": user_id, "role_name": role_name},
        )

        self.cache.invalidate_user(user_id)
        logger.info(
            f"Role deactivated: user {user_id} -> {role_name}",
            extra={"user_id": user_id, "role_name": role_name, "deactivated_by": deactivated_by, "reason": reason},
        )
        return row

    async def reactivate(
        self,
        user_id: int,
        role_name: str,
        reactivated_by: Optional[int] = None,
    ) -> RoleAssignment:
        """
        Restore an inactive assignment.

        Not idempotent: an already active row is reported as NotFound.

        Raises:
            NotFoundError: there is no inactive row for the pair
            PolicyViolationError: self-reactivation of an admin-type role
        """
        user_id = self._require_user_id(user_id)
        role_name = self._require_role_name(role_name)
        if reactivated_by is not None:
            reactivated_by = self._require_user_id(reactivated_by, field_name="reactivated_by")

        async def work(session: AsyncSession) -> RoleAssignment:
            row = await self._find_assignment(session, user_id, role_name)
            if row is None or row.is_active:
                raise NotFoundError(
                    f"Inactive role assignment not found: user {user_id} -> {role_name}",
                    reason="assignment_not_found",
                    details={"user_id": user_id, "role_name": role_name},
                )
            role = await self._get_role(session, role_name)
            if role is not None:
                self._check_self_assignment(user_id, reactivated_by, role)

            row.is_active = True
            row.assigned_at = self._now()
            row.assigned_by = reactivated_by
            row.clear_deactivation()
            return row

        row = await run_in_transaction(
            self._session_factory, "reactivate", work, context={"user_id": user_id, "role_name": role_name},
        )

        self.cache.invalidate_user(user_id)
        logger.info(
            f"Role reactivated: user {user_id} -> {role_name}",
            extra={"user_id": user_id, "role_name": role_name, "reactivated_by": reactivated_by},
        )
        return row

    async def delete(self, user_id: int, role_name: str) -> RoleAssignment:
        """
        Hard-delete one assignment row.

        Raises:
            PolicyViolationError: the role is the baseline role, or the user
                would be left without any other active role
            NotFoundError: there is no row for the pair
        """
        user_id = self._require_user_id(user_id)
        role_name = self._require_role_name(role_name)

        if role_name.casefold() == self.baseline_role.casefold():
            raise PolicyViolationError(
                f"Cannot delete the {self.baseline_role} role; it is the baseline role for all users",
                reason="baseline_role_protected",
                details={"user_id": user_id, "role_name": role_name},
            )

        async def work(session: AsyncSession) -> RoleAssignment:
            row = await self._find_assignment(session, user_id, role_name)
            if row is None:
                raise NotFoundError(
                    f"Role assignment not found: user {user_id} -> {role_name}",
                    reason="assignment_not_found",
                    details={"user_id": user_id, "role_name": role_name},
                )

            remaining = await self._count_other_active(session, user_id, role_name)
            if remaining < 1:
                raise PolicyViolationError(
                    f"Cannot delete the only active role of user {user_id}",
                    reason="last_active_role",
                    details={"user_id": user_id, "role_name": role_name},
                )

            await session.delete(row)
            return row

        row = await run_in_transaction(
            self._session_factory, "delete", work, context={"user_id": user_id, "role_name": role_name},
        )

        self.cache.invalidate_user(user_id)
        logger.info(
            f"Role assignment deleted: user {user_id} -> {role_name}",
            extra={"user_id": user_id, "role_name": role_name},
        )
        return row

    async def expire(self) -> ExpirySweepResult:
        """
        Deactivate every active assignment whose ``expires_at`` has passed.

        Safe to re-run: expired rows are already inactive on the next pass.
        """
        async def work(session: AsyncSession) -> List[RoleAssignment]:
            now = self._now()
            stmt = (
                select(RoleAssignment)
                .where(
                    RoleAssignment.is_active.is_(True),
                    RoleAssignment.expires_at.is_not(None),
                    RoleAssignment.expires_at <= now,
                )
                .order_by(RoleAssignment.assignment_id)
                .with_for_update(skip_locked=True)
            )
            rows = list((await session.execute(stmt)).scalars().all())
            for row in rows:
                row.is_active = False
                row.deactivated_at = now
                row.deactivated_by = None
                row.deactivation_reason = EXPIRATION_REASON
            return rows

        rows = await run_in_transaction(
            self._session_factory, "expire", work, context={},
        )
        result = ExpirySweepResult(expired=rows)

        for user_id in result.user_ids:
            self.cache.invalidate_user(user_id)

        if result.count:
            logger.info(
                f"Expired {result.count} role assignments",
                extra={"expired": result.count, "user_ids": result.user_ids},
            )
        else:
            logger.debug("No role assignments to expire")
        return result

    async def ensure_baseline_role(self, user_id: int) -> Tuple[RoleAssignment, bool]:
        """
        Give ``user_id`` the baseline role unless a row for it already exists.

        An existing row is returned untouched, even if inactive.

        Returns:
            (row, created)
        """
        user_id = self._require_user_id(user_id)

        async with read_only_session(self._session_factory) as session:
            existing = await self._find_assignment(session, user_id, self.baseline_role, lock=False)
        if existing is not None:
            return existing, False

        row = await self.assign(
            user_id,
            self.baseline_role,
            AssignmentOptions(assignment_type=AssignmentType.AUTOMATIC),
        )
        return row, True

    def invalidate(self, user_id: int) -> int:
        """Explicitly drop the cached resolution for one user."""
        user_id = self._require_user_id(user_id)
        return self.cache.invalidate_user(user_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_assignments(self, filters: Optional[AssignmentFilters] = None) -> List[Dict[str, Any]]:
        """All assignments matching ``filters``, newest first, with role and email details."""
        filters = filters or AssignmentFilters()
        assignee = aliased(DirectoryUser, name="assignee")
        assigner = aliased(DirectoryUser, name="assigner")

        stmt = (
            select(
                RoleAssignment,
                Role.role_id,
                Role.role_type,
                Role.role_category,
                assignee.user_email,
                assigner.user_email,
            )
            .outerjoin(Role, Role.role_name == RoleAssignment.role_name)
            .outerjoin(assignee, assignee.user_id == RoleAssignment.user_id)
            .outerjoin(assigner, assigner.user_id == RoleAssignment.assigned_by)
        )
        if filters.user_id is not None:
            stmt = stmt.where(RoleAssignment.user_id == filters.user_id)
        if filters.role_name:
            stmt = stmt.where(RoleAssignment.role_name == filters.role_name)
        if filters.is_active is not None:
            stmt = stmt.where(RoleAssignment.is_active.is_(filters.is_active))
        if filters.assignment_type:
            stmt = stmt.where(RoleAssignment.assignment_type == filters.assignment_type)
        if filters.assignment_source:
            stmt = stmt.where(RoleAssignment.assignment_source == filters.assignment_source)
        stmt = stmt.order_by(RoleAssignment.assigned_at.desc(), RoleAssignment.assignment_id.desc())

        rows = await run_read(
            self._session_factory, "list_assignments", stmt, context={"filters": filters.__dict__},
        )
        results = []
        for row, role_id, role_type, role_category, user_email, assigned_by_email in rows:
            item = assignment_to_dict(row)
            item.update(
                role_id=role_id,
                role_type=role_type,
                role_category=role_category,
                user_email=user_email,
                assigned_by_email=assigned_by_email,
            )
            results.append(item)
        return results

    async def get_history(
        self,
        user_id: int,
        is_active: Optional[bool] = None,
        role_name: Optional[str] = None,
        limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
    ) -> List[Dict[str, Any]]:
        """A user's assignment rows, newest first, with assigner and deactivator emails."""
        user_id = self._require_user_id(user_id)
        assigner = aliased(DirectoryUser, name="assigner")
        deactivator = aliased(DirectoryUser, name="deactivator")

        stmt = (
            select(
                RoleAssignment,
                Role.role_id,
                Role.role_type,
                Role.role_category,
                assigner.user_email,
                deactivator.user_email,
            )
            .outerjoin(Role, Role.role_name == RoleAssignment.role_name)
            .outerjoin(assigner, assigner.user_id == RoleAssignment.assigned_by)
            .outerjoin(deactivator, deactivator.user_id == RoleAssignment.deactivated_by)
            .where(RoleAssignment.user_id == user_id)
        )
        if is_active is not None:
            stmt = stmt.where(RoleAssignment.is_active.is_(is_active))
        if role_name:
            stmt = stmt.where(RoleAssignment.role_name == role_name)
        stmt = stmt.order_by(RoleAssignment.assigned_at.desc(), RoleAssignment.assignment_id.desc())
        if limit:
            stmt = stmt.limit(limit)

        rows = await run_read(
            self._session_factory, "get_history", stmt, context={"user_id": user_id},
        )
        results = []
        for row, role_id, role_type, role_category, assigned_by_email, deactivated_by_email in rows:
            item = assignment_to_dict(row)
            item.pop("metadata")
            item.update(
                role_id=role_id,
                role_type=role_type,
                role_category=role_category,
                assigned_by_email=assigned_by_email,
                deactivated_by_email=deactivated_by_email,
            )
            results.append(item)
        return results

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _find_assignment(
        self,
        session: AsyncSession,
        user_id: int,
        role_name: str,
        lock: bool = True,
    ) -> Optional[RoleAssignment]:
        stmt = select(RoleAssignment).where(
            RoleAssignment.user_id == user_id,
            RoleAssignment.role_name == role_name,
        )
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _get_role(self, session: AsyncSession, role_name: str) -> Optional[Role]:
        stmt = select(Role).where(Role.role_name == role_name)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _get_active_role(self, session: AsyncSession, role_name: str) -> Role:
        role = await self._get_role(session, role_name)
        if role is None or not role.is_active:
            raise NotFoundError(
                f'Role "{role_name}" not found',
                reason="role_not_found",
                details={"role_name": role_name},
            )
        return role

    async def _active_role_names(self, session: AsyncSession, user_id: int) -> List[str]:
        stmt = (
            select(RoleAssignment.role_name)
            .where(RoleAssignment.user_id == user_id, RoleAssignment.is_active.is_(True))
            .order_by(RoleAssignment.role_name)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def _count_other_active(self, session: AsyncSession, user_id: int, role_name: str) -> int:
        now = self._now()
        stmt = select(func.count(RoleAssignment.assignment_id)).where(
            and_(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role_name != role_name,
                RoleAssignment.is_active.is_(True),
                or_(RoleAssignment.expires_at.is_(None), RoleAssignment.expires_at > now),
            )
        )
        return int((await session.execute(stmt)).scalar_one())

    @staticmethod
    def _check_self_assignment(subject_id: int, actor_id: Optional[int], role: Role) -> None:
        if actor_id is not None and actor_id == subject_id and role.role_type == RoleType.ADMIN.value:
            raise PolicyViolationError(
                f'Users cannot assign the admin role "{role.role_name}" to themselves',
                reason="self_assignment_forbidden",
                details={"user_id": subject_id, "role_name": role.role_name},
            )

    @staticmethod
    def _require_user_id(value: Any, field_name: str = "user_id") -> int:
        if value is None:
            raise ValidationError(f"{field_name} is required", reason="missing_field", details={"field": field_name})
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(
                f"{field_name} must be a positive integer",
                reason="invalid_identifier",
                details={"field": field_name},
            )
        return value

    @staticmethod
    def _require_role_name(value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError("role_name is required", reason="missing_field", details={"field": "role_name"})
        if not isinstance(value, str):
            raise ValidationError(
                "role_name must be a string",
                reason="invalid_identifier",
                details={"field": "role_name"},
            )
        return value.strip()

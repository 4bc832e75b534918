"""
Role, permission and binding catalogs.

Reference-data CRUD with one rule each:
- Permissions are only ever soft-deleted (``is_active = False``) so that
  historical bindings remain resolvable.
- Roles and bindings are hard-deleted. Baseline-role protection belongs to
  the assignment engine, not to the catalog.
- A bulk grant is all-or-nothing.

Any catalog change can alter resolution for users nobody has asked about,
so every mutation that can do so clears the whole resolution cache after
it commits.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cache import ResolutionCache
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Permission, Role, RolePermission, RoleType, utcnow
from .storage import run_in_transaction, run_read

logger = logging.getLogger(__name__)


ROLE_FIELDS = (
    "role_name",
    "role_type",
    "role_category",
    "description",
    "is_default",
    "requires_subscription",
    "requires_action_trigger",
    "action_trigger",
    "is_active",
)

PERMISSION_FIELDS = (
    "permission_name",
    "permission_category",
    "resource_type",
    "action_type",
    "description",
    "is_active",
)


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def role_to_dict(role: Role) -> Dict[str, Any]:
    return {
        "role_id": role.role_id,
        "role_name": role.role_name,
        "role_type": role.role_type,
        "role_category": role.role_category,
        "description": role.description,
        "is_default": role.is_default,
        "requires_subscription": role.requires_subscription,
        "requires_action_trigger": role.requires_action_trigger,
        "action_trigger": role.action_trigger,
        "is_active": role.is_active,
        "created_at": _isoformat(role.created_at),
        "updated_at": _isoformat(role.updated_at),
    }


def permission_to_dict(permission: Permission) -> Dict[str, Any]:
    return {
        "permission_id": permission.permission_id,
        "permission_name": permission.permission_name,
        "permission_category": permission.permission_category,
        "resource_type": permission.resource_type,
        "action_type": permission.action_type,
        "description": permission.description,
        "is_active": permission.is_active,
        "created_at": _isoformat(permission.created_at),
    }


def binding_to_dict(binding: RolePermission) -> Dict[str, Any]:
    return {
        "role_id": binding.role_id,
        "permission_id": binding.permission_id,
        "is_granted": binding.is_granted,
        "granted_at": _isoformat(binding.granted_at),
    }


def _require_text(values: Dict[str, Any], field_name: str) -> str:
    value = values.get(field_name)
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required", reason="missing_field", details={"field": field_name})
    return str(value).strip()


def _require_id(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(
            f"{field_name} must be a positive integer",
            reason="invalid_identifier",
            details={"field": field_name},
        )
    return value


def _role_type(value: Any) -> str:
    try:
        return RoleType(value).value
    except ValueError:
        raise ValidationError(
            f"role_type must be one of: {', '.join(t.value for t in RoleType)}",
            reason="invalid_value",
            details={"field": "role_type"},
        )


class _CatalogService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cache: ResolutionCache):
        self._session_factory = session_factory
        self.cache = cache


# =============================================================================
# PERMISSION CATALOG
# =============================================================================

class PermissionCatalog(_CatalogService):
    """Permission definitions. Delete is soft."""

    async def list_permissions(
        self,
        permission_category: Optional[str] = None,
        resource_type: Optional[str] = None,
        action_type: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[Permission]:
        stmt = select(Permission)
        if permission_category:
            stmt = stmt.where(Permission.permission_category == permission_category)
        if resource_type:
            stmt = stmt.where(Permission.resource_type == resource_type)
        if action_type:
            stmt = stmt.where(Permission.action_type == action_type)
        if is_active is not None:
            stmt = stmt.where(Permission.is_active.is_(is_active))
        stmt = stmt.order_by(Permission.permission_category, Permission.permission_name)
        rows = await run_read(self._session_factory, "list_permissions", stmt)
        return [permission for (permission,) in rows]

    async def get(self, permission_id: int) -> Permission:
        permission_id = _require_id(permission_id, "permission_id")
        rows = await run_read(
            self._session_factory, "get_permission",
            select(Permission).where(Permission.permission_id == permission_id),
            context={"permission_id": permission_id},
        )
        if not rows:
            raise NotFoundError(
                f"Permission {permission_id} not found",
                reason="permission_not_found",
                details={"permission_id": permission_id},
            )
        return rows[0][0]

    async def get_by_name(self, permission_name: str) -> Permission:
        rows = await run_read(
            self._session_factory, "get_permission_by_name",
            select(Permission).where(Permission.permission_name == permission_name),
            context={"permission_name": permission_name},
        )
        if not rows:
            raise NotFoundError(
                f'Permission "{permission_name}" not found',
                reason="permission_not_found",
                details={"permission_name": permission_name},
            )
        return rows[0][0]

    async def create(self, values: Dict[str, Any]) -> Permission:
        name = _require_text(values, "permission_name")
        permission = Permission(
            permission_name=name,
            permission_category=_require_text(values, "permission_category"),
            resource_type=_require_text(values, "resource_type"),
            action_type=_require_text(values, "action_type"),
            description=values.get("description"),
            is_active=True,
            created_at=utcnow(),
        )

        async def work(session: AsyncSession) -> Permission:
            session.add(permission)
            await session.flush()
            return permission

        created = await run_in_transaction(
            self._session_factory, "create_permission", work,
            context={"permission_name": name},
            on_conflict=lambda: _duplicate("Permission", name),
        )
        logger.info(f"Permission created: {name}", extra={"permission_id": created.permission_id})
        return created

    async def update(self, permission_id: int, values: Dict[str, Any]) -> Permission:
        """Partial update: keys that are absent or None keep their current value."""
        permission_id = _require_id(permission_id, "permission_id")
        changes = {k: v for k, v in values.items() if k in PERMISSION_FIELDS and v is not None}

        async def work(session: AsyncSession) -> Permission:
            permission = await _load_permission(session, permission_id)
            for key, value in changes.items():
                setattr(permission, key, value)
            await session.flush()
            return permission

        updated = await run_in_transaction(
            self._session_factory, "update_permission", work,
            context={"permission_id": permission_id},
            on_conflict=lambda: _duplicate("Permission", changes.get("permission_name")),
        )
        self.cache.clear()
        logger.info(f"Permission updated: {permission_id}", extra={"fields": sorted(changes)})
        return updated

    async def delete(self, permission_id: int) -> Permission:
        """Soft delete: the row and its bindings stay, but stop resolving."""
        permission_id = _require_id(permission_id, "permission_id")

        async def work(session: AsyncSession) -> Permission:
            permission = await _load_permission(session, permission_id)
            permission.is_active = False
            return permission

        permission = await run_in_transaction(
            self._session_factory, "delete_permission", work,
            context={"permission_id": permission_id},
        )
        self.cache.clear()
        logger.info(f"Permission deactivated: {permission.permission_name}", extra={"permission_id": permission_id})
        return permission


# =============================================================================
# ROLE CATALOG
# =============================================================================

class RoleCatalog(_CatalogService):
    """Role definitions. Delete is hard and unconstrained."""

    async def list_roles(
        self,
        role_type: Optional[str] = None,
        role_category: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[Role]:
        stmt = select(Role)
        if role_type:
            stmt = stmt.where(Role.role_type == role_type)
        if role_category:
            stmt = stmt.where(Role.role_category == role_category)
        if is_active is not None:
            stmt = stmt.where(Role.is_active.is_(is_active))
        stmt = stmt.order_by(Role.role_type, Role.role_name)
        rows = await run_read(self._session_factory, "list_roles", stmt)
        return [role for (role,) in rows]

    async def get(self, role_id: int) -> Role:
        role_id = _require_id(role_id, "role_id")
        rows = await run_read(
            self._session_factory, "get_role",
            select(Role).where(Role.role_id == role_id),
            context={"role_id": role_id},
        )
        if not rows:
            raise NotFoundError(f"Role {role_id} not found", reason="role_not_found", details={"role_id": role_id})
        return rows[0][0]

    async def get_by_name(self, role_name: str) -> Role:
        rows = await run_read(
            self._session_factory, "get_role_by_name",
            select(Role).where(Role.role_name == role_name),
            context={"role_name": role_name},
        )
        if not rows:
            raise NotFoundError(
                f'Role "{role_name}" not found',
                reason="role_not_found",
                details={"role_name": role_name},
            )
        return rows[0][0]

    async def create(self, values: Dict[str, Any]) -> Role:
        name = _require_text(values, "role_name")
        now = utcnow()
        role = Role(
            role_name=name,
            role_type=_role_type(_require_text(values, "role_type")),
            role_category=_require_text(values, "role_category"),
            description=values.get("description"),
            is_default=bool(values.get("is_default") or False),
            requires_subscription=bool(values.get("requires_subscription") or False),
            requires_action_trigger=bool(values.get("requires_action_trigger") or False),
            action_trigger=values.get("action_trigger"),
            is_active=True,
            created_at=now,
            updated_at=now,
        )

        async def work(session: AsyncSession) -> Role:
            session.add(role)
            await session.flush()
            return role

        created = await run_in_transaction(
            self._session_factory, "create_role", work,
            context={"role_name": name},
            on_conflict=lambda: _duplicate("Role", name),
        )
        logger.info(f"Role created: {name}", extra={"role_id": created.role_id})
        return created

    async def update(self, role_id: int, values: Dict[str, Any]) -> Role:
        """Partial update: keys that are absent or None keep their current value."""
        role_id = _require_id(role_id, "role_id")
        changes = {k: v for k, v in values.items() if k in ROLE_FIELDS and v is not None}
        if "role_type" in changes:
            changes["role_type"] = _role_type(changes["role_type"])

        async def work(session: AsyncSession) -> Role:
            role = await _load_role(session, role_id)
            for key, value in changes.items():
                setattr(role, key, value)
            role.updated_at = utcnow()
            await session.flush()
            return role

        updated = await run_in_transaction(
            self._session_factory, "update_role", work,
            context={"role_id": role_id},
            on_conflict=lambda: _duplicate("Role", changes.get("role_name")),
        )
        self.cache.clear()
        logger.info(f"Role updated: {role_id}", extra={"fields": sorted(changes)})
        return updated

    async def delete(self, role_id: int) -> Role:
        """Remove the role and its bindings. Assignment rows naming it stop resolving."""
        role_id = _require_id(role_id, "role_id")

        async def work(session: AsyncSession) -> Role:
            role = await _load_role(session, role_id)
            await session.delete(role)
            return role

        role = await run_in_transaction(
            self._session_factory, "delete_role", work,
            context={"role_id": role_id},
        )
        self.cache.clear()
        logger.info(f"Role deleted: {role.role_name}", extra={"role_id": role_id})
        return role


# =============================================================================
# ROLE-PERMISSION BINDINGS
# =============================================================================

class BindingService(_CatalogService):
    """Grants between roles and permissions."""

    async def list_for_role(self, role_id: int) -> List[Dict[str, Any]]:
        """A role's bindings (granted and revoked) with permission details."""
        role_id = _require_id(role_id, "role_id")

        async def work(session: AsyncSession) -> List[Dict[str, Any]]:
            await _load_role(session, role_id)
            stmt = (
                select(Permission, RolePermission.is_granted, RolePermission.granted_at)
                .join(RolePermission, RolePermission.permission_id == Permission.permission_id)
                .where(RolePermission.role_id == role_id)
                .order_by(Permission.permission_category, Permission.permission_name)
            )
            results = []
            for permission, is_granted, granted_at in (await session.execute(stmt)).all():
                item = permission_to_dict(permission)
                item.update(is_granted=is_granted, granted_at=_isoformat(granted_at))
                results.append(item)
            return results

        return await run_in_transaction(
            self._session_factory, "list_role_permissions", work,
            context={"role_id": role_id},
        )

    async def grant(self, role_id: int, permission_id: int) -> RolePermission:
        """Grant, or re-grant a previously revoked binding."""
        role_id = _require_id(role_id, "role_id")
        permission_id = _require_id(permission_id, "permission_id")

        async def work(session: AsyncSession) -> RolePermission:
            await _load_role(session, role_id)
            await _load_permission(session, permission_id)
            return await self._upsert(session, role_id, permission_id)

        binding = await run_in_transaction(
            self._session_factory, "grant_permission", work,
            context={"role_id": role_id, "permission_id": permission_id},
            retry_on_conflict=True,
        )
        self.cache.clear()
        logger.info(
            f"Permission {permission_id} granted to role {role_id}",
            extra={"role_id": role_id, "permission_id": permission_id},
        )
        return binding

    async def revoke(self, role_id: int, permission_id: int) -> RolePermission:
        """Keep the binding row but stop it from resolving."""
        role_id = _require_id(role_id, "role_id")
        permission_id = _require_id(permission_id, "permission_id")

        async def work(session: AsyncSession) -> RolePermission:
            binding = await _load_binding(session, role_id, permission_id)
            binding.is_granted = False
            return binding

        binding = await run_in_transaction(
            self._session_factory, "revoke_permission", work,
            context={"role_id": role_id, "permission_id": permission_id},
        )
        self.cache.clear()
        logger.info(
            f"Permission {permission_id} revoked from role {role_id}",
            extra={"role_id": role_id, "permission_id": permission_id},
        )
        return binding

    async def remove(self, role_id: int, permission_id: int) -> RolePermission:
        """Hard-delete the binding row."""
        role_id = _require_id(role_id, "role_id")
        permission_id = _require_id(permission_id, "permission_id")

        async def work(session: AsyncSession) -> RolePermission:
            binding = await _load_binding(session, role_id, permission_id)
            await session.delete(binding)
            return binding

        binding = await run_in_transaction(
            self._session_factory, "remove_permission", work,
            context={"role_id": role_id, "permission_id": permission_id},
        )
        self.cache.clear()
        logger.info(
            f"Permission {permission_id} removed from role {role_id}",
            extra={"role_id": role_id, "permission_id": permission_id},
        )
        return binding

    async def bulk_grant(self, role_id: int, permission_ids: Iterable[int]) -> List[RolePermission]:
        """
        Grant several permissions at once.

        Either every pair is granted or none is: an unknown permission id
        fails the whole batch before anything is written.
        """
        role_id = _require_id(role_id, "role_id")
        ids = list(dict.fromkeys(_require_id(pid, "permission_ids") for pid in permission_ids))
        if not ids:
            raise ValidationError(
                "permission_ids must not be empty",
                reason="missing_field",
                details={"field": "permission_ids"},
            )

        async def work(session: AsyncSession) -> List[RolePermission]:
            await _load_role(session, role_id)
            found = set(
                (await session.execute(
                    select(Permission.permission_id).where(Permission.permission_id.in_(ids))
                )).scalars().all()
            )
            missing = [pid for pid in ids if pid not in found]
            if missing:
                raise NotFoundError(
                    f"Permissions not found: {', '.join(str(pid) for pid in missing)}",
                    reason="permission_not_found",
                    details={"role_id": role_id, "missing_permission_ids": missing},
                )
            return [await self._upsert(session, role_id, pid) for pid in ids]

        bindings = await run_in_transaction(
            self._session_factory, "bulk_grant_permissions", work,
            context={"role_id": role_id, "permission_ids": ids},
            retry_on_conflict=True,
        )
        self.cache.clear()
        logger.info(
            f"Granted {len(bindings)} permissions to role {role_id}",
            extra={"role_id": role_id, "permission_ids": ids},
        )
        return bindings

    @staticmethod
    async def _upsert(session: AsyncSession, role_id: int, permission_id: int) -> RolePermission:
        stmt = (
            select(RolePermission)
            .where(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            .with_for_update()
        )
        binding = (await session.execute(stmt)).scalar_one_or_none()
        if binding is None:
            binding = RolePermission(role_id=role_id, permission_id=permission_id)
            session.add(binding)
        binding.is_granted = True
        binding.granted_at = utcnow()
        await session.flush()
        return binding


# =============================================================================
# HELPERS
# =============================================================================

def _duplicate(kind: str, name: Optional[str]) -> ConflictError:
    return ConflictError(
        f'{kind} "{name}" already exists',
        reason="duplicate_name",
        details={"name": name},
    )


async def _load_role(session: AsyncSession, role_id: int) -> Role:
    role = (await session.execute(select(Role).where(Role.role_id == role_id))).scalar_one_or_none()
    if role is None:
        raise NotFoundError(f"Role {role_id} not found", reason="role_not_found", details={"role_id": role_id})
    return role


async def _load_permission(session: AsyncSession, permission_id: int) -> Permission:
    stmt = select(Permission).where(Permission.permission_id == permission_id)
    permission = (await session.execute(stmt)).scalar_one_or_none()
    if permission is None:
        raise NotFoundError(
            f"Permission {permission_id} not found",
            reason="permission_not_found",
            details={"permission_id": permission_id},
        )
    return permission


async def _load_binding(session: AsyncSession, role_id: int, permission_id: int) -> RolePermission:
    stmt = select(RolePermission).where(
        RolePermission.role_id == role_id,
        RolePermission.permission_id == permission_id,
    )
    binding = (await session.execute(stmt)).scalar_one_or_none()
    if binding is None:
        raise NotFoundError(
            f"Permission {permission_id} is not bound to role {role_id}",
            reason="binding_not_found",
            details={"role_id": role_id, "permission_id": permission_id},
        )
    return binding

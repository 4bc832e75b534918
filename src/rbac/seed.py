"""
RBAC Database Seeding

Seeds an empty (or partially seeded) database with the default roles,
permissions and bindings from ``rbac.defaults``. Existing rows are left
untouched, so re-running is safe and never re-grants a revoked binding.

Usage:
    python -m rbac.seed
"""

import asyncio
import logging
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .defaults import DEFAULT_BINDINGS, DEFAULT_PERMISSIONS, DEFAULT_ROLES
from .models import Permission, Role, RolePermission, utcnow
from .storage import run_in_transaction

logger = logging.getLogger(__name__)


async def seed_defaults(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, int]:
    """
    Create any missing default roles, permissions and bindings.

    Returns:
        Counts of rows created, keyed by ``roles``, ``permissions`` and ``bindings``.
    """

    async def work(session: AsyncSession) -> Dict[str, int]:
        created = {"roles": 0, "permissions": 0, "bindings": 0}
        now = utcnow()

        roles = {r.role_name: r for r in (await session.execute(select(Role))).scalars().all()}
        for info in DEFAULT_ROLES:
            if info.name in roles:
                continue
            role = Role(
                role_name=info.name,
                role_type=info.role_type.value,
                role_category=info.category.value,
                description=info.description,
                is_default=info.is_default,
                requires_subscription=info.requires_subscription,
                requires_action_trigger=info.requires_action_trigger,
                action_trigger=info.action_trigger.value if info.action_trigger else None,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            session.add(role)
            roles[info.name] = role
            created["roles"] += 1

        permissions = {
            p.permission_name: p for p in (await session.execute(select(Permission))).scalars().all()
        }
        for info in DEFAULT_PERMISSIONS:
            if info.name in permissions:
                continue
            permission = Permission(
                permission_name=info.name,
                permission_category=info.category.value,
                resource_type=info.resource.value,
                action_type=info.action.value,
                description=info.description,
                is_active=True,
                created_at=now,
            )
            session.add(permission)
            permissions[info.name] = permission
            created["permissions"] += 1

        await session.flush()

        existing = set(
            (await session.execute(select(RolePermission.role_id, RolePermission.permission_id))).all()
        )
        for role_name, permission_names in DEFAULT_BINDINGS.items():
            role_id = roles[role_name].role_id
            for permission_name in permission_names:
                key = (role_id, permissions[permission_name].permission_id)
                if key in existing:
                    continue
                session.add(RolePermission(role_id=key[0], permission_id=key[1], is_granted=True, granted_at=now))
                existing.add(key)
                created["bindings"] += 1

        return created

    created = await run_in_transaction(session_factory, "seed_defaults", work)
    logger.info("Seeded default RBAC catalog", extra=created)
    return created


async def _main() -> None:
    from config import get_database_settings, get_settings
    from database import create_engine, create_schema, get_session_factory
    from services.logging_config import configure_logging

    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    engine = create_engine(get_database_settings())
    try:
        await create_schema(engine)
        created = await seed_defaults(get_session_factory(engine))
        print(f"Seeded {created['roles']} roles, {created['permissions']} permissions, "
              f"{created['bindings']} bindings")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(_main())

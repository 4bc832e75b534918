"""
Role-Based Access Control (RBAC) authority.

Stores roles, permissions, role-permission bindings and per-user role
assignments, and answers "does user U hold role/permission X?".

    AssignmentEngine  - transactional assign / deactivate / reactivate / delete / expire
    RoleResolver      - read-through resolution of a user's roles and permissions
    ResolutionCache   - per-user TTL cache, invalidated after every committed write
    AccessGate        - any-of role checks and all-of permission checks
    RoleCatalog, PermissionCatalog, BindingService - reference-data CRUD
    UserDirectory     - email/name search over the external user directory

Usage:
    cache = ResolutionCache(ttl_seconds=300)
    resolver = RoleResolver(session_factory, cache)
    engine = AssignmentEngine(session_factory, cache)
    gate = AccessGate(resolver)

    await engine.assign(42, "Admin", AssignmentOptions(assigned_by=1))
    decision = await gate.check_roles(42, ["Admin", "Manager"])
"""

from .assignments import (
    AssignmentEngine,
    AssignmentFilters,
    AssignmentOptions,
    ExpirySweepResult,
    assignment_to_dict,
)
from .cache import (
    RedisInvalidationListener,
    RedisInvalidationPublisher,
    ResolutionCache,
    TTLCache,
)
from .catalog import (
    BindingService,
    PermissionCatalog,
    RoleCatalog,
    binding_to_dict,
    permission_to_dict,
    role_to_dict,
)
from .defaults import BASELINE_ROLE
from .directory import UserDirectory
from .errors import (
    ConflictError,
    NotFoundError,
    PolicyViolationError,
    RBACError,
    StorageFailure,
    ValidationError,
)
from .gate import AccessDecision, AccessGate
from .models import AssignmentType, Permission, Role, RoleAssignment, RolePermission, RoleType
from .resolution import ResolvedRole, RoleResolver

__all__ = [
    # Engine
    "AssignmentEngine",
    "AssignmentFilters",
    "AssignmentOptions",
    "ExpirySweepResult",
    "assignment_to_dict",

    # Resolution
    "ResolutionCache",
    "TTLCache",
    "RedisInvalidationPublisher",
    "RedisInvalidationListener",
    "ResolvedRole",
    "RoleResolver",
    "AccessDecision",
    "AccessGate",

    # Catalogs
    "BindingService",
    "PermissionCatalog",
    "RoleCatalog",
    "binding_to_dict",
    "permission_to_dict",
    "role_to_dict",
    "UserDirectory",

    # Models
    "AssignmentType",
    "Permission",
    "Role",
    "RoleAssignment",
    "RolePermission",
    "RoleType",
    "BASELINE_ROLE",

    # Errors
    "RBACError",
    "NotFoundError",
    "PolicyViolationError",
    "ConflictError",
    "ValidationError",
    "StorageFailure",
]

"""
FastAPI Routers - Modular endpoint organization.

Router modules:
- assignments: Role assignment lifecycle and history
- users: Resolved roles and permissions per user
- roles: Role catalog
- permissions: Permission catalog and role-permission bindings
- health: Liveness, readiness and health checks
"""

from .assignments import router as assignments_router
from .users import router as users_router
from .roles import router as roles_router
from .permissions import router as permissions_router
from .permissions import bindings_router as role_permissions_router
from .health import router as health_router

__all__ = [
    "assignments_router",
    "users_router",
    "roles_router",
    "permissions_router",
    "role_permissions_router",
    "health_router",
]

"""
FastAPI Dependencies for the RBAC API.

Services are built once in the application lifespan and stored on
``app.state``; these helpers hand them to routes. The acting user id comes
from the ``X-User-Id`` header and is recorded, never authenticated.

Usage in endpoints:
    @router.post("/api/assignments")
    async def assign_role(
        body: AssignRoleRequest,
        actor_id: int = Depends(require_admin),
        engine: AssignmentEngine = Depends(get_assignment_engine),
    ):
        ...

    @router.get("/reports")
    async def reports(actor_id: int = Depends(require_permission("analytics.read"))):
        ...
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, Header, Request

from config.settings import Settings
from rbac.assignments import AssignmentEngine
from rbac.catalog import BindingService, PermissionCatalog, RoleCatalog
from rbac.directory import UserDirectory
from rbac.gate import AccessGate
from rbac.resolution import RoleResolver
from services.logging_config import user_id_var

from .api_errors import APIError, ErrorCode

logger = logging.getLogger(__name__)


# =============================================================================
# SERVICES
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_assignment_engine(request: Request) -> AssignmentEngine:
    return request.app.state.assignment_engine


def get_resolver(request: Request) -> RoleResolver:
    return request.app.state.resolver


def get_gate(request: Request) -> AccessGate:
    return request.app.state.gate


def get_role_catalog(request: Request) -> RoleCatalog:
    return request.app.state.role_catalog


def get_permission_catalog(request: Request) -> PermissionCatalog:
    return request.app.state.permission_catalog


def get_binding_service(request: Request) -> BindingService:
    return request.app.state.binding_service


def get_user_directory(request: Request) -> UserDirectory:
    return request.app.state.user_directory


# =============================================================================
# CALLER IDENTITY
# =============================================================================

async def get_acting_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> int:
    """
    Parse the acting user id from the ``X-User-Id`` header.

    Raises:
        APIError: 401 when the header is missing, 400 when it is not a
            positive integer.
    """
    if x_user_id is None or not x_user_id.strip():
        raise APIError(ErrorCode.AUTH_REQUIRED, "User ID required in X-User-Id header", reason="missing_identity")
    try:
        actor_id = int(x_user_id.strip())
    except ValueError:
        actor_id = 0
    if actor_id <= 0:
        raise APIError(
            ErrorCode.AUTH_INVALID_IDENTITY,
            "X-User-Id must be a positive integer",
            reason="invalid_identifier",
        )
    user_id_var.set(str(actor_id))
    return actor_id


# =============================================================================
# ACCESS CHECKS
# =============================================================================

def require_role(*role_names: str) -> Callable:
    """
    Require the caller to hold ANY of ``role_names``.

    Usage:
        @router.get("/admin")
        async def admin_only(actor_id: int = Depends(require_role("Manager", "Admin"))):
            ...
    """
    async def dependency(
        actor_id: int = Depends(get_acting_user_id),
        gate: AccessGate = Depends(get_gate),
    ) -> int:
        gate.enforce(await gate.check_roles(actor_id, role_names))
        return actor_id

    return dependency


def require_permission(*permission_names: str) -> Callable:
    """Require the caller to hold ALL of ``permission_names``."""
    async def dependency(
        actor_id: int = Depends(get_acting_user_id),
        gate: AccessGate = Depends(get_gate),
    ) -> int:
        gate.enforce(await gate.check_permissions(actor_id, permission_names))
        return actor_id

    return dependency


async def require_admin(
    actor_id: int = Depends(get_acting_user_id),
    gate: AccessGate = Depends(get_gate),
    settings: Settings = Depends(get_app_settings),
) -> int:
    """Caller must hold one of the configured admin roles."""
    gate.enforce(await gate.check_roles(actor_id, settings.admin_roles))
    return actor_id


async def require_role_manager(
    actor_id: int = Depends(get_acting_user_id),
    gate: AccessGate = Depends(get_gate),
    settings: Settings = Depends(get_app_settings),
) -> int:
    """Caller must hold one of the roles allowed to delete catalog entries."""
    gate.enforce(await gate.check_roles(actor_id, settings.role_manager_roles))
    return actor_id

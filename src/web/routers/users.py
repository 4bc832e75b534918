"""
User Resolution Routes

Routes:
- GET /api/users/search?q= - Directory search by email or name (first 20 matches)
- GET /api/users/{user_id}/roles - Resolved active roles
- GET /api/users/{user_id}/permissions - Resolved permission names
- GET /api/users/{user_id}/roles/{role_name}/check - Single role membership
- GET /api/users/{user_id}/permissions/{permission_name}/check - Single permission membership
- POST /api/users/{user_id}/cache/invalidate - Drop the user's cached resolution (admin)

Every route needs an ``X-User-Id`` caller identity.
"""

from fastapi import APIRouter, Depends, Path, Query

from rbac.assignments import AssignmentEngine
from rbac.directory import MIN_SEARCH_LENGTH, UserDirectory
from rbac.gate import AccessGate
from rbac.resolution import RoleResolver

from ..dependencies import (
    get_acting_user_id,
    get_assignment_engine,
    get_gate,
    get_resolver,
    get_user_directory,
    require_admin,
)
from ..responses import success_response

router = APIRouter(prefix="/api/users", tags=["User Resolution"])


@router.get("/search")
async def search_users(
    q: str = Query("", max_length=255),
    actor_id: int = Depends(get_acting_user_id),
    directory: UserDirectory = Depends(get_user_directory),
):
    if len(q.strip()) < MIN_SEARCH_LENGTH:
        return success_response([], f"Search term must be at least {MIN_SEARCH_LENGTH} characters")
    users = await directory.search(q)
    return success_response(users, "Users found")


@router.get("/{user_id}/roles")
async def get_user_roles(
    user_id: int = Path(..., gt=0),
    actor_id: int = Depends(get_acting_user_id),
    resolver: RoleResolver = Depends(get_resolver),
):
    roles = await resolver.get_roles(user_id)
    return success_response([role.to_dict() for role in roles], "User roles retrieved successfully")


@router.get("/{user_id}/permissions")
async def get_user_permissions(
    user_id: int = Path(..., gt=0),
    actor_id: int = Depends(get_acting_user_id),
    resolver: RoleResolver = Depends(get_resolver),
):
    permissions = await resolver.get_permissions(user_id)
    return success_response(permissions, "User permissions retrieved successfully")


@router.get("/{user_id}/roles/{role_name}/check")
async def check_user_role(
    role_name: str,
    user_id: int = Path(..., gt=0),
    actor_id: int = Depends(get_acting_user_id),
    gate: AccessGate = Depends(get_gate),
):
    has_role = await gate.has_role(user_id, role_name)
    return success_response(
        {"user_id": user_id, "role_name": role_name, "has_role": has_role},
        "Role check completed",
    )


@router.get("/{user_id}/permissions/{permission_name}/check")
async def check_user_permission(
    permission_name: str,
    user_id: int = Path(..., gt=0),
    actor_id: int = Depends(get_acting_user_id),
    gate: AccessGate = Depends(get_gate),
):
    has_permission = await gate.has_permission(user_id, permission_name)
    return success_response(
        {"user_id": user_id, "permission_name": permission_name, "has_permission": has_permission},
        "Permission check completed",
    )


@router.post("/{user_id}/cache/invalidate")
async def invalidate_user_cache(
    user_id: int = Path(..., gt=0),
    actor_id: int = Depends(require_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    removed = engine.invalidate(user_id)
    return success_response(
        {"user_id": user_id, "entries_removed": removed},
        "User cache invalidated successfully",
    )

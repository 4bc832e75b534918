"""
Permission Catalog and Binding Routes

Routes:
- GET /api/permissions - List permissions (filters: permission_category, resource_type, action_type, is_active)
- GET /api/permissions/name/{permission_name} - Permission by name
- GET /api/permissions/{permission_id} - Permission by id
- POST /api/permissions - Create a permission (admin)
- PUT /api/permissions/{permission_id} - Partially update a permission (admin)
- DELETE /api/permissions/{permission_id} - Soft-delete a permission (role manager)
- POST /api/role-permissions/assign - Grant a permission to a role (admin)
- POST /api/role-permissions/revoke - Revoke a grant, keeping the row (admin)
- POST /api/role-permissions/remove - Delete a grant row (admin)
- POST /api/role-permissions/bulk-assign - Grant several permissions at once (admin)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from rbac.catalog import BindingService, PermissionCatalog, binding_to_dict, permission_to_dict
from rbac.schemas import BindingRequest, BulkBindingRequest, PermissionCreate, PermissionUpdate

from ..dependencies import (
    get_binding_service,
    get_permission_catalog,
    require_admin,
    require_role_manager,
)
from ..responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/permissions", tags=["Permissions"])
bindings_router = APIRouter(prefix="/api/role-permissions", tags=["Role Permissions"])


# =============================================================================
# PERMISSIONS
# =============================================================================

@router.get("")
async def list_permissions(
    permission_category: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    action_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    catalog: PermissionCatalog = Depends(get_permission_catalog),
):
    permissions = await catalog.list_permissions(
        permission_category=permission_category,
        resource_type=resource_type,
        action_type=action_type,
        is_active=is_active,
    )
    return success_response(
        [permission_to_dict(p) for p in permissions],
        "Permissions retrieved successfully",
    )


@router.get("/name/{permission_name}")
async def get_permission_by_name(
    permission_name: str,
    catalog: PermissionCatalog = Depends(get_permission_catalog),
):
    permission = await catalog.get_by_name(permission_name)
    return success_response(permission_to_dict(permission), "Permission retrieved successfully")


@router.get("/{permission_id}")
async def get_permission(
    permission_id: int = Path(..., gt=0),
    catalog: PermissionCatalog = Depends(get_permission_catalog),
):
    permission = await catalog.get(permission_id)
    return success_response(permission_to_dict(permission), "Permission retrieved successfully")


@router.post("")
async def create_permission(
    body: PermissionCreate,
    actor_id: int = Depends(require_admin),
    catalog: PermissionCatalog = Depends(get_permission_catalog),
):
    permission = await catalog.create(body.model_dump(mode="json"))
    return success_response(
        permission_to_dict(permission),
        "Permission created successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.put("/{permission_id}")
async def update_permission(
    body: PermissionUpdate,
    permission_id: int = Path(..., gt=0),
    actor_id: int = Depends(require_admin),
    catalog: PermissionCatalog = Depends(get_permission_catalog),
):
    permission = await catalog.update(permission_id, body.model_dump(mode="json", exclude_none=True))
    return success_response(permission_to_dict(permission), "Permission updated successfully")


@router.delete("/{permission_id}")
async def delete_permission(
    permission_id: int = Path(..., gt=0),
    actor_id: int = Depends(require_role_manager),
    catalog: PermissionCatalog = Depends(get_permission_catalog),
):
    """Soft delete. Existing bindings stay in place but stop resolving."""
    permission = await catalog.delete(permission_id)
    return success_response(permission_to_dict(permission), "Permission deactivated successfully")


# =============================================================================
# ROLE-PERMISSION BINDINGS
# =============================================================================

@bindings_router.post("/assign")
async def assign_permission(
    body: BindingRequest,
    actor_id: int = Depends(require_admin),
    bindings: BindingService = Depends(get_binding_service),
):
    binding = await bindings.grant(body.role_id, body.permission_id)
    return success_response(binding_to_dict(binding), "Permission assigned to role successfully")


@bindings_router.post("/revoke")
async def revoke_permission(
    body: BindingRequest,
    actor_id: int = Depends(require_admin),
    bindings: BindingService = Depends(get_binding_service),
):
    binding = await bindings.revoke(body.role_id, body.permission_id)
    return success_response(binding_to_dict(binding), "Permission revoked from role successfully")


@bindings_router.post("/remove")
async def remove_permission(
    body: BindingRequest,
    actor_id: int = Depends(require_admin),
    bindings: BindingService = Depends(get_binding_service),
):
    binding = await bindings.remove(body.role_id, body.permission_id)
    return success_response(binding_to_dict(binding), "Permission removed from role successfully")


@bindings_router.post("/bulk-assign")
async def bulk_assign_permissions(
    body: BulkBindingRequest,
    actor_id: int = Depends(require_admin),
    bindings: BindingService = Depends(get_binding_service),
):
    granted = await bindings.bulk_grant(body.role_id, body.permission_ids)
    logger.info(
        f"Bulk grant of {len(granted)} permissions to role {body.role_id} by user {actor_id}",
        extra={"role_id": body.role_id},
    )
    return success_response(
        {"role_id": body.role_id, "granted": [binding_to_dict(b) for b in granted], "count": len(granted)},
        f"{len(granted)} permissions assigned to role successfully",
    )

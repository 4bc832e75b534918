"""
Role Catalog Routes

Routes:
- GET /api/roles - List roles (filters: role_type, role_category, is_active)
- GET /api/roles/name/{role_name} - Role by name
- GET /api/roles/{role_id} - Role by id
- GET /api/roles/{role_id}/permissions - A role's permission bindings
- POST /api/roles - Create a role (admin)
- PUT /api/roles/{role_id} - Partially update a role (admin)
- DELETE /api/roles/{role_id} - Delete a role and its bindings (role manager)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from rbac.catalog import BindingService, RoleCatalog, role_to_dict
from rbac.models import RoleType
from rbac.schemas import RoleCreate, RoleUpdate

from ..dependencies import get_binding_service, get_role_catalog, require_admin, require_role_manager
from ..responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/roles", tags=["Roles"])


# =============================================================================
# READ
# =============================================================================

@router.get("")
async def list_roles(
    role_type: Optional[RoleType] = Query(None),
    role_category: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    roles = await catalog.list_roles(
        role_type=role_type.value if role_type else None,
        role_category=role_category,
        is_active=is_active,
    )
    return success_response([role_to_dict(role) for role in roles], "Roles retrieved successfully")


@router.get("/name/{role_name}")
async def get_role_by_name(role_name: str, catalog: RoleCatalog = Depends(get_role_catalog)):
    role = await catalog.get_by_name(role_name)
    return success_response(role_to_dict(role), "Role retrieved successfully")


@router.get("/{role_id}")
async def get_role(
    role_id: int = Path(..., gt=0),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    role = await catalog.get(role_id)
    return success_response(role_to_dict(role), "Role retrieved successfully")


@router.get("/{role_id}/permissions")
async def get_role_permissions(
    role_id: int = Path(..., gt=0),
    bindings: BindingService = Depends(get_binding_service),
):
    permissions = await bindings.list_for_role(role_id)
    return success_response(permissions, "Role permissions retrieved successfully")


# =============================================================================
# WRITE
# =============================================================================

@router.post("")
async def create_role(
    body: RoleCreate,
    actor_id: int = Depends(require_admin),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    role = await catalog.create(body.model_dump(mode="json"))
    return success_response(role_to_dict(role), "Role created successfully", status_code=status.HTTP_201_CREATED)


@router.put("/{role_id}")
async def update_role(
    body: RoleUpdate,
    role_id: int = Path(..., gt=0),
    actor_id: int = Depends(require_admin),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    role = await catalog.update(role_id, body.model_dump(mode="json", exclude_none=True))
    return success_response(role_to_dict(role), "Role updated successfully")


@router.delete("/{role_id}")
async def delete_role(
    role_id: int = Path(..., gt=0),
    actor_id: int = Depends(require_role_manager),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    role = await catalog.delete(role_id)
    logger.info(f"Role {role.role_name} deleted by user {actor_id}", extra={"role_id": role_id})
    return success_response(role_to_dict(role), "Role deleted successfully")

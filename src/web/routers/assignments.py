"""
Role Assignment Routes

Routes:
- GET /api/assignments - List assignments (filters: user_id, role_name, is_active, assignment_type, assignment_source)
- POST /api/assignments - Assign a role to a user
- POST /api/assignments/deactivate - Deactivate an active assignment
- POST /api/assignments/reactivate - Reactivate an inactive assignment
- DELETE /api/assignments - Hard-delete an assignment
- GET /api/users/{user_id}/assignment-history - A user's assignment history

All mutating routes require one of the configured admin roles; the history
route needs only a caller identity.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from rbac.assignments import (
    DEFAULT_HISTORY_LIMIT,
    AssignmentEngine,
    AssignmentFilters,
    assignment_to_dict,
)
from rbac.schemas import AssignmentTarget, AssignRoleRequest, DeactivateRequest

from ..dependencies import get_acting_user_id, get_assignment_engine, require_admin
from ..responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Role Assignments"])


@router.get("/assignments")
async def list_assignments(
    user_id: Optional[int] = Query(None, gt=0),
    role_name: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    assignment_type: Optional[str] = Query(None),
    assignment_source: Optional[str] = Query(None),
    actor_id: int = Depends(require_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    assignments = await engine.list_assignments(
        AssignmentFilters(
            user_id=user_id,
            role_name=role_name,
            is_active=is_active,
            assignment_type=assignment_type,
            assignment_source=assignment_source,
        )
    )
    return success_response(assignments, "Role assignments retrieved successfully")


@router.post("/assignments")
async def assign_role(
    body: AssignRoleRequest,
    actor_id: int = Depends(require_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    """
    Assign a role to a user.

    Re-assigning a role the user already has (active or not) updates that
    row in place; the user's other roles are untouched.
    """
    row = await engine.assign(body.user_id, body.role_name, body.to_options(assigned_by=actor_id))
    return success_response(
        assignment_to_dict(row),
        "Role assigned successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/assignments/deactivate")
async def deactivate_assignment(
    body: DeactivateRequest,
    actor_id: int = Depends(require_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    row = await engine.deactivate(body.user_id, body.role_name, deactivated_by=actor_id, reason=body.reason)
    return success_response(assignment_to_dict(row), "Role assignment deactivated successfully")


@router.post("/assignments/reactivate")
async def reactivate_assignment(
    body: AssignmentTarget,
    actor_id: int = Depends(require_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    row = await engine.reactivate(body.user_id, body.role_name, reactivated_by=actor_id)
    return success_response(assignment_to_dict(row), "Role assignment reactivated successfully")


@router.delete("/assignments")
async def delete_assignment(
    body: AssignmentTarget,
    actor_id: int = Depends(require_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    """Permanently delete an assignment. The baseline role and a user's last active role are protected."""
    row = await engine.delete(body.user_id, body.role_name)
    logger.info(
        f"Assignment deleted by user {actor_id}",
        extra={"actor_id": actor_id, "user_id": body.user_id, "role_name": body.role_name},
    )
    return success_response(assignment_to_dict(row), "Role assignment deleted permanently")


@router.get("/users/{user_id}/assignment-history")
async def get_assignment_history(
    user_id: int = Path(..., gt=0),
    is_active: Optional[bool] = Query(None),
    role_name: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=500),
    actor_id: int = Depends(get_acting_user_id),
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    history = await engine.get_history(user_id, is_active=is_active, role_name=role_name, limit=limit)
    return success_response(history, "Role history retrieved successfully")

"""
Request models for the RBAC API.

Identifiers are coerced to integers here, at the boundary, so the services
only ever see well-typed ids. Assignment metadata is a flat string-keyed
map of scalar values.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .assignments import AssignmentOptions, DEFAULT_ASSIGNMENT_SOURCE
from .models import AssignmentType, RoleType

MetadataValue = Union[str, int, float, bool, None]


class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


# =============================================================================
# ASSIGNMENTS
# =============================================================================

class AssignmentTarget(_Request):
    """One (user, role name) pair."""
    user_id: int = Field(..., gt=0, description="User whose assignment is targeted")
    role_name: str = Field(..., min_length=1, max_length=100, description="Role name")

    @field_validator("user_id", mode="before")
    @classmethod
    def reject_bool(cls, value):
        if isinstance(value, bool):
            raise ValueError("user_id must be an integer")
        return value


class AssignRoleRequest(AssignmentTarget):
    """Body of POST /api/assignments."""
    assignment_type: AssignmentType = Field(default=AssignmentType.MANUAL)
    expires_at: Optional[datetime] = Field(None, description="Optional expiry; naive values are taken as UTC")
    metadata: Optional[Dict[str, MetadataValue]] = Field(None, description="Flat map of scalar values")

    @field_validator("expires_at")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def to_options(self, assigned_by: Optional[int]) -> AssignmentOptions:
        return AssignmentOptions(
            assigned_by=assigned_by,
            assignment_type=self.assignment_type,
            assignment_source=DEFAULT_ASSIGNMENT_SOURCE,
            expires_at=self.expires_at,
            metadata=self.metadata,
        )


class DeactivateRequest(AssignmentTarget):
    reason: Optional[str] = Field(None, max_length=500)


# =============================================================================
# ROLES
# =============================================================================

class RoleCreate(_Request):
    role_name: str = Field(..., min_length=1, max_length=100)
    role_type: RoleType
    role_category: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    is_default: bool = False
    requires_subscription: bool = False
    requires_action_trigger: bool = False
    action_trigger: Optional[str] = Field(None, max_length=50)


class RoleUpdate(_Request):
    """Partial update; omitted or null fields keep their value."""
    role_name: Optional[str] = Field(None, min_length=1, max_length=100)
    role_type: Optional[RoleType] = None
    role_category: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    is_default: Optional[bool] = None
    requires_subscription: Optional[bool] = None
    requires_action_trigger: Optional[bool] = None
    action_trigger: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None


# =============================================================================
# PERMISSIONS
# =============================================================================

class PermissionCreate(_Request):
    permission_name: str = Field(..., min_length=1, max_length=100)
    permission_category: str = Field(..., min_length=1, max_length=50)
    resource_type: str = Field(..., min_length=1, max_length=50)
    action_type: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None


class PermissionUpdate(_Request):
    permission_name: Optional[str] = Field(None, min_length=1, max_length=100)
    permission_category: Optional[str] = Field(None, min_length=1, max_length=50)
    resource_type: Optional[str] = Field(None, min_length=1, max_length=50)
    action_type: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    is_active: Optional[bool] = None


# =============================================================================
# BINDINGS
# =============================================================================

class BindingRequest(_Request):
    role_id: int = Field(..., gt=0)
    permission_id: int = Field(..., gt=0)


class BulkBindingRequest(_Request):
    role_id: int = Field(..., gt=0)
    permission_ids: List[int] = Field(..., min_length=1)

    @field_validator("permission_ids")
    @classmethod
    def positive_ids(cls, value: List[int]) -> List[int]:
        if any(pid <= 0 for pid in value):
            raise ValueError("permission ids must be positive integers")
        return value

"""Tests for request models at the HTTP boundary."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from rbac.models import AssignmentType, RoleType
from rbac.schemas import (
    AssignmentTarget,
    AssignRoleRequest,
    BulkBindingRequest,
    DeactivateRequest,
    RoleCreate,
    RoleUpdate,
)


class TestAssignmentTarget:

    def test_coerces_numeric_string(self):
        assert AssignmentTarget(user_id="42", role_name="Voter").user_id == 42

    def test_strips_role_name(self):
        assert AssignmentTarget(user_id=1, role_name="  Admin ").role_name == "Admin"

    @pytest.mark.parametrize("user_id", [0, -1, True, "abc"])
    def test_rejects_bad_user_id(self, user_id):
        with pytest.raises(ValidationError):
            AssignmentTarget(user_id=user_id, role_name="Voter")

    def test_rejects_blank_role_name(self):
        with pytest.raises(ValidationError):
            AssignmentTarget(user_id=1, role_name="   ")


class TestAssignRoleRequest:

    def test_defaults(self):
        request = AssignRoleRequest(user_id=1, role_name="Voter")
        assert request.assignment_type == AssignmentType.MANUAL
        assert request.expires_at is None
        assert request.metadata is None

    def test_aware_expiry_converted_to_naive_utc(self):
        tz = timezone(timedelta(hours=2))
        request = AssignRoleRequest(
            user_id=1, role_name="Voter", expires_at=datetime(2026, 5, 1, 14, 0, tzinfo=tz)
        )
        assert request.expires_at == datetime(2026, 5, 1, 12, 0)
        assert request.expires_at.tzinfo is None

    def test_metadata_must_be_flat(self):
        AssignRoleRequest(user_id=1, role_name="Voter", metadata={"plan": "gold", "seats": 3, "trial": False})
        with pytest.raises(ValidationError):
            AssignRoleRequest(user_id=1, role_name="Voter", metadata={"nested": {"a": 1}})

    def test_unknown_assignment_type(self):
        with pytest.raises(ValidationError):
            AssignRoleRequest(user_id=1, role_name="Voter", assignment_type="gifted")

    def test_to_options(self):
        request = AssignRoleRequest(user_id=1, role_name="Voter", assignment_type="subscription")
        options = request.to_options(assigned_by=9)
        assert options.assigned_by == 9
        assert options.assignment_type == AssignmentType.SUBSCRIPTION
        assert options.assignment_source == "role_service"


class TestOtherRequests:

    def test_deactivate_reason_optional(self):
        assert DeactivateRequest(user_id=1, role_name="Voter").reason is None

    def test_role_create_type_enum(self):
        role = RoleCreate(role_name="Treasurer", role_type="admin", role_category="platform")
        assert role.role_type == RoleType.ADMIN
        assert role.model_dump(mode="json")["role_type"] == "admin"

    def test_role_update_drops_unset(self):
        update = RoleUpdate(description="x")
        assert update.model_dump(mode="json", exclude_none=True) == {"description": "x"}

    def test_bulk_binding_requires_positive_ids(self):
        with pytest.raises(ValidationError):
            BulkBindingRequest(role_id=1, permission_ids=[])
        with pytest.raises(ValidationError):
            BulkBindingRequest(role_id=1, permission_ids=[1, 0])

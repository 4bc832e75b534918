"""Tests for the access-check gate."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rbac.errors import PolicyViolationError, ValidationError
from rbac.gate import (
    MISSING_PERMISSION,
    MISSING_ROLE,
    NO_PERMISSIONS,
    NO_ROLES,
    AccessDecision,
    AccessGate,
)


def _gate(roles=(), permissions=()):
    resolver = MagicMock()
    resolver.get_role_names = AsyncMock(return_value=list(roles))
    resolver.get_permissions = AsyncMock(return_value=list(permissions))
    return AccessGate(resolver)


class TestCheckRoles:
    """Role checks succeed when ANY required role is held."""

    @pytest.mark.asyncio
    async def test_any_match_allows(self):
        decision = await _gate(roles=["Voter", "Admin"]).check_roles(1, ["Manager", "Admin"])
        assert decision.allowed is True
        assert decision.reason is None
        assert decision.missing == ()

    @pytest.mark.asyncio
    async def test_no_roles_reason(self):
        decision = await _gate().check_roles(1, ["Admin"])
        assert decision.allowed is False
        assert decision.reason == NO_ROLES

    @pytest.mark.asyncio
    async def test_missing_role_reason(self):
        decision = await _gate(roles=["Voter"]).check_roles(1, ["Manager", "Admin"])
        assert decision.reason == MISSING_ROLE
        assert decision.missing == ("Manager", "Admin")

    @pytest.mark.asyncio
    async def test_requires_at_least_one_name(self):
        with pytest.raises(ValidationError):
            await _gate(roles=["Voter"]).check_roles(1, [])

    @pytest.mark.asyncio
    async def test_denial_is_logged(self, caplog):
        with caplog.at_level("WARNING", logger="rbac.gate"):
            await _gate(roles=["Voter"]).check_roles(3, ["Admin"])
        assert "Role check denied for user 3: missing_role" in caplog.text


class TestCheckPermissions:
    """Permission checks succeed only when ALL required permissions are held."""

    @pytest.mark.asyncio
    async def test_all_held_allows(self):
        gate = _gate(permissions=["election.read", "vote.cast"])
        assert await gate.check_permissions(1, ["vote.cast", "election.read"])

    @pytest.mark.asyncio
    async def test_partial_lists_only_unmet(self):
        gate = _gate(permissions=["election.read"])
        decision = await gate.check_permissions(1, ["election.read", "election.create", "vote.cast"])

        assert decision.allowed is False
        assert decision.reason == MISSING_PERMISSION
        assert decision.missing == ("election.create", "vote.cast")

    @pytest.mark.asyncio
    async def test_no_permissions_reason(self):
        decision = await _gate().check_permissions(1, ["vote.cast"])
        assert decision.reason == NO_PERMISSIONS

    @pytest.mark.asyncio
    async def test_duplicate_requirements_collapse(self):
        decision = await _gate(permissions=["a"]).check_permissions(1, ["b", "b"])
        assert decision.required == ("b",)
        assert decision.missing == ("b",)


class TestMembership:
    """Single-name membership helpers."""

    @pytest.mark.asyncio
    async def test_has_role_and_permission(self):
        gate = _gate(roles=["Voter"], permissions=["vote.cast"])
        assert await gate.has_role(1, "Voter") is True
        assert await gate.has_role(1, "Admin") is False
        assert await gate.has_permission(1, "vote.cast") is True
        assert await gate.has_permission(1, "election.create") is False


class TestEnforce:
    """Tests for AccessGate.enforce."""

    def test_allowed_passes(self):
        AccessGate.enforce(AccessDecision(True))

    def test_denied_raises_policy_violation(self):
        decision = AccessDecision(False, MISSING_ROLE, ("Admin",), ("Admin",))
        with pytest.raises(PolicyViolationError) as exc_info:
            AccessGate.enforce(decision)

        assert exc_info.value.message == "Insufficient permissions"
        assert exc_info.value.reason == MISSING_ROLE
        assert exc_info.value.details == {"required": ["Admin"], "missing": ["Admin"]}

    def test_decision_to_dict(self):
        decision = AccessDecision(False, NO_ROLES, ("Admin",), ("Admin",))
        assert decision.to_dict() == {
            "allowed": False,
            "reason": NO_ROLES,
            "required": ["Admin"],
            "missing": ["Admin"],
        }


class TestGateAgainstDatabase:
    """Gate over a real resolver and seeded catalog."""

    @pytest.mark.asyncio
    async def test_admin_holds_role_manage(self, gate, assignment_engine, seeded):
        await assignment_engine.assign(1, "Voter")
        await assignment_engine.assign(1, "Admin")

        assert await gate.check_roles(1, ["Manager", "Admin"])
        assert await gate.check_permissions(1, ["role.manage", "election.create"])

    @pytest.mark.asyncio
    async def test_voter_cannot_create_elections(self, gate, assignment_engine, seeded):
        await assignment_engine.assign(2, "Voter")

        decision = await gate.check_permissions(2, ["election.create"])
        assert decision.reason == MISSING_PERMISSION

    @pytest.mark.asyncio
    async def test_unknown_user_has_nothing(self, gate, seeded):
        assert (await gate.check_roles(404, ["Voter"])).reason == NO_ROLES

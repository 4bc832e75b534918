"""
Access-Check Gate.

Answers two questions against a user's resolved projection:
- does the caller hold ANY of these role names?
- does the caller hold ALL of these permission names?

A caller with nothing resolved is denied with a different reason
(``no_roles`` / ``no_permissions``) from a caller whose resolved set is
merely insufficient (``missing_role`` / ``missing_permission``). Denials
carry only the unmet requirement.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import PolicyViolationError, ValidationError
from .resolution import RoleResolver

logger = logging.getLogger(__name__)


NO_ROLES = "no_roles"
MISSING_ROLE = "missing_role"
NO_PERMISSIONS = "no_permissions"
MISSING_PERMISSION = "missing_permission"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one access check."""
    allowed: bool
    reason: Optional[str] = None
    required: Tuple[str, ...] = field(default_factory=tuple)
    missing: Tuple[str, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "required": list(self.required),
            "missing": list(self.missing),
        }


def _names(values: Iterable[str], kind: str) -> Tuple[str, ...]:
    names = tuple(dict.fromkeys(v for v in values if v))
    if not names:
        raise ValidationError(f"At least one {kind} name is required", reason="missing_field")
    return names


class AccessGate:
    """Set-membership checks over the resolver's cached projections."""

    def __init__(self, resolver: RoleResolver):
        self.resolver = resolver

    async def check_roles(self, user_id: int, role_names: Iterable[str]) -> AccessDecision:
        required = _names(role_names, "role")
        held = set(await self.resolver.get_role_names(user_id))

        if not held:
            decision = AccessDecision(False, NO_ROLES, required, required)
        elif held.intersection(required):
            decision = AccessDecision(True, None, required)
        else:
            decision = AccessDecision(False, MISSING_ROLE, required, required)

        if not decision.allowed:
            logger.warning(
                f"Role check denied for user {user_id}: {decision.reason}",
                extra={"user_id": user_id, "reason": decision.reason, "required": list(required)},
            )
        return decision

    async def check_permissions(self, user_id: int, permission_names: Iterable[str]) -> AccessDecision:
        required = _names(permission_names, "permission")
        held = set(await self.resolver.get_permissions(user_id))

        if not held:
            decision = AccessDecision(False, NO_PERMISSIONS, required, required)
        else:
            missing = tuple(name for name in required if name not in held)
            if missing:
                decision = AccessDecision(False, MISSING_PERMISSION, required, missing)
            else:
                decision = AccessDecision(True, None, required)

        if not decision.allowed:
            logger.warning(
                f"Permission check denied for user {user_id}: {decision.reason}",
                extra={"user_id": user_id, "reason": decision.reason, "missing": list(decision.missing)},
            )
        return decision

    async def has_role(self, user_id: int, role_name: str) -> bool:
        return role_name in await self.resolver.get_role_names(user_id)

    async def has_permission(self, user_id: int, permission_name: str) -> bool:
        return permission_name in await self.resolver.get_permissions(user_id)

    @staticmethod
    def enforce(decision: AccessDecision) -> None:
        """Raise ``PolicyViolationError`` for a denied decision."""
        if decision.allowed:
            return
        raise PolicyViolationError(
            "Insufficient permissions",
            reason=decision.reason,
            details={"required": list(decision.required), "missing": list(decision.missing)},
        )

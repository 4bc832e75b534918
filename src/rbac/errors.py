"""
RBAC error taxonomy.

Every failure the RBAC core can foresee is raised as an ``RBACError``
subclass carrying a machine-readable ``reason``. The web layer maps each
class onto one HTTP status (see ``web.api_errors``).
"""

from typing import Any, Dict, Optional


class RBACError(Exception):
    """Base class for recognised RBAC failures."""

    default_reason = "rbac_error"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.reason = reason or self.default_reason
        self.details = details or {}
        super().__init__(message)

    def __repr__(self):
        return f"{type(self).__name__}(reason={self.reason!r}, message={self.message!r})"


class NotFoundError(RBACError):
    """Referenced role, permission, binding or assignment does not exist."""
    default_reason = "not_found"


class PolicyViolationError(RBACError):
    """An invariant would be broken; the transaction is rolled back."""
    default_reason = "policy_violation"


class ConflictError(PolicyViolationError):
    """A uniqueness constraint on catalog data was hit."""
    default_reason = "duplicate_name"


class ValidationError(RBACError):
    """Required identifiers or fields are missing or malformed."""
    default_reason = "invalid_request"


class StorageFailure(RBACError):
    """
    Transaction or connection failure.

    The message is generic. The underlying exception is chained
    and logged, never returned to the caller.
    """
    default_reason = "storage_failure"

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__(
            "The request could not be completed due to a storage error",
            details=details,
        )

"""
RBAC Database Models - SQLAlchemy ORM models for roles, permissions and assignments.

Tables:
- permissions: Permission catalog (soft-deleted only)
- roles: Role catalog, referenced from assignments by name
- role_permissions: Role-to-permission grants
- user_role_assignments: Per-user role assignments, one row per (user, role name)
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime,
    Text, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database.models import Base, JSONB


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class RoleType(str, PyEnum):
    """Role types. Admin roles are operator roles; user roles are end-user tiers."""
    ADMIN = "admin"
    USER = "user"


class AssignmentType(str, PyEnum):
    """How an assignment came into existence."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    SUBSCRIPTION = "subscription"
    ACTION_TRIGGERED = "action_triggered"


# =============================================================================
# PERMISSION MODEL
# =============================================================================

class Permission(Base):
    """
    Permission definitions.

    Never hard-deleted: historical bindings must stay resolvable, so
    deletion only clears ``is_active``.
    """
    __tablename__ = "permissions"

    permission_id = Column(Integer, primary_key=True, autoincrement=True)
    permission_name = Column(String(100), nullable=False, unique=True, index=True)
    permission_category = Column(String(50), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)
    action_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    role_permissions = relationship(
        "RolePermission",
        back_populates="permission",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_permission_resource_action", "resource_type", "action_type"),
    )

    def __repr__(self):
        return f"<Permission(name={self.permission_name}, category={self.permission_category})>"


# =============================================================================
# ROLE MODEL
# =============================================================================

class Role(Base):
    """
    Role definitions.

    Assignments reference roles by ``role_name`` rather than by id, so a
    renamed or deleted role stops resolving for its holders without the
    assignment rows being touched.
    """
    __tablename__ = "roles"

    role_id = Column(Integer, primary_key=True, autoincrement=True)
    role_name = Column(String(100), nullable=False, unique=True, index=True)
    role_type = Column(String(20), nullable=False, default=RoleType.USER.value, index=True)
    role_category = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=True)

    is_default = Column(Boolean, default=False, nullable=False)
    requires_subscription = Column(Boolean, default=False, nullable=False)
    requires_action_trigger = Column(Boolean, default=False, nullable=False)
    action_trigger = Column(String(50), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    role_permissions = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Role(name={self.role_name}, type={self.role_type})>"


# =============================================================================
# ROLE-PERMISSION BINDING
# =============================================================================

class RolePermission(Base):
    """
    Role-to-permission grant.

    ``is_granted = False`` resolves exactly like a missing binding but keeps
    the row so it can be re-granted.
    """
    __tablename__ = "role_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(
        Integer,
        ForeignKey("roles.role_id", ondelete="CASCADE"),
        nullable=False,
    )
    permission_id = Column(
        Integer,
        ForeignKey("permissions.permission_id", ondelete="CASCADE"),
        nullable=False,
    )
    is_granted = Column(Boolean, default=True, nullable=False)
    granted_at = Column(DateTime, default=utcnow, nullable=False)

    role = relationship("Role", back_populates="role_permissions")
    permission = relationship("Permission", back_populates="role_permissions")

    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
        Index("ix_role_permission_role", "role_id"),
        Index("ix_role_permission_permission", "permission_id"),
    )

    def __repr__(self):
        return (
            f"<RolePermission(role={self.role_id}, permission={self.permission_id}, "
            f"granted={self.is_granted})>"
        )


# =============================================================================
# USER ROLE ASSIGNMENT
# =============================================================================

class RoleAssignment(Base):
    """
    User-to-role assignment.

    At most one row exists per (user_id, role_name). The deactivation
    fields are populated only while ``is_active`` is false.
    """
    __tablename__ = "user_role_assignments"

    assignment_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    role_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    assigned_by = Column(Integer, nullable=True)
    assignment_type = Column(String(30), default=AssignmentType.MANUAL.value, nullable=False)
    assignment_source = Column(String(100), default="role_service", nullable=False)
    expires_at = Column(DateTime, nullable=True, comment="Optional role expiration")
    # ``metadata`` is reserved on declarative classes
    assignment_metadata = Column("metadata", JSONB, nullable=True)

    deactivated_at = Column(DateTime, nullable=True)
    deactivated_by = Column(Integer, nullable=True)
    deactivation_reason = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "role_name", name="uq_user_role_assignment"),
        Index("ix_assignment_user_active", "user_id", "is_active"),
        Index("ix_assignment_role", "role_name"),
        Index("ix_assignment_expiry", "is_active", "expires_at"),
    )

    def clear_deactivation(self) -> None:
        self.deactivated_at = None
        self.deactivated_by = None
        self.deactivation_reason = None

    def __repr__(self):
        return (
            f"<RoleAssignment(user={self.user_id}, role={self.role_name}, "
            f"active={self.is_active})>"
        )

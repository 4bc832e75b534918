"""RBAC Tables

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01

Creates tables for the role-based access control authority:
- permissions: Permission catalog (soft delete only)
- roles: Role catalog
- role_permissions: Role-to-permission grants
- user_role_assignments: User-to-role assignments, one row per (user, role name)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '20260301_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # PERMISSIONS TABLE
    # =========================================================================
    op.create_table(
        'permissions',
        sa.Column('permission_id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('permission_name', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('permission_category', sa.String(50), nullable=False, index=True),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_permission_resource_action', 'permissions', ['resource_type', 'action_type'])

    # =========================================================================
    # ROLES TABLE
    # =========================================================================
    op.create_table(
        'roles',
        sa.Column('role_id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('role_name', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('role_type', sa.String(20), nullable=False, server_default='user', index=True),
        sa.Column('role_category', sa.String(50), nullable=False, index=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('is_default', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('requires_subscription', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('requires_action_trigger', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('action_trigger', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # =========================================================================
    # ROLE PERMISSIONS TABLE
    # =========================================================================
    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('role_id', sa.Integer, sa.ForeignKey('roles.role_id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'permission_id', sa.Integer,
            sa.ForeignKey('permissions.permission_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('is_granted', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('granted_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permission'),
    )
    op.create_index('ix_role_permission_role', 'role_permissions', ['role_id'])
    op.create_index('ix_role_permission_permission', 'role_permissions', ['permission_id'])

    # =========================================================================
    # USER ROLE ASSIGNMENTS TABLE
    # =========================================================================
    op.create_table(
        'user_role_assignments',
        sa.Column('assignment_id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('role_name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('assigned_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('assigned_by', sa.Integer, nullable=True),
        sa.Column('assignment_type', sa.String(30), nullable=False, server_default='manual'),
        sa.Column('assignment_source', sa.String(100), nullable=False, server_default='role_service'),
        sa.Column('expires_at', sa.DateTime, nullable=True, comment='Optional role expiration'),
        sa.Column(
            'metadata',
            sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'),
            nullable=True,
        ),
        sa.Column('deactivated_at', sa.DateTime, nullable=True),
        sa.Column('deactivated_by', sa.Integer, nullable=True),
        sa.Column('deactivation_reason', sa.Text, nullable=True),
        sa.UniqueConstraint('user_id', 'role_name', name='uq_user_role_assignment'),
    )
    op.create_index('ix_assignment_user_active', 'user_role_assignments', ['user_id', 'is_active'])
    op.create_index('ix_assignment_role', 'user_role_assignments', ['role_name'])
    op.create_index('ix_assignment_expiry', 'user_role_assignments', ['is_active', 'expires_at'])


def downgrade() -> None:
    op.drop_index('ix_assignment_expiry', table_name='user_role_assignments')
    op.drop_index('ix_assignment_role', table_name='user_role_assignments')
    op.drop_index('ix_assignment_user_active', table_name='user_role_assignments')
    op.drop_table('user_role_assignments')

    op.drop_index('ix_role_permission_permission', table_name='role_permissions')
    op.drop_index('ix_role_permission_role', table_name='role_permissions')
    op.drop_table('role_permissions')

    op.drop_table('roles')

    op.drop_index('ix_permission_resource_action', table_name='permissions')
    op.drop_table('permissions')

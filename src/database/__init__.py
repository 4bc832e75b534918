"""
Database layer for the RBAC authority.

This module provides:
- The shared declarative base and portable JSON column type
- Async engine and session factory construction
- Transaction context managers with commit/rollback semantics
"""

from .models import Base, JSONB, DirectoryUser

from .async_engine import (
    create_engine,
    create_schema,
    get_session_factory,
)

from .transaction import (
    transaction,
    read_only_session,
)

__all__ = [
    "Base",
    "JSONB",
    "DirectoryUser",
    "create_engine",
    "create_schema",
    "get_session_factory",
    "transaction",
    "read_only_session",
]

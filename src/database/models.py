"""
Shared SQLAlchemy declarative base and cross-database column types.

The RBAC tables live in ``rbac.models``; this module only holds what is
shared across packages plus the read-only view of the external user
directory, which is joined for display (email enrichment) and never for
authorization decisions.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        else:
            return dialect.type_descriptor(JSON())


Base = declarative_base()


class DirectoryUser(Base):
    """
    External user directory record.

    Owned by the identity service; this service only reads it to attach
    emails to assignment listings.
    """
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, autoincrement=False)
    user_email = Column(String(255), nullable=True, index=True)
    user_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=True)

    def __repr__(self):
        return f"<DirectoryUser(user_id={self.user_id}, email={self.user_email})>"

"""Pytest configuration and fixtures for the RBAC test suite."""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from database.async_engine import create_schema, get_session_factory
from database.models import DirectoryUser
from database.transaction import transaction
from rbac.assignments import AssignmentEngine
from rbac.cache import ResolutionCache
from rbac.catalog import BindingService, PermissionCatalog, RoleCatalog
from rbac.gate import AccessGate
from rbac.resolution import RoleResolver
from rbac.seed import seed_defaults


# =============================================================================
# CLOCKS
# =============================================================================

class FakeClock:
    """Settable naive-UTC clock shared by the engine and the resolver."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakeMonotonic:
    """Settable monotonic clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
async def db_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory(db_engine)


@pytest.fixture
async def seeded(session_factory):
    """Default catalog: baseline, admin and user roles with their permissions."""
    return await seed_defaults(session_factory)


@pytest.fixture
def add_directory_users(session_factory):
    """Insert rows into the external user directory."""

    async def _add(*users):
        async with transaction(session_factory) as session:
            for user_id, email in users:
                session.add(DirectoryUser(user_id=user_id, user_email=email, user_name=email.split("@")[0]))

    return _add


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture
def cache(monotonic):
    return ResolutionCache(ttl_seconds=300, maxsize=1000, clock=monotonic)


@pytest.fixture
def resolver(session_factory, cache, clock):
    return RoleResolver(session_factory, cache, now=clock)


@pytest.fixture
def assignment_engine(session_factory, cache, clock):
    return AssignmentEngine(session_factory, cache, baseline_role="Voter", now=clock)


@pytest.fixture
def gate(resolver):
    return AccessGate(resolver)


@pytest.fixture
def role_catalog(session_factory, cache):
    return RoleCatalog(session_factory, cache)


@pytest.fixture
def permission_catalog(session_factory, cache):
    return PermissionCatalog(session_factory, cache)


@pytest.fixture
def bindings(session_factory, cache):
    return BindingService(session_factory, cache)

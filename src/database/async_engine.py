"""Async database engine with connection pooling.

Provides async SQLAlchemy engine configuration for PostgreSQL (production)
and SQLite (development). Engines and session factories are built explicitly
and owned by the caller (the web app lifespan, the expiry task, or a test
fixture); there is no module-level engine.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from sqlalchemy import event

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


def create_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine with connection pooling.

    Args:
        settings: Database settings. If None, loads from environment.

    Returns:
        AsyncEngine: Configured async engine instance.
    """
    settings = settings or get_database_settings()

    logger.info(
        "Creating async database engine",
        extra={
            "driver": settings.driver,
            "database": settings.name if settings.is_postgres else str(settings.sqlite_path),
            "pool_size": settings.pool_size,
        }
    )

    if settings.is_sqlite:
        # SQLite doesn't support connection pooling in the traditional sense
        pool_kwargs = {"poolclass": NullPool}
    else:
        pool_kwargs = {
            "pool_size": settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_timeout": settings.pool_timeout,
            "pool_recycle": settings.pool_recycle,
            "pool_pre_ping": settings.pool_pre_ping,
        }

    engine = create_async_engine(
        settings.async_url,
        echo=settings.echo_sql,
        connect_args=settings.get_connect_args(),
        **pool_kwargs,
    )

    if settings.is_sqlite:
        _setup_sqlite_pragmas(engine)

    return engine


def _setup_sqlite_pragmas(engine: AsyncEngine) -> None:
    """
    Enable foreign keys and WAL on every new SQLite connection, and open
    every transaction with BEGIN IMMEDIATE.

    The driver would otherwise defer BEGIN until the first write, so two
    writers that both read first fail with "database is locked" instead of
    queueing on the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        # Stop the driver from emitting its own BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create an async session factory bound to ``engine``.

    Sessions do not expire attributes on commit so ORM rows can be returned
    to callers after the transaction closes.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """
    Create the RBAC tables if they are missing.

    For PostgreSQL deployments use the Alembic revisions instead; this is a
    convenience for SQLite and tests.
    """
    # Import models so they register on the shared metadata
    import rbac.models  # noqa: F401
    from database.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


"""
FastAPI application for the RBAC authority.

Routes:
- /api/assignments          : role assignment lifecycle (admin)
- /api/users/search        : directory search by email or name
- /api/users/{user_id}/...  : resolved roles, permissions and history
- /api/roles                : role catalog
- /api/permissions          : permission catalog
- /api/role-permissions     : role-permission bindings
- /health                   : health, liveness and readiness

Services are built once per process in the lifespan and kept on
``app.state``; routes reach them through ``web.dependencies``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config.database import DatabaseSettings, get_database_settings
from config.settings import Settings, get_settings
from database.async_engine import create_engine, create_schema, get_session_factory
from rbac.assignments import AssignmentEngine
from rbac.cache import ResolutionCache
from rbac.catalog import BindingService, PermissionCatalog, RoleCatalog
from rbac.directory import UserDirectory
from rbac.gate import AccessGate
from rbac.resolution import RoleResolver
from rbac.seed import seed_defaults
from services.cache_broadcast import create_listener, create_publisher
from services.logging_config import configure_logging

from .api_errors import RequestIDMiddleware, register_exception_handlers
from .routers import (
    assignments_router,
    health_router,
    permissions_router,
    role_permissions_router,
    roles_router,
    users_router,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    db_settings: Optional[DatabaseSettings] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings. If None, loads from environment.
        db_settings: Database settings. If None, loads from environment.
    """
    settings = settings or get_settings()
    db_settings = db_settings or get_database_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(level=settings.log_level, json_output=settings.log_json)

        engine = create_engine(db_settings)
        session_factory = get_session_factory(engine)
        cache = ResolutionCache(
            ttl_seconds=settings.cache_ttl_seconds,
            maxsize=settings.cache_maxsize,
            publisher=create_publisher(settings),
        )
        listener = create_listener(settings, cache)
        resolver = RoleResolver(session_factory, cache)

        if settings.create_schema_on_startup:
            await create_schema(engine)
        if settings.seed_defaults_on_startup:
            await seed_defaults(session_factory)

        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.cache = cache
        app.state.resolver = resolver
        app.state.gate = AccessGate(resolver)
        app.state.assignment_engine = AssignmentEngine(
            session_factory, cache, baseline_role=settings.baseline_role
        )
        app.state.role_catalog = RoleCatalog(session_factory, cache)
        app.state.permission_catalog = PermissionCatalog(session_factory, cache)
        app.state.binding_service = BindingService(session_factory, cache)
        app.state.user_directory = UserDirectory(session_factory)

        if listener is not None:
            listener.start()

        logger.info(
            f"{settings.name} {settings.version} started",
            extra={"environment": settings.environment, "baseline_role": settings.baseline_role},
        )
        try:
            yield
        finally:
            if listener is not None:
                await listener.stop()
            cache.publisher.close()
            await engine.dispose()
            logger.info(f"{settings.name} stopped")

    app = FastAPI(
        title=settings.name,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)

    app.include_router(assignments_router)
    app.include_router(users_router)
    app.include_router(roles_router)
    app.include_router(permissions_router)
    app.include_router(role_permissions_router)
    app.include_router(health_router)

    return app


app = create_app()

"""
Role Expiry Celery Task.

Periodic sweep that deactivates assignments whose ``expires_at`` has passed.
Runs on the Celery beat schedule; safe to run concurrently with requests
and with itself (rows locked by another sweep are skipped). Web workers
learn of the deactivations through the Redis invalidation broadcast, and
stop serving an expired role from cache on their own once it lapses.
"""

import asyncio
import logging
from typing import Dict, Optional

from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.database import DatabaseSettings, get_database_settings
from config.settings import Settings, get_settings
from database.async_engine import create_engine, get_session_factory
from rbac.assignments import AssignmentEngine, ExpirySweepResult
from rbac.cache import ResolutionCache
from services.cache_broadcast import create_publisher

logger = logging.getLogger(__name__)


async def run_expiry_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    cache: ResolutionCache,
    baseline_role: Optional[str] = None,
) -> ExpirySweepResult:
    """Expire overdue assignments through an engine bound to ``session_factory``."""
    baseline_role = baseline_role or get_settings().baseline_role
    engine = AssignmentEngine(session_factory, cache, baseline_role=baseline_role)
    return await engine.expire()


async def _sweep(settings: Settings, db_settings: DatabaseSettings) -> ExpirySweepResult:
    db_engine = create_engine(db_settings)
    # This cache is never read; its invalidations only matter once published
    cache = ResolutionCache(
        ttl_seconds=settings.cache_ttl_seconds,
        maxsize=settings.cache_maxsize,
        publisher=create_publisher(settings),
    )
    try:
        return await run_expiry_sweep(get_session_factory(db_engine), cache, settings.baseline_role)
    finally:
        cache.publisher.close()
        await db_engine.dispose()


@shared_task(name="tasks.role_expiry.expire_role_assignments")
def expire_role_assignments() -> Dict[str, int]:
    """
    Deactivate every active assignment whose expiry has passed.

    Returns:
        ``{"expired": <rows deactivated>, "users": <distinct users affected>}``
    """
    result = asyncio.run(_sweep(get_settings(), get_database_settings()))
    if result.count:
        logger.info(
            f"Expiry sweep deactivated {result.count} assignments",
            extra={"users": len(result.user_ids)},
        )
    return {"expired": result.count, "users": len(result.user_ids)}

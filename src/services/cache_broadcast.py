"""
Redis clients for cross-process cache invalidation.

The web workers and the Celery expiry sweep each hold their own
``ResolutionCache``. With ``APP_CACHE_BROADCAST_ENABLED`` set, every
invalidation is published on Redis and every web worker runs a listener
that applies invalidations published elsewhere.
"""

import logging
from typing import Optional

import redis
import redis.asyncio as aioredis

from config.settings import Settings
from rbac.cache import RedisInvalidationListener, RedisInvalidationPublisher, ResolutionCache

logger = logging.getLogger(__name__)


def create_publisher(settings: Settings) -> RedisInvalidationPublisher:
    """Publisher for ``settings``; disabled (no client) unless broadcasting is on."""
    if not settings.cache_broadcast_enabled:
        return RedisInvalidationPublisher(None, channel=settings.cache_invalidation_channel)

    redis_settings = settings.redis
    client = redis.Redis.from_url(
        redis_settings.url,
        socket_timeout=redis_settings.socket_timeout,
        socket_connect_timeout=redis_settings.socket_timeout,
    )
    logger.info(
        "Cache invalidation broadcast enabled",
        extra={"channel": settings.cache_invalidation_channel, "redis_host": redis_settings.host},
    )
    return RedisInvalidationPublisher(client, channel=settings.cache_invalidation_channel)


def create_listener(settings: Settings, cache: ResolutionCache) -> Optional[RedisInvalidationListener]:
    """Listener applying remote invalidations to ``cache``, or None when broadcasting is off."""
    if not settings.cache_broadcast_enabled:
        return None

    # No socket timeout: the subscription blocks between messages
    client = aioredis.Redis.from_url(
        settings.redis.url,
        socket_connect_timeout=settings.redis.socket_timeout,
    )
    return RedisInvalidationListener(client, cache, channel=settings.cache_invalidation_channel)

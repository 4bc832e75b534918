"""Tests for building the Redis invalidation publisher and listener from settings."""

from unittest.mock import MagicMock, patch

import pytest

from config.settings import Settings
from rbac.cache import RedisInvalidationListener
from services.cache_broadcast import create_listener, create_publisher


@pytest.fixture(autouse=True)
def redis_env(monkeypatch):
    for name in ("REDIS_HOST", "REDIS_PORT", "REDIS_DB", "REDIS_PASSWORD", "REDIS_SSL", "REDIS_SOCKET_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("APP_CACHE_BROADCAST_ENABLED", raising=False)


class TestCreatePublisher:

    def test_disabled_by_default(self):
        publisher = create_publisher(Settings())

        assert publisher.enabled is False
        assert publisher.channel == "rbac:invalidate"

    def test_enabled_uses_redis_url(self, monkeypatch):
        monkeypatch.setenv("REDIS_HOST", "redis.internal")
        monkeypatch.setenv("REDIS_SOCKET_TIMEOUT", "0.5")
        client = MagicMock()

        with patch("services.cache_broadcast.redis.Redis.from_url", return_value=client) as from_url:
            publisher = create_publisher(
                Settings(cache_broadcast_enabled=True, cache_invalidation_channel="rbac:staging")
            )

        assert publisher.enabled is True
        assert publisher.redis is client
        assert publisher.channel == "rbac:staging"
        from_url.assert_called_once_with(
            "redis://redis.internal:6379/0", socket_timeout=0.5, socket_connect_timeout=0.5
        )


class TestCreateListener:

    def test_none_when_disabled(self, cache):
        assert create_listener(Settings(), cache) is None

    def test_bound_to_cache(self, cache):
        with patch("services.cache_broadcast.aioredis.Redis.from_url", return_value=MagicMock()) as from_url:
            listener = create_listener(Settings(cache_broadcast_enabled=True), cache)

        assert isinstance(listener, RedisInvalidationListener)
        assert listener.cache is cache
        assert listener.channel == "rbac:invalidate"
        assert from_url.call_args.args == ("redis://localhost:6379/0",)

"""
Resolution Cache - per-user projections of resolved roles and permissions.

Two independent entries are kept per user:
1. roles: the user's active role rows (``ResolvedRole`` snapshots)
2. permissions: the flattened, de-duplicated permission names

Cache Invalidation:
- Invalidate-on-write: every assignment mutation drops both entries for the
  affected user after its transaction commits; entries are never updated
  in place
- Catalog mutations (role or binding changes) clear everything, since they
  change resolution for an unknown set of users
- A projection built from an expiring assignment stops being served once
  that assignment's expires_at passes
- Invalidations are published on Redis (``rbac:invalidate``) when a
  publisher is attached, and applied by a listener in every web worker
- Entries also lapse after a fixed TTL

The cache is an ordinary object. The web application builds one at startup
and hands the same instance to the resolver, the assignment engine and the
gate; tests build their own with a fake clock.
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# =============================================================================
# CACHE ENTRY
# =============================================================================

@dataclass
class CacheEntry:
    """One cached projection."""
    value: Any
    cached_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """Check if entry has expired."""
        return now >= self.expires_at


# =============================================================================
# PROCESS-LEVEL CACHE (LRU with TTL)
# =============================================================================

class TTLCache:
    """
    Thread-safe LRU cache with TTL expiration.

    Time is read from the injected ``clock`` so expiry can be driven
    deterministically in tests.
    """

    def __init__(self, maxsize: int = 1000, ttl_seconds: float = 300, clock: Clock = time.monotonic):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Dict[Any, CacheEntry] = {}
        self._access_order: List[Any] = []
        self._lock = threading.RLock()

    def get(self, key: Any) -> Optional[CacheEntry]:
        """Get entry from cache."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if entry.is_expired(self._clock()):
                self._remove(key)
                return None

            # Move to end (LRU)
            if key in self._access_order:
                self._access_order.remove(key)
            self._access_order.append(key)

            return entry

    def set(self, key: Any, value: Any) -> None:
        """Set entry in cache."""
        with self._lock:
            if key in self._cache:
                self._remove(key)

            # Evict if at capacity
            while len(self._cache) >= self.maxsize:
                if self._access_order:
                    oldest = self._access_order.pop(0)
                    self._cache.pop(oldest, None)
                else:
                    break

            now = self._clock()
            self._cache[key] = CacheEntry(
                value=value,
                cached_at=now,
                expires_at=now + self.ttl_seconds,
            )
            self._access_order.append(key)

    def invalidate(self, key: Any) -> bool:
        """Remove entry from cache. Returns True if something was removed."""
        with self._lock:
            return self._remove(key)

    def clear(self) -> int:
        """Clear all entries."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._access_order.clear()
            return count

    def _remove(self, key: Any) -> bool:
        """Remove a key (must hold lock)."""
        removed = self._cache.pop(key, None) is not None
        if key in self._access_order:
            self._access_order.remove(key)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._cache),
                "maxsize": self.maxsize,
                "ttl_seconds": self.ttl_seconds,
            }


# =============================================================================
# RESOLUTION CACHE
# =============================================================================

ROLES = "roles"
PERMISSIONS = "permissions"

USER_SCOPE = "user"
ALL_SCOPE = "all"


@dataclass(frozen=True)
class Projection:
    """A cached value and the wall-clock time after which it no longer holds."""
    value: Any
    valid_until: Optional[datetime] = None

    def is_stale(self, now: Optional[datetime]) -> bool:
        return self.valid_until is not None and now is not None and now >= self.valid_until


class ResolutionCache:
    """
    Per-user cache of resolved roles and permissions.

    Empty results are never stored, so a user who has just been granted
    their first role is never served a cached "no roles" answer.

    Every invalidation bumps ``version``. A reader captures the version
    before it queries and passes it back when storing; if an invalidation
    landed in between, the freshly computed value may predate the commit
    and is dropped instead of cached.

    A projection may carry ``valid_until`` (the earliest assignment expiry
    behind it). Reads that pass ``now`` at or after that instant see a miss,
    whether or not an expiry sweep has run yet.

    When a ``publisher`` is attached, local invalidations are also
    broadcast so caches in other processes drop the same entries.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        maxsize: int = 10000,
        clock: Clock = time.monotonic,
        publisher: Optional["RedisInvalidationPublisher"] = None,
    ):
        self._store = TTLCache(maxsize=maxsize, ttl_seconds=ttl_seconds, clock=clock)
        self._version = 0
        self._version_lock = threading.Lock()
        self.publisher = publisher

    @property
    def ttl_seconds(self) -> float:
        return self._store.ttl_seconds

    @property
    def version(self) -> int:
        return self._version

    def get_roles(self, user_id: int, now: Optional[datetime] = None) -> Optional[Tuple[Any, ...]]:
        return self._get((ROLES, user_id), now)

    def set_roles(
        self,
        user_id: int,
        roles: Tuple[Any, ...],
        version: Optional[int] = None,
        valid_until: Optional[datetime] = None,
    ) -> bool:
        return self._set((ROLES, user_id), tuple(roles), version, valid_until)

    def get_permissions(self, user_id: int, now: Optional[datetime] = None) -> Optional[FrozenSet[str]]:
        return self._get((PERMISSIONS, user_id), now)

    def set_permissions(
        self,
        user_id: int,
        permissions: FrozenSet[str],
        version: Optional[int] = None,
        valid_until: Optional[datetime] = None,
    ) -> bool:
        return self._set((PERMISSIONS, user_id), frozenset(permissions), version, valid_until)

    def invalidate_user(self, user_id: int, broadcast: bool = True) -> int:
        """Drop both projections for one user."""
        with self._version_lock:
            self._version += 1
            count = int(self._store.invalidate((ROLES, user_id)))
            count += int(self._store.invalidate((PERMISSIONS, user_id)))
        logger.debug(f"Invalidated {count} cache entries for user {user_id}")
        if broadcast and self.publisher is not None:
            self.publisher.publish(USER_SCOPE, user_id)
        return count

    def clear(self, broadcast: bool = True) -> int:
        """Drop every entry."""
        with self._version_lock:
            self._version += 1
            count = self._store.clear()
        logger.info("Cleared resolution cache", extra={"entries": count})
        if broadcast and self.publisher is not None:
            self.publisher.publish(ALL_SCOPE)
        return count

    def apply_invalidation(self, message: Dict[str, Any]) -> bool:
        """
        Apply an invalidation received from another process.

        Messages this cache published itself are ignored. Returns True when
        the message was applied.
        """
        if self.publisher is not None and message.get("origin") == self.publisher.origin:
            return False

        scope = message.get("scope")
        if scope == ALL_SCOPE:
            self.clear(broadcast=False)
            return True
        if scope == USER_SCOPE and isinstance(message.get("user_id"), int):
            self.invalidate_user(message["user_id"], broadcast=False)
            return True

        logger.warning(f"Ignoring malformed invalidation message: {message!r}")
        return False

    def stats(self) -> Dict[str, Any]:
        stats = self._store.stats()
        stats["version"] = self._version
        stats["broadcast"] = self.publisher is not None and self.publisher.enabled
        return stats

    def _get(self, key: Tuple[str, int], now: Optional[datetime]) -> Any:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.value.is_stale(now):
            self._store.invalidate(key)
            return None
        return entry.value.value

    def _set(self, key: Tuple[str, int], value: Any, version: Optional[int], valid_until: Optional[datetime]) -> bool:
        if not value:
            return False
        with self._version_lock:
            if version is not None and version != self._version:
                return False
            self._store.set(key, Projection(value, valid_until))
        return True


# =============================================================================
# CROSS-PROCESS INVALIDATION (REDIS PUB/SUB)
# =============================================================================

INVALIDATION_CHANNEL = "rbac:invalidate"


class RedisInvalidationPublisher:
    """
    Publishes cache invalidations for other workers.

    Optional - with no client every call is a no-op, and Redis errors are
    logged rather than raised so a broker outage never fails a committed
    write.
    """

    def __init__(
        self,
        redis_client: Any = None,
        channel: str = INVALIDATION_CHANNEL,
        origin: Optional[str] = None,
    ):
        self.redis = redis_client
        self.channel = channel
        self.origin = origin or uuid.uuid4().hex
        self._enabled = redis_client is not None

    @property
    def enabled(self) -> bool:
        """Check if Redis is available."""
        return self._enabled

    def publish(self, scope: str, user_id: Optional[int] = None) -> None:
        """Publish an invalidation for one user or, with ``ALL_SCOPE``, for everyone."""
        if not self._enabled:
            return

        try:
            message = json.dumps({"scope": scope, "user_id": user_id, "origin": self.origin, "ts": time.time()})
            self.redis.publish(self.channel, message)
        except Exception as e:
            logger.warning(f"Redis publish error: {e}")

    def close(self) -> None:
        if self._enabled:
            self.redis.close()


class RedisInvalidationListener:
    """
    Subscribes to the invalidation channel and applies messages to a cache.

    ``redis_client`` is an asyncio client (``redis.asyncio.Redis``). The
    listener runs as a background task between ``start()`` and ``stop()``.
    """

    def __init__(self, redis_client: Any, cache: ResolutionCache, channel: str = INVALIDATION_CHANNEL):
        self.redis = redis_client
        self.cache = cache
        self.channel = channel
        self._task: Optional[asyncio.Task] = None

    def handle(self, message: Dict[str, Any]) -> bool:
        """Apply one pub/sub message. Subscribe confirmations and bad payloads are skipped."""
        if message.get("type") != "message":
            return False

        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            payload = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Undecodable invalidation message: {e}")
            return False
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring malformed invalidation message: {payload!r}")
            return False
        return self.cache.apply_invalidation(payload)

    async def run(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info(f"Listening for cache invalidations on {self.channel}")
        try:
            async for message in pubsub.listen():
                self.handle(message)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name="rbac-cache-invalidation")
        self._task.add_done_callback(self._on_done)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        await self.redis.aclose()

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Local TTL still bounds staleness after this
            logger.error(f"Cache invalidation listener stopped: {exc}", exc_info=exc)

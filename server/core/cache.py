"""Cache service with Redis (production) or in-process memory backend.

Redis is used when REDIS_ENABLED=true and the server answers a ping;
otherwise a single-process memory store stands in. The flow job queue
and the step result cache both sit on top of this service.
"""

import heapq
import json
import time
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from core.config import Settings
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)


class CacheService:
    """Async cache service with Redis or memory backend.

    Backend selection:
    - Redis: When REDIS_ENABLED=true and Redis is reachable
    - Memory: When Redis is disabled or unreachable (single process only)
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.redis: Optional[redis.Redis] = None
        self.use_redis = settings.redis_enabled and bool(settings.redis_url)
        # key -> (value, expires_at or None)
        self.memory_cache: Dict[str, Tuple[Any, Optional[float]]] = {}
        # (expires_at, key) min-heap; entries for overwritten keys go stale and are skipped
        self.memory_expiry: List[Tuple[float, str]] = []
        self.memory_lists: Dict[str, List[Any]] = {}

    async def startup(self):
        """Initialize cache connection."""
        if self.use_redis:
            try:
                self.redis = redis.from_url(
                    self.settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                    retry_on_timeout=True
                )

                await self.redis.ping()
                logger.info("Redis cache initialized", url=self.settings.redis_url)

            except Exception as e:
                logger.warning("Redis connection failed, falling back to memory", error=str(e))
                self.use_redis = False
                self.redis = None
        else:
            logger.info("Using in-memory cache", redis_enabled=self.settings.redis_enabled)

    async def shutdown(self):
        """Close cache connections."""
        if self.redis:
            await self.redis.aclose()
            logger.info("Redis cache connections closed")

        self.memory_cache.clear()
        self.memory_expiry.clear()
        self.memory_lists.clear()

    def is_redis_available(self) -> bool:
        return self.use_redis and self.redis is not None

    @property
    def backend(self) -> str:
        return "redis" if self.is_redis_available() else "memory"

    def _memory_get(self, key: str) -> Any:
        entry = self.memory_cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.time():
            del self.memory_cache[key]
            return None
        return value

    def _memory_evict_expired(self, now: float) -> int:
        """Drop every memory entry whose TTL has passed."""
        evicted = 0
        while self.memory_expiry and self.memory_expiry[0][0] <= now:
            expires_at, key = heapq.heappop(self.memory_expiry)
            entry = self.memory_cache.get(key)
            if entry is not None and entry[1] == expires_at:
                del self.memory_cache[key]
                evicted += 1
        return evicted

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        try:
            if self.is_redis_available():
                value = await self.redis.get(key)
                log_cache_operation(logger, "get", key, hit=value is not None)
                return json.loads(value) if value is not None else None

            value = self._memory_get(key)
            log_cache_operation(logger, "get", key, hit=value is not None)
            return value

        except Exception as e:
            logger.error("Cache get failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with optional TTL (seconds)."""
        try:
            ttl = ttl or self.settings.cache_ttl

            if self.is_redis_available():
                serialized = json.dumps(value, default=str)
                await self.redis.setex(key, ttl, serialized)
            else:
                now = time.time()
                self._memory_evict_expired(now)
                expires_at = now + ttl
                self.memory_cache[key] = (value, expires_at)
                heapq.heappush(self.memory_expiry, (expires_at, key))

            log_cache_operation(logger, "set", key, ttl=ttl)
            return True

        except Exception as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        try:
            if self.is_redis_available():
                deleted = bool(await self.redis.delete(key))
            else:
                deleted = self.memory_cache.pop(key, None) is not None

            log_cache_operation(logger, "delete", key, deleted=deleted)
            return deleted

        except Exception as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        try:
            if self.is_redis_available():
                return bool(await self.redis.exists(key))
            return self._memory_get(key) is not None

        except Exception as e:
            logger.error("Cache exists check failed", key=key, error=str(e))
            return False

    # ============================================================================
    # List Methods (dead letter storage)
    # ============================================================================

    async def list_push(self, key: str, value: Any, max_length: int = 1000) -> bool:
        """Prepend ``value`` to the list at ``key``, keeping at most ``max_length`` items."""
        try:
            if self.is_redis_available():
                await self.redis.lpush(key, json.dumps(value, default=str))
                await self.redis.ltrim(key, 0, max_length - 1)
            else:
                items = self.memory_lists.setdefault(key, [])
                items.insert(0, value)
                del items[max_length:]

            log_cache_operation(logger, "list_push", key)
            return True

        except Exception as e:
            logger.error("Cache list push failed", key=key, error=str(e))
            return False

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Any]:
        """Items of the list at ``key`` from ``start`` to ``end`` inclusive."""
        try:
            if self.is_redis_available():
                raw = await self.redis.lrange(key, start, end)
                return [json.loads(item) for item in raw]

            items = self.memory_lists.get(key, [])
            stop = None if end == -1 else end + 1
            return list(items[start:stop])

        except Exception as e:
            logger.error("Cache list range failed", key=key, error=str(e))
            return []

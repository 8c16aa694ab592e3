"""
Key-value store adapter shared by the rate limiter, response cache and
subscription gate.

The pipeline only relies on per-key atomic operations (INCR, SET with
expiry, SET NX) so any networked store offering them can stand in for Redis.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import redis.asyncio as redis

from shared.logging import get_logger

_GLOB_SPECIALS = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape glob metacharacters so ``value`` matches only itself."""
    return "".join(f"\\{char}" if char in _GLOB_SPECIALS else char for char in value)


class KeyValueStore(ABC):
    """Contract every backing store must satisfy."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored string or None."""

    @abstractmethod
    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store ``value`` only if ``key`` is missing; return whether it was stored."""

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Atomically increment the integer at ``key`` and return the new value."""

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> None:
        """Set a time to live on an existing key."""

    @abstractmethod
    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob-style pattern; return the count."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete the given keys; return how many existed."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisKeyValueStore(KeyValueStore):
    """Redis implementation using ``redis.asyncio``."""

    SCAN_BATCH_SIZE = 500

    def __init__(self, redis_url: str, *, socket_timeout: float = 1.0):
        self.redis_url = redis_url
        self.logger = get_logger("gateway.kv_store")
        self._redis = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
            health_check_interval=30,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(key, max(1, int(ttl_seconds)), value)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._redis.set(key, value, ex=max(1, int(ttl_seconds)), nx=True))

    async def increment(self, key: str) -> int:
        return int(await self._redis.incr(key))

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._redis.expire(key, max(1, int(ttl_seconds)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete matching keys using SCAN so large keyspaces never block Redis."""
        removed = 0
        batch: List[str] = []
        async for key in self._redis.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
            batch.append(key)
            if len(batch) >= self.SCAN_BATCH_SIZE:
                removed += await self.delete(*batch)
                batch = []
        if batch:
            removed += await self.delete(*batch)

        self.logger.debug("Deleted keys by pattern", pattern=pattern, keys_count=removed)
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as exc:
            self.logger.warning("Redis ping failed", error=str(exc))
            return False

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except Exception as exc:  # pragma: no cover - close is best effort
            self.logger.debug("Redis close failed", error=str(exc))

"""
Response cache for idempotent GET requests.
"""

import asyncio
import json
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING

from shared.logging import get_logger

from ..adapters.kv_store import KeyValueStore, escape_glob
from .cache_keys import build_cache_key, namespace_for_path

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..domain.context import RequestContext


CACHE_TTL_SHORT = 300
CACHE_TTL_MEDIUM = 1800
CACHE_TTL_LONG = 86400

KEY_PATTERNS = {
    "user": "user:*",
    "recipe": "recipe:*",
    "ingredient": "ingredient:*",
    "search": "search:*",
    "analytics": "analytics:*",
}

# Headers that describe one particular delivery rather than the resource.
_UNCACHED_HEADERS = frozenset({
    "content-length",
    "date",
    "server",
    "set-cookie",
    "x-cache",
    "x-cache-age",
    "x-request-id",
    "x-ratelimit-limit",
    "x-ratelimit-remaining",
    "x-ratelimit-reset",
})


@dataclass(frozen=True)
class CachePolicy:
    """Per-route cache options."""

    ttl_seconds: Optional[int] = None
    namespace: Optional[str] = None
    condition: Optional[Callable[["RequestContext"], bool]] = None
    vary_by_user: bool = True


@dataclass(frozen=True)
class CacheEntry:
    """A stored 2xx response."""

    status_code: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)
    created_at: float = 0.0

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.created_at)

    def to_json(self) -> str:
        return json.dumps({
            "statusCode": self.status_code,
            "body": self.body,
            "headers": self.headers,
            "createdAt": self.created_at,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            status_code=int(data["statusCode"]),
            body=data["body"],
            headers=dict(data.get("headers") or {}),
            created_at=float(data["createdAt"]),
        )


def is_cacheable_status(status_code: int) -> bool:
    return 200 <= status_code < 300


class ResponseCache:
    """Stores and replays GET responses keyed by a request digest."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key_prefix: str = "cache:",
        default_ttl: int = CACHE_TTL_SHORT,
        timeout: float = 0.25,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.response_cache")
        self._clock = clock
        self._stats = {"hits": 0, "misses": 0, "stale": 0, "stores": 0, "errors": 0, "invalidated": 0}

    def full_key(self, key: str) -> str:
        if self.key_prefix and key.startswith(self.key_prefix):
            return key
        return f"{self.key_prefix}{key}"

    def ttl_for(self, policy: CachePolicy) -> int:
        return policy.ttl_seconds or self.default_ttl

    def is_cacheable(self, context: "RequestContext", policy: CachePolicy) -> bool:
        if context.method.upper() != "GET":
            return False
        if policy.condition is None:
            return True
        try:
            return bool(policy.condition(context))
        except Exception as e:
            self.logger.error("Cache condition failed; bypassing cache", path=context.path, error=str(e))
            return False

    def key_for(self, context: "RequestContext", policy: CachePolicy) -> str:
        namespace = policy.namespace or namespace_for_path(context.path)
        key = build_cache_key(
            namespace,
            context.method,
            context.path,
            context.query,
            context.body,
            context.user_id if policy.vary_by_user else None,
        )
        return self.full_key(key)

    def _record(self, event: str, key: str) -> None:
        if not self.metrics:
            return
        namespace = key[len(self.key_prefix):].split(":", 1)[0] if key.startswith(self.key_prefix) else "unknown"
        self.metrics.increment_counter("response_cache_events_total", namespace=namespace, event=event)

    def _record_error(self, key: str) -> None:
        self._stats["errors"] += 1
        self._record("error", key)
        if self.metrics:
            self.metrics.record_store_error("response_cache")

    async def lookup(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[CacheEntry]:
        """Return a fresh entry or None; stale entries are deleted on sight."""
        ttl = ttl_seconds or self.default_ttl
        try:
            raw = await asyncio.wait_for(self.store.get(key), timeout=self.timeout)
        except Exception as e:
            self.logger.error("Cache lookup error; serving uncached", key=key, error=str(e) or type(e).__name__)
            self._record_error(key)
            return None

        if raw is None:
            self._stats["misses"] += 1
            self._record("miss", key)
            self.logger.debug("Cache miss", key=key)
            return None

        try:
            entry = CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            await self._delete_quietly(key)
            self._stats["misses"] += 1
            return None

        if entry.age_seconds(self._clock()) > ttl:
            self._stats["stale"] += 1
            self._stats["misses"] += 1
            self._record("stale", key)
            self.logger.debug("Evicting stale cache entry", key=key, age=entry.age_seconds(self._clock()), ttl=ttl)
            await self._delete_quietly(key)
            return None

        self._stats["hits"] += 1
        self._record("hit", key)
        self.logger.debug("Cache hit", key=key, size=len(entry.body))
        return entry

    async def store_response(
        self,
        key: str,
        status_code: int,
        body: bytes,
        headers: Mapping[str, str],
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Persist a 2xx JSON response; anything else is ignored."""
        if not is_cacheable_status(status_code):
            return False

        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
        if "json" not in content_type.lower():
            return False

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return False

        entry = CacheEntry(
            status_code=status_code,
            body=text,
            headers={k.lower(): v for k, v in headers.items() if k.lower() not in _UNCACHED_HEADERS},
            created_at=self._clock(),
        )
        ttl = ttl_seconds or self.default_ttl

        try:
            await asyncio.wait_for(self.store.set_with_expiry(key, entry.to_json(), ttl), timeout=self.timeout)
        except Exception as e:
            self.logger.error("Failed to cache response", key=key, error=str(e) or type(e).__name__)
            self._record_error(key)
            return False

        self._stats["stores"] += 1
        self._record("store", key)
        self.logger.debug("Cached response", key=key, size=len(text), ttl=ttl)
        return True

    async def _delete_quietly(self, key: str) -> None:
        try:
            await asyncio.wait_for(self.store.delete(key), timeout=self.timeout)
        except Exception as e:
            self.logger.error("Failed to evict cache entry", key=key, error=str(e) or type(e).__name__)
            self._record_error(key)

    async def invalidate(self, pattern: str) -> int:
        """Delete every entry matching a namespace pattern such as ``recipe:*``."""
        full_pattern = f"{escape_glob(self.key_prefix)}{pattern}" if not pattern.startswith(self.key_prefix) else pattern
        try:
            removed = await asyncio.wait_for(self.store.delete_by_pattern(full_pattern), timeout=self.timeout)
        except Exception as e:
            self.logger.error("Cache invalidation failed", pattern=pattern, error=str(e) or type(e).__name__)
            self._record_error(full_pattern)
            return 0

        self._stats["invalidated"] += removed
        self._record("invalidate", full_pattern)
        self.logger.info("Cache invalidated", pattern=pattern, keys_removed=removed)
        return removed

    async def batch_get(self, keys: Sequence[str]) -> List[Optional[Any]]:
        """Fetch several warmed values; missing or unreadable keys yield None."""
        async def _one(key: str) -> Optional[Any]:
            try:
                raw = await asyncio.wait_for(self.store.get(self.full_key(key)), timeout=self.timeout)
                return json.loads(raw) if raw is not None else None
            except Exception as e:
                self.logger.error("Batch cache get error", key=key, error=str(e) or type(e).__name__)
                self._record_error(self.full_key(key))
                return None

        results = await asyncio.gather(*(_one(key) for key in keys))
        self.logger.debug("Batch cache get", keys=len(keys), hits=sum(1 for r in results if r is not None))
        return list(results)

    async def warm(self, key: str, ttl_seconds: int, producer: Callable[[], Awaitable[Any]]) -> Any:
        """Compute a value and prefetch it under ``key``; store errors are swallowed."""
        data = await producer()
        if data:
            try:
                await asyncio.wait_for(
                    self.store.set_with_expiry(self.full_key(key), json.dumps(data, default=str), ttl_seconds),
                    timeout=self.timeout,
                )
                self.logger.info("Cache warmed", key=key, ttl=ttl_seconds)
            except Exception as e:
                self.logger.error("Cache warm error", key=key, error=str(e) or type(e).__name__)
                self._record_error(self.full_key(key))
        return data

    def stats(self) -> Dict[str, Any]:
        """Process-local counters since start-up."""
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            "default_ttl": self.default_ttl,
            "key_prefix": self.key_prefix,
            "patterns": dict(KEY_PATTERNS),
        }


def cache_age_header(entry: CacheEntry, now: float) -> str:
    return str(math.floor(entry.age_seconds(now)))

"""
Token bucket rate limiter for Gateway service.

Buckets refill all at once when their window elapses rather than
trickling tokens back, which matches window counters as seen by clients.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, TYPE_CHECKING

from shared.logging import get_logger

from ..adapters.kv_store import KeyValueStore, escape_glob
from .route_classes import DEFAULT_ROUTE_CLASS, DEFAULT_ROUTE_CLASSES, RouteClassConfig

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one ``check_and_consume`` call."""

    allowed: bool
    retry_after_seconds: int
    remaining: int
    limit: int
    reset_in_seconds: int
    route_class: str
    message: str = ""
    error: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in_seconds),
        }


class TokenBucketRateLimiter:
    """Distributed token bucket rate limiter over a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore,
        route_classes: Optional[Mapping[str, RouteClassConfig]] = None,
        *,
        key_prefix: str = "rate_limit",
        timeout: float = 0.25,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.route_classes: Dict[str, RouteClassConfig] = dict(route_classes or DEFAULT_ROUTE_CLASSES)
        self.key_prefix = key_prefix
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")
        self._clock = clock

    def get_route_class(self, route_class: str) -> RouteClassConfig:
        config = self.route_classes.get(route_class)
        if config is None:
            config = self.route_classes[DEFAULT_ROUTE_CLASS]
        return config

    def _window_key(self, client_key: str, route_class: str) -> str:
        return f"{self.key_prefix}:{route_class}:{client_key}:window"

    def _count_key(self, client_key: str, route_class: str, window_start: int) -> str:
        return f"{self.key_prefix}:{route_class}:{client_key}:{window_start}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _bucket_ttl(config: RouteClassConfig) -> int:
        # Buckets outlive their window so a late reader still sees the count.
        return max(1, math.ceil(2 * config.window_ms / 1000))

    @staticmethod
    def _seconds_until_reset(config: RouteClassConfig, window_start: int, now_ms: int) -> int:
        remaining_ms = window_start + config.window_ms - now_ms
        return max(1, math.ceil(remaining_ms / 1000))

    async def check_and_consume(self, client_key: str, route_class: str) -> RateLimitDecision:
        """Draw one token for ``client_key`` from the ``route_class`` bucket."""
        config = self.get_route_class(route_class)
        now_ms = self._now_ms()

        try:
            decision = await asyncio.wait_for(self._consume(client_key, config, now_ms), timeout=self.timeout)
        except Exception as e:
            error = str(e) or type(e).__name__
            self.logger.error(
                "Rate limit check error; admitting request",
                client_key=client_key,
                route_class=config.name,
                error=error,
            )
            if self.metrics:
                self.metrics.record_store_error("rate_limiter")
            return RateLimitDecision(
                allowed=True,
                retry_after_seconds=0,
                remaining=config.max_tokens,
                limit=config.max_tokens,
                reset_in_seconds=math.ceil(config.window_seconds),
                route_class=config.name,
                message=config.message,
                error=error,
            )

        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                route_class=config.name,
                decision="allowed" if decision.allowed else "rejected",
            )
        return decision

    async def _consume(self, client_key: str, config: RouteClassConfig, now_ms: int) -> RateLimitDecision:
        ttl = self._bucket_ttl(config)
        window_key = self._window_key(client_key, config.name)

        window_start = _parse_int(await self.store.get(window_key))
        if window_start is None or now_ms - window_start >= config.window_ms:
            window_start = await self._start_window(window_key, window_start, config, now_ms)

        count_key = self._count_key(client_key, config.name, window_start)
        # Rejected calls are counted too; a client hammering a full bucket
        # keeps drawing against it until the window resets.
        count = await self.store.increment(count_key)
        if count == 1:
            await self.store.expire(count_key, ttl)

        reset_in = self._seconds_until_reset(config, window_start, now_ms)
        allowed = count <= config.capacity

        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_key=client_key,
                route_class=config.name,
                current_count=count,
                limit=config.capacity,
                retry_after=reset_in,
            )

        return RateLimitDecision(
            allowed=allowed,
            retry_after_seconds=0 if allowed else reset_in,
            remaining=max(0, config.max_tokens - count),
            limit=config.max_tokens,
            reset_in_seconds=reset_in,
            route_class=config.name,
            message=config.message,
        )

    async def _start_window(
        self,
        window_key: str,
        previous_start: Optional[int],
        config: RouteClassConfig,
        now_ms: int,
    ) -> int:
        """Open the next window, agreeing on one start across concurrent callers.

        Every caller that saw the same elapsed (or missing) window races for a
        single claim key; the winner's start is adopted by everyone else, so
        all their draws land on one counter.
        """
        claim_key = f"{window_key}:{'new' if previous_start is None else previous_start}"
        claim_ttl = max(1, math.ceil(config.window_ms / 1000))
        if await self.store.set_if_absent(claim_key, str(now_ms), claim_ttl):
            await self.store.set_with_expiry(window_key, str(now_ms), self._bucket_ttl(config))
            return now_ms

        claimed = _parse_int(await self.store.get(claim_key))
        return now_ms if claimed is None else claimed

    async def _read_status(self, client_key: str, config: RouteClassConfig, now_ms: int):
        window_start = _parse_int(await self.store.get(self._window_key(client_key, config.name)))
        if window_start is None or now_ms - window_start >= config.window_ms:
            return 0, math.ceil(config.window_seconds)
        count = _parse_int(await self.store.get(self._count_key(client_key, config.name, window_start))) or 0
        return count, self._seconds_until_reset(config, window_start, now_ms)

    async def get_status(self, client_key: str, route_class: str) -> Dict[str, object]:
        """Read a bucket without drawing from it."""
        config = self.get_route_class(route_class)
        now_ms = self._now_ms()

        try:
            count, reset_in = await asyncio.wait_for(
                self._read_status(client_key, config, now_ms), timeout=self.timeout
            )
        except Exception as e:
            self.logger.error("Rate limit status error", client_key=client_key, error=str(e) or type(e).__name__)
            return {"error": "Rate limit store unavailable", "route_class": config.name}

        return {
            "route_class": config.name,
            "current_count": count,
            "limit": config.max_tokens,
            "burst_allowance": config.burst_allowance,
            "remaining": max(0, config.max_tokens - count),
            "reset_in_seconds": reset_in,
        }

    async def reset(self, client_key: str, route_class: str) -> int:
        """Drop every key of a bucket; the next request starts a fresh window."""
        config = self.get_route_class(route_class)
        pattern = f"{self.key_prefix}:{config.name}:{escape_glob(client_key)}:*"
        removed = await asyncio.wait_for(self.store.delete_by_pattern(pattern), timeout=self.timeout)
        self.logger.info("Rate limit reset", client_key=client_key, route_class=config.name, keys_removed=removed)
        return removed


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

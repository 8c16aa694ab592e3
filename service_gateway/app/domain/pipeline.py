"""
Request pipeline: rate limit, cache, gate, then the route handler.

The pipeline is framework-neutral. It takes a ``RequestContext``, the
route's ``RoutePolicy`` and an async handler, and returns a
``PipelineResponse``; adapting to HTTP lives in ``pipeline_middleware``.
"""

import json
import time
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from shared.errors import AccessLayerException, RateLimitError
from shared.logging import get_logger

from ..caching.response_cache import ResponseCache, cache_age_header
from ..ratelimit.token_bucket import TokenBucketRateLimiter
from ..subscriptions.gate import SubscriptionGate
from .context import RequestContext
from .route_policy import GateMode, GateRequirement, RoutePolicy

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class PipelineResponse:
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def json(cls, status_code: int, payload: Any, headers: Optional[Dict[str, str]] = None) -> "PipelineResponse":
        merged = {"content-type": "application/json"}
        merged.update(headers or {})
        return cls(status_code, json.dumps(payload).encode("utf-8"), merged)


Handler = Callable[[RequestContext], Awaitable[PipelineResponse]]


class RequestPipeline:
    """Runs every request through the limiter, cache and gate in order."""

    def __init__(
        self,
        rate_limiter: TokenBucketRateLimiter,
        response_cache: ResponseCache,
        subscription_gate: SubscriptionGate,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.rate_limiter = rate_limiter
        self.response_cache = response_cache
        self.subscription_gate = subscription_gate
        self.metrics = metrics
        self.logger = get_logger("gateway.pipeline")
        self._clock = clock

    def _stage(self, name: str):
        return self.metrics.time_stage(name) if self.metrics else nullcontext()

    async def handle(self, context: RequestContext, policy: RoutePolicy, handler: Handler) -> PipelineResponse:
        with self._stage("rate_limit"):
            decision = await self.rate_limiter.check_and_consume(context.rate_limit_key, policy.route_class)
        context = replace(context, route_class=decision.route_class)
        limit_headers = decision.headers()

        if not decision.allowed:
            return self._error_response(
                RateLimitError(decision.retry_after_seconds, decision.message),
                context,
                limit_headers,
            )

        cache_policy = policy.cache
        cache_key = None
        if cache_policy is not None and self.response_cache.is_cacheable(context, cache_policy):
            cache_key = self.response_cache.key_for(context, cache_policy)
            context = replace(context, cache_key=cache_key)
            with self._stage("cache_lookup"):
                entry = await self.response_cache.lookup(cache_key, self.response_cache.ttl_for(cache_policy))
            if entry is not None:
                headers = dict(entry.headers)
                headers.update(limit_headers)
                headers["X-Cache"] = "HIT"
                headers["X-Cache-Age"] = cache_age_header(entry, self._clock())
                return PipelineResponse(entry.status_code, entry.body.encode("utf-8"), headers)

        try:
            with self._stage("subscription_gate"):
                context = await self._apply_gate(context, policy.gate)
        except AccessLayerException as e:
            return self._error_response(e, context, limit_headers)

        response = await handler(context)

        if cache_key is not None:
            with self._stage("cache_store"):
                await self.response_cache.store_response(
                    cache_key,
                    response.status_code,
                    response.body,
                    response.headers,
                    self.response_cache.ttl_for(cache_policy),
                )
            response.headers["X-Cache"] = "MISS"

        response.headers.update(limit_headers)
        return response

    async def _apply_gate(self, context: RequestContext, gate: Optional[GateRequirement]) -> RequestContext:
        if gate is None:
            return context
        if gate.mode is GateMode.STATUS:
            return await self.subscription_gate.check_subscription_status(context)
        if gate.mode is GateMode.PREMIUM:
            return await self.subscription_gate.require_premium_access(context)
        if gate.mode is GateMode.ROLE:
            return await self.subscription_gate.require_any_role(context, gate.roles)
        if gate.mode is GateMode.FEATURE:
            return await self.subscription_gate.require_feature(context, gate.feature or "")
        raise ValueError(f"Unknown gate mode: {gate.mode}")

    def _error_response(
        self,
        error: AccessLayerException,
        context: RequestContext,
        extra_headers: Dict[str, str],
    ) -> PipelineResponse:
        self.logger.info(
            "Request short-circuited",
            path=context.path,
            status_code=error.status_code,
            code=error.code,
            route_class=context.route_class,
        )
        if self.metrics:
            self.metrics.record_error(error.code)
        headers = dict(extra_headers)
        headers.update(error.headers())
        return PipelineResponse.json(error.status_code, error.to_response(), headers)

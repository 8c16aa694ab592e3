"""
Recipe Access Gateway service.
"""

import os
import time
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Depends, Query
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import ServiceConfig
from shared.errors import BackingStoreError

from .adapters.accounts_client import AccountLookup, AccountsClient
from .adapters.kv_store import KeyValueStore, RedisKeyValueStore
from .auth.tokens import TokenVerifier
from .caching.response_cache import CACHE_TTL_SHORT, CachePolicy, ResponseCache
from .domain.context import RequestContext
from .domain.pipeline import RequestPipeline
from .domain.pipeline_middleware import PipelineMiddleware, get_request_context
from .domain.route_policy import GateRequirement, RoutePolicy, RouteTable
from .ratelimit.route_classes import load_route_classes
from .ratelimit.token_bucket import TokenBucketRateLimiter
from .subscriptions.gate import SubscriptionGate, utc_now
from .subscriptions.models import AccountRole

ADMIN_PREFIX = "/api/v1/admin"


class CacheInvalidationRequest(BaseModel):
    pattern: str = Field(..., min_length=1, description="Namespace pattern such as recipe:*")


def default_route_table() -> RouteTable:
    """Route policies for the recipe backend's public surface."""
    admin_only = RoutePolicy(route_class="admin", gate=GateRequirement.any_role(AccountRole.ADMIN.value))
    return (
        RouteTable()
        .add(ADMIN_PREFIX, admin_only)
        .add("/api/v1/auth", RoutePolicy(route_class="auth"))
        .add("/api/v1/subscription", RoutePolicy(route_class="api", gate=GateRequirement.status()))
        .add("/api/v1/search", RoutePolicy(
            route_class="search",
            cache=CachePolicy(ttl_seconds=CACHE_TTL_SHORT, namespace="search"),
        ), methods=["GET"])
        .add("/api/v1/recipes/import", RoutePolicy(route_class="scraping", gate=GateRequirement.premium()))
        .add("/api/v1/recipes", RoutePolicy(
            route_class="public",
            cache=CachePolicy(ttl_seconds=CACHE_TTL_SHORT, namespace="recipe", vary_by_user=False),
        ), methods=["GET"])
        .add("/api/v1/ingredients", RoutePolicy(
            route_class="public",
            cache=CachePolicy(ttl_seconds=CACHE_TTL_SHORT, namespace="ingredient", vary_by_user=False),
        ), methods=["GET"])
        .add("/api/v1/meal-plans", RoutePolicy(gate=GateRequirement.for_feature("meal_planning")))
        .add("/api/v1/analytics", RoutePolicy(
            route_class="medium",
            cache=CachePolicy(ttl_seconds=CACHE_TTL_SHORT, namespace="analytics"),
            gate=GateRequirement.premium(),
        ))
    )


class GatewayService(BaseService):
    """Gateway service wiring the request pipeline in front of route handlers."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[KeyValueStore] = None,
        accounts: Optional[AccountLookup] = None,
        token_verifier: Optional[TokenVerifier] = None,
        route_table: Optional[RouteTable] = None,
        clock: Callable[[], float] = time.time,
        now: Callable = utc_now,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.store = store
        self.accounts = accounts
        self.token_verifier = token_verifier
        self.route_table = route_table or default_route_table()
        self._clock = clock
        self._now = now
        self._environ = os.environ if environ is None else environ
        super().__init__("gateway", 8000, config=config)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.store.close()
            close = getattr(self.accounts, "close", None)
            if close is not None:
                await close()

        self._setup_gateway_routes()
        self._setup_admin_routes()

    def _setup_components(self):
        """Build the pipeline stages from configuration."""
        metrics = self.metrics if self.config.enable_metrics else None
        timeout = self.config.store_timeout_seconds

        if self.store is None:
            self.store = RedisKeyValueStore(self.config.redis_url)
        if self.accounts is None:
            self.accounts = AccountsClient(
                self.config.accounts_service_url,
                circuit_breaker=CircuitBreaker(failure_threshold=3, recovery_timeout=30.0, name="accounts_service"),
            )
        if self.token_verifier is None:
            self.token_verifier = TokenVerifier(self.config.jwt_secret, self.config.jwt_algorithm)

        self.rate_limiter = TokenBucketRateLimiter(
            self.store,
            load_route_classes(self._environ),
            timeout=timeout,
            clock=self._clock,
            metrics=metrics,
        )
        self.response_cache = ResponseCache(
            self.store,
            key_prefix=self.config.cache_key_prefix,
            default_ttl=self.config.cache_default_ttl_seconds,
            timeout=timeout,
            clock=self._clock,
            metrics=metrics,
        )
        self.subscription_gate = SubscriptionGate(
            self.accounts,
            self.store,
            account_cache_ttl=self.config.account_cache_ttl_seconds,
            timeout=timeout,
            clock=self._now,
            metrics=metrics,
        )
        self.pipeline = RequestPipeline(
            self.rate_limiter,
            self.response_cache,
            self.subscription_gate,
            clock=self._clock,
            metrics=metrics,
        )

    def _setup_middleware(self):
        """Pipeline runs inside CORS and request timing."""
        self.app.add_middleware(
            PipelineMiddleware,
            pipeline=self.pipeline,
            route_table=self.route_table,
            token_verifier=self.token_verifier,
        )
        super()._setup_middleware()

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"kv_store": "ok" if await self.store.ping() else "error"}

    def _setup_gateway_routes(self):
        """Set up caller-facing gateway routes."""

        @self.app.get("/api/v1/subscription/status")
        async def subscription_status(context: RequestContext = Depends(get_request_context)):
            """Access tier of the caller as resolved by the pipeline."""
            return {
                "success": True,
                "userId": context.user_id,
                "role": context.role,
                "tier": context.access_tier.value if context.access_tier else None,
            }

    def _setup_admin_routes(self):
        """Set up admin operations; the route table restricts these to admins."""

        @self.app.post(f"{ADMIN_PREFIX}/cache/invalidate")
        async def invalidate_cache(payload: CacheInvalidationRequest):
            removed = await self.response_cache.invalidate(payload.pattern)
            return {"success": True, "pattern": payload.pattern, "removed": removed}

        @self.app.get(f"{ADMIN_PREFIX}/cache/stats")
        async def cache_stats():
            return {"success": True, "stats": self.response_cache.stats()}

        @self.app.get(f"{ADMIN_PREFIX}/rate-limit/{{route_class}}")
        async def rate_limit_status(route_class: str, client_key: str = Query(..., min_length=1)):
            status: Dict[str, Any] = await self.rate_limiter.get_status(client_key, route_class)
            return {"success": "error" not in status, "clientKey": client_key, "status": status}

        @self.app.delete(f"{ADMIN_PREFIX}/rate-limit/{{route_class}}")
        async def rate_limit_reset(route_class: str, client_key: str = Query(..., min_length=1)):
            try:
                removed = await self.rate_limiter.reset(client_key, route_class)
            except Exception as e:
                raise BackingStoreError("rate_limiter", details={"error": str(e)}) from e
            return {"success": True, "clientKey": client_key, "removed": removed}

        @self.app.delete(f"{ADMIN_PREFIX}/accounts/{{user_id}}/cache")
        async def invalidate_account_cache(user_id: str):
            try:
                removed = await self.subscription_gate.invalidate_account(user_id)
            except Exception as e:
                raise BackingStoreError("account_cache", details={"error": str(e)}) from e
            return {"success": True, "userId": user_id, "removed": removed}


def create_app(**kwargs):
    """Create FastAPI application."""
    service = GatewayService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()

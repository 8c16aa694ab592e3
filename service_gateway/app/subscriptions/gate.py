"""
Subscription gate for the gateway pipeline.

Resolves the caller's access tier from their account record and enforces
premium, role and feature requirements. The status check never rejects;
the blocking checks fail closed when the account cannot be read.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, TYPE_CHECKING

from shared.errors import (
    AuthenticationError,
    AuthorizationError,
    BackingStoreError,
    SubscriptionRequiredError,
)
from shared.logging import get_logger

from .models import (
    FEATURE_TIERS,
    PREMIUM_FEATURES,
    PREMIUM_TIERS,
    AccessTier,
    Account,
    resolve_access_tier,
    role_satisfies,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..adapters.accounts_client import AccountLookup
    from ..adapters.kv_store import KeyValueStore
    from ..domain.context import RequestContext


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionGate:
    """Access tier resolution and entitlement checks."""

    ACCOUNT_KEY_PREFIX = "account:"

    def __init__(
        self,
        accounts: "AccountLookup",
        store: Optional["KeyValueStore"] = None,
        *,
        account_cache_ttl: int = 3600,
        timeout: float = 0.25,
        lookup_timeout: float = 2.0,
        clock: Callable[[], datetime] = utc_now,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.accounts = accounts
        self.store = store
        self.account_cache_ttl = account_cache_ttl
        self.timeout = timeout
        self.lookup_timeout = lookup_timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.subscription_gate")
        self._clock = clock

    def _account_key(self, user_id: str) -> str:
        return f"{self.ACCOUNT_KEY_PREFIX}{user_id}"

    def _record(self, mode: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("subscription_gate_decisions_total", mode=mode, outcome=outcome)

    @property
    def _account_cache_enabled(self) -> bool:
        return self.store is not None and self.account_cache_ttl > 0

    async def _cached_account(self, user_id: str) -> Optional[Account]:
        try:
            raw = await asyncio.wait_for(self.store.get(self._account_key(user_id)), timeout=self.timeout)
            if raw is None:
                return None
            return Account.model_validate_json(raw)
        except Exception as e:
            self.logger.error("Account cache read failed", user_id=user_id, error=str(e) or type(e).__name__)
            if self.metrics:
                self.metrics.record_store_error("account_cache")
            return None

    async def _cache_account(self, user_id: str, account: Account) -> None:
        try:
            await asyncio.wait_for(
                self.store.set_with_expiry(
                    self._account_key(user_id),
                    account.model_dump_json(by_alias=True),
                    self.account_cache_ttl,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            self.logger.error("Account cache write failed", user_id=user_id, error=str(e) or type(e).__name__)
            if self.metrics:
                self.metrics.record_store_error("account_cache")

    async def load_account(self, user_id: str) -> Optional[Account]:
        """Read an account, preferring the store copy. Lookup errors propagate."""
        if self._account_cache_enabled:
            cached = await self._cached_account(user_id)
            if cached is not None:
                return cached

        account = await asyncio.wait_for(self.accounts.get_account_by_id(user_id), timeout=self.lookup_timeout)

        if account is not None and self._account_cache_enabled:
            await self._cache_account(user_id, account)
        return account

    async def invalidate_account(self, user_id: str) -> bool:
        """Drop a cached account so the next request rereads it."""
        if self.store is None:
            return False
        removed = await asyncio.wait_for(self.store.delete(self._account_key(user_id)), timeout=self.timeout)
        self.logger.info("Account cache invalidated", user_id=user_id, removed=bool(removed))
        return bool(removed)

    async def _require_account(self, context: "RequestContext", mode: str) -> Account:
        if not context.user_id:
            self._record(mode, "unauthenticated")
            raise AuthenticationError()

        try:
            account = await self.load_account(context.user_id)
        except Exception as e:
            self.logger.error(
                "Account lookup failed; rejecting request",
                user_id=context.user_id,
                mode=mode,
                error=str(e) or type(e).__name__,
            )
            self._record(mode, "error")
            if self.metrics:
                self.metrics.record_store_error("subscription_gate")
            raise BackingStoreError("subscription_gate", details={"error": str(e)}) from e

        if account is None:
            self.logger.warning("Account not found", user_id=context.user_id, mode=mode)
            self._record(mode, "unauthenticated")
            raise AuthenticationError("Account not found")
        return account

    async def check_subscription_status(self, context: "RequestContext") -> "RequestContext":
        """Attach the caller's tier to the context; never rejects."""
        if not context.user_id:
            self._record("status", AccessTier.FREE.value)
            return replace(context, access_tier=AccessTier.FREE)

        try:
            account = await self.load_account(context.user_id)
        except Exception as e:
            self.logger.error(
                "Subscription status check failed; treating as free",
                user_id=context.user_id,
                error=str(e) or type(e).__name__,
            )
            if self.metrics:
                self.metrics.record_store_error("subscription_gate")
            account = None

        tier = resolve_access_tier(account, self._clock())
        self._record("status", tier.value)
        return replace(context, access_tier=tier, role=account.role if account else context.role)

    async def require_premium_access(self, context: "RequestContext") -> "RequestContext":
        """Admit only premium or admin callers."""
        account = await self._require_account(context, "premium")
        tier = resolve_access_tier(account, self._clock())

        if tier not in PREMIUM_TIERS:
            self.logger.warning("Premium access denied", user_id=context.user_id, tier=tier.value, path=context.path)
            self._record("premium", "denied")
            raise SubscriptionRequiredError(details={"tier": tier.value})

        self._record("premium", "allowed")
        return replace(context, access_tier=tier, role=account.role)

    async def require_role(self, context: "RequestContext", role: str) -> "RequestContext":
        return await self.require_any_role(context, [role])

    async def require_any_role(self, context: "RequestContext", roles: Iterable[str]) -> "RequestContext":
        """Check the stored role against an allow-list; admin satisfies any role."""
        allowed = list(roles)
        account = await self._require_account(context, "role")

        if not role_satisfies(account.role, allowed):
            self.logger.warning(
                "Role check failed",
                user_id=context.user_id,
                role=account.role,
                required_roles=allowed,
                path=context.path,
            )
            self._record("role", "denied")
            raise AuthorizationError(details={"required_roles": allowed})

        self._record("role", "allowed")
        return replace(
            context,
            access_tier=resolve_access_tier(account, self._clock()),
            role=account.role,
        )

    async def require_feature(self, context: "RequestContext", feature: str) -> "RequestContext":
        """Premium features need a premium, admin or trial tier."""
        account = await self._require_account(context, "feature")
        tier = resolve_access_tier(account, self._clock())

        if feature in PREMIUM_FEATURES and tier not in FEATURE_TIERS:
            self.logger.warning(
                "Feature access denied",
                user_id=context.user_id,
                feature=feature,
                tier=tier.value,
            )
            self._record("feature", "denied")
            raise SubscriptionRequiredError(
                f"This feature requires a premium subscription: {feature}",
                details={"feature": feature, "tier": tier.value},
            )

        self._record("feature", "allowed")
        return replace(context, access_tier=tier, role=account.role)

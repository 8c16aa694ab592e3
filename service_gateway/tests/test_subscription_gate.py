"""
Unit tests for the subscription gate and access tier resolution.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from service_gateway.app.domain.context import RequestContext
from service_gateway.app.subscriptions.gate import SubscriptionGate
from service_gateway.app.subscriptions.models import (
    AccessTier,
    Account,
    resolve_access_tier,
    role_satisfies,
)
from shared.errors import (
    AuthenticationError,
    AuthorizationError,
    BackingStoreError,
    ExternalServiceError,
    SubscriptionRequiredError,
)
from shared.test_helpers import account_payload

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ctx(user_id=None) -> RequestContext:
    return RequestContext(request_id="req-1", method="GET", path="/api/v1/analytics", user_id=user_id)


class TestResolveAccessTier:
    """Test cases for tier precedence."""

    def test_no_account_is_free(self):
        assert resolve_access_tier(None, NOW) is AccessTier.FREE

    def test_admin_with_expired_subscription_is_admin(self):
        account = Account.model_validate(account_payload(
            "a", role="admin", subscription_status="expired", expires_at=NOW - timedelta(days=1),
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.ADMIN

    def test_active_unexpired_subscription_is_premium(self):
        account = Account.model_validate(account_payload(
            "p", subscription_status="active", expires_at=NOW + timedelta(days=1),
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.PREMIUM

    def test_active_but_expired_is_not_premium(self):
        account = Account.model_validate(account_payload(
            "p", subscription_status="active", expires_at=NOW - timedelta(seconds=1),
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.FREE

    def test_active_without_expiry_is_not_premium(self):
        account = Account.model_validate(account_payload("p", subscription_status="active"))

        assert resolve_access_tier(account, NOW) is AccessTier.FREE

    def test_cancelled_with_future_expiry_is_not_premium(self):
        account = Account.model_validate(account_payload(
            "p", subscription_status="cancelled", expires_at=NOW + timedelta(days=3),
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.FREE

    def test_inside_trial_window_is_trial(self):
        account = Account.model_validate(account_payload(
            "t", trial_start=NOW - timedelta(days=1), trial_end=NOW + timedelta(days=6), has_used_trial=True,
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.TRIAL

    def test_premium_beats_trial(self):
        account = Account.model_validate(account_payload(
            "t",
            subscription_status="active",
            expires_at=NOW + timedelta(days=30),
            trial_start=NOW - timedelta(days=1),
            trial_end=NOW + timedelta(days=6),
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.PREMIUM

    def test_expired_trial_is_free(self):
        account = Account.model_validate(account_payload(
            "f", trial_start=NOW - timedelta(days=17), trial_end=NOW - timedelta(days=10),
        ))

        assert resolve_access_tier(account, NOW) is AccessTier.FREE

    def test_naive_datetimes_read_as_utc(self):
        account = Account.model_validate({
            "_id": "p",
            "subscription": {"status": "active", "expiresAt": "2026-03-02T00:00:00"},
        })

        assert resolve_access_tier(account, NOW) is AccessTier.PREMIUM

    def test_role_satisfies(self):
        assert role_satisfies("admin", ["moderator"]) is True
        assert role_satisfies("moderator", ["moderator", "editor"]) is True
        assert role_satisfies("user", ["moderator"]) is False


class TestSubscriptionGate:
    """Test cases for SubscriptionGate."""

    @pytest.fixture
    def gate(self, accounts, store, clock):
        """Create SubscriptionGate with account caching enabled."""
        return SubscriptionGate(accounts, store, account_cache_ttl=3600, clock=clock.now)

    @pytest.mark.asyncio
    async def test_status_check_attaches_tier(self, gate):
        context = await gate.check_subscription_status(_ctx("premium-1"))

        assert context.access_tier is AccessTier.PREMIUM

    @pytest.mark.asyncio
    async def test_status_check_anonymous_is_free(self, gate, accounts):
        context = await gate.check_subscription_status(_ctx())

        assert context.access_tier is AccessTier.FREE
        assert accounts.calls == 0

    @pytest.mark.asyncio
    async def test_status_check_fails_open_to_free(self, gate, accounts):
        """Lookup failures never reject the non-blocking check."""
        accounts.error = ExternalServiceError("accounts", "unavailable")

        context = await gate.check_subscription_status(_ctx("premium-1"))

        assert context.access_tier is AccessTier.FREE

    @pytest.mark.asyncio
    async def test_status_check_returns_new_context(self, gate):
        original = _ctx("trial-1")

        updated = await gate.check_subscription_status(original)

        assert original.access_tier is None
        assert updated.access_tier is AccessTier.TRIAL

    @pytest.mark.asyncio
    async def test_admin_with_cancelled_subscription_passes_premium_gate(self, gate):
        context = await gate.require_premium_access(_ctx("admin-1"))

        assert context.access_tier is AccessTier.ADMIN

    @pytest.mark.asyncio
    async def test_free_account_rejected_by_premium_gate(self, gate):
        with pytest.raises(SubscriptionRequiredError) as exc_info:
            await gate.require_premium_access(_ctx("free-1"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Premium subscription required"

    @pytest.mark.asyncio
    async def test_trial_rejected_by_premium_gate(self, gate):
        with pytest.raises(SubscriptionRequiredError):
            await gate.require_premium_access(_ctx("trial-1"))

    @pytest.mark.asyncio
    async def test_premium_gate_requires_identity(self, gate):
        with pytest.raises(AuthenticationError):
            await gate.require_premium_access(_ctx())

    @pytest.mark.asyncio
    async def test_premium_gate_unknown_account_is_401(self, gate):
        with pytest.raises(AuthenticationError):
            await gate.require_premium_access(_ctx("ghost"))

    @pytest.mark.asyncio
    async def test_premium_gate_fails_closed(self, gate, accounts):
        """Lookup failure on a blocking check is a 500."""
        accounts.error = ExternalServiceError("accounts", "unavailable")

        with pytest.raises(BackingStoreError) as exc_info:
            await gate.require_premium_access(_ctx("premium-1"))

        assert exc_info.value.status_code == 500
        assert "accounts" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_require_role_admin_satisfies_any(self, gate):
        context = await gate.require_role(_ctx("admin-1"), "moderator")

        assert context.role == "admin"

    @pytest.mark.asyncio
    async def test_require_any_role_matches(self, gate):
        context = await gate.require_any_role(_ctx("moderator-1"), ["editor", "moderator"])

        assert context.role == "moderator"

    @pytest.mark.asyncio
    async def test_require_role_uses_stored_role_not_tier(self, gate):
        """A premium user is still not a moderator."""
        with pytest.raises(AuthorizationError) as exc_info:
            await gate.require_role(_ctx("premium-1"), "moderator")

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_require_role_fails_closed(self, gate, accounts):
        accounts.error = ExternalServiceError("accounts", "unavailable")

        with pytest.raises(BackingStoreError):
            await gate.require_role(_ctx("admin-1"), "admin")

    @pytest.mark.asyncio
    async def test_trial_unlocks_premium_feature(self, gate):
        context = await gate.require_feature(_ctx("trial-1"), "meal_planning")

        assert context.access_tier is AccessTier.TRIAL

    @pytest.mark.asyncio
    async def test_free_denied_premium_feature(self, gate):
        with pytest.raises(SubscriptionRequiredError) as exc_info:
            await gate.require_feature(_ctx("free-1"), "offline_access")

        assert exc_info.value.details["feature"] == "offline_access"

    @pytest.mark.asyncio
    async def test_free_allowed_regular_feature(self, gate):
        context = await gate.require_feature(_ctx("free-1"), "recipe_comments")

        assert context.access_tier is AccessTier.FREE

    @pytest.mark.asyncio
    async def test_account_cached_after_first_lookup(self, gate, accounts, store):
        await gate.check_subscription_status(_ctx("premium-1"))
        await gate.check_subscription_status(_ctx("premium-1"))

        assert accounts.calls == 1
        assert "account:premium-1" in store.data
        assert store.ttls["account:premium-1"] == 3600

    @pytest.mark.asyncio
    async def test_cache_error_falls_back_to_lookup(self, gate, accounts, store):
        store.fail("get", "set_with_expiry")

        context = await gate.require_premium_access(_ctx("premium-1"))

        assert context.access_tier is AccessTier.PREMIUM
        assert accounts.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_account_forces_reload(self, gate, accounts):
        await gate.check_subscription_status(_ctx("premium-1"))

        removed = await gate.invalidate_account("premium-1")
        await gate.check_subscription_status(_ctx("premium-1"))

        assert removed is True
        assert accounts.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_account_bounded_by_timeout(self, accounts, store, clock):
        async def _hang(*keys):
            await asyncio.sleep(1)

        store.delete = _hang
        gate = SubscriptionGate(accounts, store, timeout=0.01, clock=clock.now)

        with pytest.raises(asyncio.TimeoutError):
            await gate.invalidate_account("premium-1")

    @pytest.mark.asyncio
    async def test_account_cache_disabled_with_zero_ttl(self, accounts, store, clock):
        gate = SubscriptionGate(accounts, store, account_cache_ttl=0, clock=clock.now)

        await gate.check_subscription_status(_ctx("premium-1"))
        await gate.check_subscription_status(_ctx("premium-1"))

        assert accounts.calls == 2
        assert store.data == {}

"""
Unit tests for Gateway adapters (key-value store and accounts client).
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from service_gateway.app.adapters.accounts_client import AccountsClient
from service_gateway.app.adapters.kv_store import RedisKeyValueStore, escape_glob
from service_gateway.app.subscriptions.models import SubscriptionStatus
from shared.circuit_breaker import CircuitBreaker
from shared.errors import ExternalServiceError


class TestRedisKeyValueStore:
    """Test cases for RedisKeyValueStore."""

    @pytest.fixture
    def mock_redis(self):
        return AsyncMock()

    @pytest.fixture
    def kv_store(self, mock_redis):
        """RedisKeyValueStore with the client swapped for a mock."""
        with patch("service_gateway.app.adapters.kv_store.redis.from_url", return_value=mock_redis):
            return RedisKeyValueStore("redis://localhost:6379/0")

    @pytest.mark.asyncio
    async def test_set_with_expiry_uses_setex(self, kv_store, mock_redis):
        await kv_store.set_with_expiry("k", "v", 30)

        mock_redis.setex.assert_awaited_once_with("k", 30, "v")

    @pytest.mark.asyncio
    async def test_set_if_absent_uses_set_nx(self, kv_store, mock_redis):
        mock_redis.set.side_effect = [True, None]

        assert await kv_store.set_if_absent("k", "v", 60) is True
        assert await kv_store.set_if_absent("k", "w", 60) is False
        mock_redis.set.assert_any_await("k", "v", ex=60, nx=True)

    @pytest.mark.asyncio
    async def test_increment_returns_int(self, kv_store, mock_redis):
        mock_redis.incr.return_value = 4

        assert await kv_store.increment("k") == 4

    @pytest.mark.asyncio
    async def test_expire_clamps_to_one_second(self, kv_store, mock_redis):
        await kv_store.expire("k", 0)

        mock_redis.expire.assert_awaited_once_with("k", 1)

    @pytest.mark.asyncio
    async def test_delete_without_keys_skips_redis(self, kv_store, mock_redis):
        assert await kv_store.delete() == 0
        mock_redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_by_pattern_scans_and_deletes(self, kv_store, mock_redis):
        async def _scan(match, count):
            for key in ("cache:recipe:1", "cache:recipe:2"):
                yield key

        mock_redis.scan_iter = MagicMock(side_effect=_scan)
        mock_redis.delete.return_value = 2

        removed = await kv_store.delete_by_pattern("cache:recipe:*")

        assert removed == 2
        mock_redis.scan_iter.assert_called_once_with(match="cache:recipe:*", count=500)
        mock_redis.delete.assert_awaited_once_with("cache:recipe:1", "cache:recipe:2")

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self, kv_store, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")

        assert await kv_store.ping() is False

    @pytest.mark.asyncio
    async def test_close(self, kv_store, mock_redis):
        await kv_store.close()

        mock_redis.aclose.assert_awaited_once()

    def test_escape_glob(self):
        assert escape_glob("10.0.0.1") == "10.0.0.1"
        assert escape_glob("a*b?[c]") == "a\\*b\\?\\[c\\]"


class TestAccountsClient:
    """Test cases for AccountsClient."""

    def _client(self, handler, **kwargs) -> AccountsClient:
        return AccountsClient("http://accounts.test/", transport=httpx.MockTransport(handler), **kwargs)

    @pytest.mark.asyncio
    async def test_get_account_by_id(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={
                "_id": "user-1",
                "role": "user",
                "subscription": {"status": "active", "expiresAt": "2030-01-01T00:00:00Z"},
                "hasUsedTrial": True,
                "email": "cook@example.com",
            })

        client = self._client(handler)
        account = await client.get_account_by_id("user-1")
        await client.close()

        assert seen == ["/users/user-1"]
        assert account.id == "user-1"
        assert account.subscription.status is SubscriptionStatus.ACTIVE
        assert account.has_used_trial is True

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self):
        client = self._client(lambda request: httpx.Response(404, json={"message": "not found"}))

        assert await client.get_account_by_id("ghost") is None

    @pytest.mark.asyncio
    async def test_server_error_raises_external_service_error(self):
        client = self._client(lambda request: httpx.Response(503))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get_account_by_id("user-1")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_invalid_payload_raises_external_service_error(self):
        client = self._client(lambda request: httpx.Response(200, json={"_id": "u", "subscription": {"status": "lifetime"}}))

        with pytest.raises(ExternalServiceError):
            await client.get_account_by_id("u")

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = self._client(handler, circuit_breaker=CircuitBreaker(failure_threshold=2, recovery_timeout=60))

        for _ in range(3):
            with pytest.raises(ExternalServiceError):
                await client.get_account_by_id("user-1")

        assert len(calls) == 2

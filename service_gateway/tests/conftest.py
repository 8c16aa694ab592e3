"""
Shared fixtures for gateway tests.
"""

from datetime import timedelta
from typing import Dict, Optional

import pytest

from service_gateway.app.adapters.accounts_client import AccountLookup
from service_gateway.app.subscriptions.models import Account
from shared.test_helpers import FakeClock, FakeKeyValueStore, account_payload


class FakeAccountLookup(AccountLookup):
    """Accounts keyed by id; ``error`` makes every lookup raise."""

    def __init__(self, accounts: Optional[Dict[str, Account]] = None):
        self.accounts: Dict[str, Account] = dict(accounts or {})
        self.error: Optional[Exception] = None
        self.calls = 0

    def add(self, payload: dict) -> Account:
        account = Account.model_validate(payload)
        self.accounts[account.id] = account
        return account

    async def get_account_by_id(self, user_id: str) -> Optional[Account]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.accounts.get(user_id)


@pytest.fixture
def clock():
    """Controllable clock shared by every component under test."""
    return FakeClock()


@pytest.fixture
def store():
    """In-memory key-value store without automatic expiry."""
    return FakeKeyValueStore()


@pytest.fixture
def accounts(clock):
    """Account lookup preloaded with one account per access tier."""
    lookup = FakeAccountLookup()
    now = clock.now()
    lookup.add(account_payload("admin-1", role="admin", subscription_status="cancelled",
                               expires_at=now - timedelta(days=30)))
    lookup.add(account_payload("premium-1", subscription_status="active",
                               expires_at=now + timedelta(days=30)))
    lookup.add(account_payload("trial-1", trial_start=now - timedelta(days=2),
                               trial_end=now + timedelta(days=5), has_used_trial=True))
    lookup.add(account_payload("free-1", trial_start=now - timedelta(days=24),
                               trial_end=now - timedelta(days=10), has_used_trial=True))
    lookup.add(account_payload("moderator-1", role="moderator"))
    return lookup

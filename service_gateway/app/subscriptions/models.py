"""
Account and access-tier models for the subscription gate.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccessTier(str, Enum):
    """Entitlement level derived per request, never persisted."""
    ADMIN = "admin"
    PREMIUM = "premium"
    TRIAL = "trial"
    FREE = "free"


class AccountRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    MODERATOR = "moderator"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


PREMIUM_FEATURES = frozenset({
    "offline_access",
    "meal_planning",
    "advanced_search",
    "custom_lists",
    "nutritional_insights",
    "ad_free",
})

# Tiers that unlock the premium feature list. Trials get features but not
# premium-only routes.
FEATURE_TIERS = frozenset({AccessTier.ADMIN, AccessTier.PREMIUM, AccessTier.TRIAL})
PREMIUM_TIERS = frozenset({AccessTier.ADMIN, AccessTier.PREMIUM})


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Subscription(BaseModel):
    """Subscription state as stored by the account service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: SubscriptionStatus = SubscriptionStatus.EXPIRED
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class Account(BaseModel):
    """The slice of a user account the gate consumes."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, alias="_id")
    role: str = AccountRole.USER.value
    subscription: Optional[Subscription] = None
    trial_start_date: Optional[datetime] = Field(default=None, alias="trialStartDate")
    trial_end_date: Optional[datetime] = Field(default=None, alias="trialEndDate")
    has_used_trial: bool = Field(default=False, alias="hasUsedTrial")

    @field_validator("trial_start_date", "trial_end_date")
    @classmethod
    def _normalize_trial_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN.value

    def has_active_subscription(self, now: datetime) -> bool:
        subscription = self.subscription
        return (
            subscription is not None
            and subscription.status == SubscriptionStatus.ACTIVE
            and subscription.expires_at is not None
            and subscription.expires_at > now
        )

    def in_trial_window(self, now: datetime) -> bool:
        if self.trial_start_date is None or self.trial_end_date is None:
            return False
        return self.trial_start_date <= now <= self.trial_end_date


def resolve_access_tier(account: Optional[Account], now: datetime) -> AccessTier:
    """Derive the caller's tier; the first matching rule wins."""
    if account is None:
        return AccessTier.FREE
    if account.is_admin:
        return AccessTier.ADMIN
    if account.has_active_subscription(now):
        return AccessTier.PREMIUM
    if account.in_trial_window(now):
        return AccessTier.TRIAL
    return AccessTier.FREE


def role_satisfies(account_role: str, allowed_roles) -> bool:
    """Admin satisfies every role check."""
    return account_role == AccountRole.ADMIN.value or account_role in set(allowed_roles)

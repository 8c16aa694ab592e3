"""
Subscription gating for the gateway.
"""

from .gate import SubscriptionGate
from .models import PREMIUM_FEATURES, AccessTier, Account, Subscription, resolve_access_tier

__all__ = [
    "AccessTier",
    "Account",
    "PREMIUM_FEATURES",
    "Subscription",
    "SubscriptionGate",
    "resolve_access_tier",
]

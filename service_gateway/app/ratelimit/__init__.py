"""
Rate limiting package for the gateway.
"""

from .route_classes import DEFAULT_ROUTE_CLASSES, RouteClassConfig, load_route_classes
from .token_bucket import RateLimitDecision, TokenBucketRateLimiter

__all__ = [
    "DEFAULT_ROUTE_CLASSES",
    "RateLimitDecision",
    "RouteClassConfig",
    "TokenBucketRateLimiter",
    "load_route_classes",
]

"""
Gateway caching package.

Caches successful GET responses in the shared store, keyed by a digest of
the request. Entries carry their creation time and are treated as misses
once older than the route TTL.
"""

from .cache_keys import build_cache_key, digest_request, namespace_for_path
from .response_cache import CacheEntry, CachePolicy, ResponseCache

__all__ = [
    "CacheEntry",
    "CachePolicy",
    "ResponseCache",
    "build_cache_key",
    "digest_request",
    "namespace_for_path",
]

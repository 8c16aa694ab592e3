"""
Adapters package for the Gateway Service.

Thin wrappers over the pipeline's outside dependencies:

- KeyValueStore: shared counters and cached payloads (Redis)
- AccountLookup: account records from the accounts service

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .kv_store import KeyValueStore, RedisKeyValueStore, escape_glob
from .accounts_client import AccountLookup, AccountsClient

__all__ = [
    "AccountLookup",
    "AccountsClient",
    "KeyValueStore",
    "RedisKeyValueStore",
    "escape_glob",
]

"""Partitioned cache layer.

Sub-modules
-----------
base
    Store protocol, partitions and the JSON :class:`CacheService`.
memory / disk / redis_store
    Concrete backing stores.
token_cache
    In-memory token table and the distributed adapter that persists it.
"""

from __future__ import annotations

from .base import CacheDatabaseType, CacheService, CacheStore  # noqa: F401
from .memory import InMemoryCacheStore  # noqa: F401
from .disk import DiskCacheStore  # noqa: F401
from .token_cache import (  # noqa: F401
    DistributedTokenCache,
    TokenCache,
    app_only_cache_key,
    cache_key,
)

__all__ = [
    "CacheDatabaseType",
    "CacheService",
    "CacheStore",
    "InMemoryCacheStore",
    "DiskCacheStore",
    "DistributedTokenCache",
    "TokenCache",
    "app_only_cache_key",
    "cache_key",
]

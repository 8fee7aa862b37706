"""Backing cache store contract and the JSON cache service built on it.

The *store* layer (:class:`CacheStore`) moves opaque strings in and out of a
partitioned key/value backend.  The *service* layer (:class:`CacheService`)
adds JSON (de)serialisation, the ``is_enabled`` switch, the mapping of
backend failures onto :class:`~partner_bot.auth.errors.CacheUnavailableError`
and the per-key locks that token caches use as their critical section.

Backends
--------
memory
    :class:`~partner_bot.cache.memory.InMemoryCacheStore` (single process).
disk
    :class:`~partner_bot.cache.disk.DiskCacheStore` (JSON files, one host).
redis
    :class:`~partner_bot.cache.redis_store.RedisCacheStore` (distributed).
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from typing import Any, Protocol, runtime_checkable

from partner_bot.auth.errors import CacheUnavailableError, assert_not_empty

_LOG = logging.getLogger("partner-bot.cache")


class CacheDatabaseType(enum.IntEnum):
    """Cache partitions; the value doubles as the Redis database number."""

    AUTHENTICATION = 0
    SESSIONS = 1
    DATA_STRUCTURES = 2


@runtime_checkable
class CacheStore(Protocol):
    """Minimal persistence contract for a partitioned key/value store.

    Implementations must make single-key ``get``/``set``/``delete`` atomic.
    Failures are raised as ``CacheUnavailableError``.
    """

    def get(self, partition: CacheDatabaseType, key: str) -> str | None: ...

    def set(
        self,
        partition: CacheDatabaseType,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
    ) -> None: ...

    def delete(self, partition: CacheDatabaseType, key: str) -> None: ...

    def clear(self, partition: CacheDatabaseType) -> None: ...


class KeyedLocks:
    """Hands out one re-entrant lock per string key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


class CacheService:
    """JSON value cache over a :class:`CacheStore`.

    A service without a store, or one constructed with ``enabled=False``,
    reports ``is_enabled == False``; callers are expected to bypass it.
    """

    def __init__(self, store: CacheStore | None = None, *, enabled: bool = True) -> None:
        self._store = store
        self._enabled = enabled
        self._locks = KeyedLocks()

    @property
    def is_enabled(self) -> bool:
        return self._enabled and self._store is not None

    @property
    def backend(self) -> CacheStore | None:
        return self._store

    def lock_for(self, key: str) -> threading.RLock:
        """Return the process-wide lock guarding read-modify-write of *key*."""
        return self._locks.get(key)

    # ------------------------------------------------------------------ #
    # Value access                                                       #
    # ------------------------------------------------------------------ #
    def fetch(self, partition: CacheDatabaseType, key: str) -> Any | None:
        """Return the decoded value stored under *key*, or ``None``."""
        assert_not_empty(key, "key")
        raw = self._require_store().get(partition, key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheUnavailableError("fetch", key, "Cached value is not valid JSON") from exc

    def store(
        self,
        partition: CacheDatabaseType,
        key: str,
        value: Any,
        *,
        ttl_seconds: int | None = None,
    ) -> None:
        assert_not_empty(key, "key")
        if ttl_seconds is not None and ttl_seconds <= 0:
            # already stale; storing it would only serve an expired value
            self.delete(partition, key)
            return
        raw = json.dumps(value, separators=(",", ":"), sort_keys=True)
        self._require_store().set(partition, key, raw, ttl_seconds)

    def delete(self, partition: CacheDatabaseType, key: str) -> None:
        assert_not_empty(key, "key")
        self._require_store().delete(partition, key)

    def clear(self, partition: CacheDatabaseType) -> None:
        self._require_store().clear(partition)
        _LOG.info("Cleared cache partition %s", partition.name)

    def _require_store(self) -> CacheStore:
        if self._store is None:
            raise CacheUnavailableError("access", message="No cache store configured")
        return self._store

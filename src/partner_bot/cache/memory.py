"""Process-local :class:`~partner_bot.cache.base.CacheStore` implementation."""

from __future__ import annotations

import threading

from partner_bot.auth.clock import Clock, default_clock
from partner_bot.cache.base import CacheDatabaseType, CacheStore


class InMemoryCacheStore(CacheStore):
    """Dictionary-backed store with optional per-entry TTL.

    Suitable for tests and single-worker development; entries are not shared
    between processes.
    """

    def __init__(self, *, clock: Clock = default_clock) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[CacheDatabaseType, dict[str, tuple[str, float | None]]] = {}

    def get(self, partition: CacheDatabaseType, key: str) -> str | None:
        with self._lock:
            entry = self._data.get(partition, {}).get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[partition][key]
                return None
            return value

    def set(
        self,
        partition: CacheDatabaseType,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
    ) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._data.setdefault(partition, {})[key] = (value, expires_at)

    def delete(self, partition: CacheDatabaseType, key: str) -> None:
        with self._lock:
            self._data.get(partition, {}).pop(key, None)

    def clear(self, partition: CacheDatabaseType) -> None:
        with self._lock:
            self._data.pop(partition, None)

    def keys(self, partition: CacheDatabaseType) -> list[str]:
        with self._lock:
            return sorted(self._data.get(partition, {}))

"""Redis-backed :class:`~partner_bot.cache.base.CacheStore` for multi-instance deployments.

Each :class:`~partner_bot.cache.base.CacheDatabaseType` partition maps to the
Redis logical database of the same number, and keys are additionally
namespaced with a prefix so that clearing a partition never touches foreign
keys sharing that database.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import redis

from partner_bot.auth.errors import CacheUnavailableError
from partner_bot.cache.base import CacheDatabaseType, CacheStore

_LOG = logging.getLogger("partner-bot.cache.redis")


class RedisCacheStore(CacheStore):
    """Cache store backed by one Redis client per partition."""

    def __init__(
        self,
        *,
        url: str,
        prefix: str = "partner-bot",
        socket_timeout: float = 5.0,
    ) -> None:
        if not url:
            raise ValueError("Redis cache store requires a redis_url configuration value")
        self._url = url
        self._prefix = prefix.rstrip(":")
        self._socket_timeout = socket_timeout
        self._clients: dict[CacheDatabaseType, redis.Redis] = {}

    def _client(self, partition: CacheDatabaseType) -> redis.Redis:
        client = self._clients.get(partition)
        if client is None:
            client = redis.Redis.from_url(
                self._url,
                db=int(partition),
                decode_responses=True,
                socket_connect_timeout=self._socket_timeout,
                socket_timeout=self._socket_timeout,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self._clients[partition] = client
        return client

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}:{quote(key, safe='')}"

    def get(self, partition: CacheDatabaseType, key: str) -> str | None:
        try:
            return self._client(partition).get(self._make_key(key))
        except redis.RedisError as exc:
            _LOG.warning("Redis GET failed partition=%s: %s", partition.name, exc)
            raise CacheUnavailableError("fetch", key) from exc

    def set(
        self,
        partition: CacheDatabaseType,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
    ) -> None:
        try:
            self._client(partition).set(self._make_key(key), value, ex=ttl_seconds or None)
        except redis.RedisError as exc:
            _LOG.warning("Redis SET failed partition=%s: %s", partition.name, exc)
            raise CacheUnavailableError("store", key) from exc

    def delete(self, partition: CacheDatabaseType, key: str) -> None:
        try:
            self._client(partition).delete(self._make_key(key))
        except redis.RedisError as exc:
            _LOG.warning("Redis DEL failed partition=%s: %s", partition.name, exc)
            raise CacheUnavailableError("delete", key) from exc

    def clear(self, partition: CacheDatabaseType) -> None:
        client = self._client(partition)
        try:
            batch: list[str] = []
            for name in client.scan_iter(match=f"{self._prefix}:*", count=500):
                batch.append(name)
                if len(batch) >= 500:
                    client.delete(*batch)
                    batch.clear()
            if batch:
                client.delete(*batch)
        except redis.RedisError as exc:
            raise CacheUnavailableError("clear") from exc

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()

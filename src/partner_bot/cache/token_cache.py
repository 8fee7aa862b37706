"""Token tables and the distributed adapter that persists them.

:class:`TokenCache` is the in-memory table the token manager reads and
writes.  Every access is bracketed by :meth:`TokenCache.before_access` and
:meth:`TokenCache.after_access`; the base class implements both as no-ops.

:class:`DistributedTokenCache` overrides the two hooks so that the table is
loaded from, and written back to, the shared cache under one key per
(resource, subject) pair.  The serialised table is stored as base64 text.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict
from typing import Iterator

from partner_bot.auth.errors import ArgumentInvalidError, CacheUnavailableError, assert_not_empty
from partner_bot.auth.models import TokenCacheItem, normalize_authority
from partner_bot.cache.base import CacheDatabaseType, CacheService

_LOG = logging.getLogger("partner-bot.cache.tokens")

_FORMAT_VERSION = 1


def cache_key(resource: str, subject: str) -> str:
    """Return the cache key of the token set for (*resource*, *subject*)."""
    assert_not_empty(resource, "resource")
    assert_not_empty(subject, "subject")
    return f"Resource::{resource}::Identifier::{subject}"


def app_only_cache_key(resource: str, client_id: str | None = None) -> str:
    assert_not_empty(resource, "resource")
    if client_id:
        return f"AppOnly::{client_id}::{resource}"
    return f"AppOnly::{resource}"


class TokenCache:
    """In-memory table of :class:`TokenCacheItem` entries."""

    def __init__(self, *, lock: threading.RLock | None = None) -> None:
        self._items: dict[tuple[str, str, str, str], TokenCacheItem] = {}
        self._lock = lock or threading.RLock()
        self.has_state_changed = False

    # ------------------------------------------------------------------ #
    # Access notifications                                               #
    # ------------------------------------------------------------------ #
    def before_access(self) -> None:
        """Hook run before every read or write of the table."""

    def after_access(self) -> None:
        """Hook run after every read or write of the table."""

    @contextmanager
    def access(self) -> Iterator["TokenCache"]:
        """Run a block between ``before_access`` and ``after_access``.

        The per-key lock is held for the whole block so concurrent callers
        cannot interleave a read-modify-write of the same table.
        """
        with self._lock:
            self.before_access()
            try:
                yield self
            finally:
                self.after_access()

    # ------------------------------------------------------------------ #
    # Table operations                                                   #
    # ------------------------------------------------------------------ #
    @property
    def count(self) -> int:
        return len(self._items)

    def read_items(self) -> list[TokenCacheItem]:
        return list(self._items.values())

    def find(
        self,
        *,
        authority: str,
        resource: str,
        client_id: str,
        unique_id: str | None = None,
    ) -> TokenCacheItem | None:
        """Return the entry for the given coordinates, ignoring expiry."""
        key = (
            normalize_authority(authority),
            resource.lower(),
            client_id.lower(),
            (unique_id or "").lower(),
        )
        return self._items.get(key)

    def store_item(self, item: TokenCacheItem) -> None:
        self._items[item.key] = item
        self.has_state_changed = True

    def remove_item(self, item: TokenCacheItem) -> bool:
        removed = self._items.pop(item.key, None) is not None
        if removed:
            self.has_state_changed = True
        return removed

    def delete_item(self, item: TokenCacheItem) -> None:
        with self.access():
            self.remove_item(item)

    def clear(self) -> None:
        with self._lock:
            if self._items:
                self._items.clear()
                self.has_state_changed = True

    # ------------------------------------------------------------------ #
    # Serialisation                                                      #
    # ------------------------------------------------------------------ #
    def serialize(self) -> bytes:
        items = sorted((asdict(item) for item in self._items.values()), key=_sort_key)
        payload = {"version": _FORMAT_VERSION, "items": items}
        return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")

    def deserialize(self, blob: bytes) -> None:
        """Replace the table with the entries encoded in *blob*."""
        data = json.loads(blob.decode("utf-8"))
        if data.get("version") != _FORMAT_VERSION:
            raise ValueError(f"unsupported token cache format {data.get('version')!r}")
        items = [TokenCacheItem(**entry) for entry in data.get("items", [])]
        self._items = {item.key: item for item in items}
        self.has_state_changed = False


def _sort_key(entry: dict) -> tuple:
    return (entry["authority"], entry["resource"], entry["client_id"], entry.get("unique_id") or "")


class DistributedTokenCache(TokenCache):
    """Token table persisted in the shared cache under one key.

    Parameters
    ----------
    cache:
        Cache service holding the ``AUTHENTICATION`` partition.
    resource:
        Resource the cached tokens are scoped to.
    subject:
        Object identifier of the principal.  Ignored when *key* is given.
    key:
        Explicit cache key, used for application-only caches.
    """

    partition = CacheDatabaseType.AUTHENTICATION

    def __init__(
        self,
        cache: CacheService,
        resource: str,
        subject: str | None = None,
        *,
        key: str | None = None,
    ) -> None:
        assert_not_empty(resource, "resource")
        if key is None:
            if not subject:
                raise ArgumentInvalidError("subject", "subject or key is required")
            key = cache_key(resource, subject)
        self.cache = cache
        self.resource = resource
        self.key = key
        super().__init__(lock=cache.lock_for(key))

    def before_access(self) -> None:
        value = self.cache.fetch(self.partition, self.key)
        if not value:
            return
        try:
            self.deserialize(base64.b64decode(value))
        except (binascii.Error, ValueError, TypeError) as exc:
            raise CacheUnavailableError("fetch", self.key, "Cached token set is corrupt") from exc

    def after_access(self) -> None:
        if not self.has_state_changed:
            return
        try:
            if self.count > 0:
                blob = base64.b64encode(self.serialize()).decode("ascii")
                self.cache.store(self.partition, self.key, blob)
            else:
                self.cache.delete(self.partition, self.key)
        finally:
            self.has_state_changed = False

    def clear(self) -> None:
        """Empty the table and evict the key for every holder of it."""
        with self._lock:
            super().clear()
            try:
                self.cache.delete(self.partition, self.key)
            finally:
                self.has_state_changed = False

    def delete_item(self, item: TokenCacheItem) -> None:
        """Remove *item*, then evict the whole per-identity entry."""
        with self._lock:
            self.remove_item(item)
            try:
                self.cache.delete(self.partition, self.key)
            finally:
                self.has_state_changed = False
        _LOG.debug("Evicted token set for resource=%s", self.resource)

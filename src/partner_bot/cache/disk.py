"""Concurrency-safe, on-disk :class:`~partner_bot.cache.base.CacheStore`.

Design goals:

* **Atomicity** – writes use *temp-file + os.replace*.
* **Concurrency** – an advisory lock file serialises writers per key, so
  several bot workers on one host can share a cache directory.
* **Filename safety** – cache keys embed URLs and object ids, so they are
  hashed before hitting the filesystem.

Environment variables
---------------------
BOT_CACHE_DIR
    Base directory for all persisted entries.
    Defaults to ``~/.partner-bot/cache`` when unset.
"""

from __future__ import annotations

import json
import os
import time
from contextlib import contextmanager
from hashlib import sha256
from pathlib import Path

from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.errors import CacheUnavailableError
from partner_bot.cache.base import CacheDatabaseType, CacheStore

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 32) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{os.getpid()}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.02):  # noqa: D401
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break  # acquired!
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskCacheStore(CacheStore):
    """JSON-file implementation of :class:`CacheStore`."""

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("BOT_CACHE_DIR")
            or Path.home() / ".partner-bot" / "cache"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _partition_dir(self, partition: CacheDatabaseType) -> Path:
        return self.base_dir / partition.name.lower()

    def _entry_path(self, partition: CacheDatabaseType, key: str) -> Path:
        return self._partition_dir(partition) / f"{_hash(key)}.json"

    def _lock_path(self, partition: CacheDatabaseType, key: str) -> Path:
        return self._entry_path(partition, key).with_suffix(".lock")

    def get(self, partition: CacheDatabaseType, key: str) -> str | None:
        path = self._entry_path(partition, key)
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise CacheUnavailableError("fetch", key) from exc

        expires_at = data.get("expires_at")
        if expires_at is not None and self._clock() >= expires_at:
            self.delete(partition, key)
            return None
        return data.get("value")

    def set(
        self,
        partition: CacheDatabaseType,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
    ) -> None:
        record = {
            "key": key,
            "value": value,
            "expires_at": self._clock() + ttl_seconds if ttl_seconds else None,
        }
        try:
            with _file_lock(self._lock_path(partition, key)):
                _atomic_write(self._entry_path(partition, key), record)
        except (OSError, TimeoutError) as exc:
            raise CacheUnavailableError("store", key) from exc

    def delete(self, partition: CacheDatabaseType, key: str) -> None:
        try:
            with _file_lock(self._lock_path(partition, key)):
                self._entry_path(partition, key).unlink(missing_ok=True)
        except (OSError, TimeoutError) as exc:
            raise CacheUnavailableError("delete", key) from exc

    def clear(self, partition: CacheDatabaseType) -> None:
        directory = self._partition_dir(partition)
        if not directory.exists():
            return
        try:
            for p in directory.glob("*.json"):
                p.unlink(missing_ok=True)
        except OSError as exc:
            raise CacheUnavailableError("clear") from exc

    # ---------------- maintenance ---------------------------------------- #
    def cleanup_expired(self, partition: CacheDatabaseType) -> int:
        """Delete expired entries of *partition*; return how many were removed."""
        directory = self._partition_dir(partition)
        if not directory.exists():
            return 0
        removed = 0
        now = self._clock()
        for p in directory.glob("*.json"):
            try:
                with p.open(encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError):
                continue
            expires_at = data.get("expires_at")
            if expires_at is not None and now >= expires_at:
                p.unlink(missing_ok=True)
                removed += 1
        return removed

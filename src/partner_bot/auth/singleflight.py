"""Collapse concurrent identical calls into one in-flight execution.

The first caller for a key (the *leader*) runs the coroutine; every caller
that arrives while it is running (a *follower*) awaits the same outcome.
Outcomes travel through a :class:`concurrent.futures.Future`, so followers
may sit on a different event loop than the leader, which is the case for
the blocking wrappers of :class:`~partner_bot.auth.tokens.TokenManager`.

A cancelled leader does not cancel its followers: they wake up, and one of
them becomes the new leader.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Awaitable, Callable, Hashable, TypeVar

T = TypeVar("T")

_LOG = logging.getLogger("partner-bot.auth.singleflight")


class _LeaderCancelled(Exception):
    """Set on the shared future when the leading call was cancelled."""


class SingleFlight:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[Hashable, concurrent.futures.Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn* once for all concurrent callers sharing *key*."""
        while True:
            with self._lock:
                shared = self._calls.get(key)
                leader = shared is None
                if leader:
                    shared = concurrent.futures.Future()
                    # RUNNING futures cannot be cancelled by a follower's wrapper
                    shared.set_running_or_notify_cancel()
                    self._calls[key] = shared

            if leader:
                return await self._lead(key, shared, fn)

            _LOG.debug("Joining in-flight call for %s", key)
            try:
                return await asyncio.shield(asyncio.wrap_future(shared))
            except _LeaderCancelled:
                continue

    async def _lead(self, key: Hashable, shared: concurrent.futures.Future, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await fn()
        except asyncio.CancelledError:
            shared.set_exception(_LeaderCancelled())
            raise
        except BaseException as exc:
            shared.set_exception(exc)
            raise
        else:
            shared.set_result(result)
            return result
        finally:
            with self._lock:
                if self._calls.get(key) is shared:
                    del self._calls[key]

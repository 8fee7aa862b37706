"""Per-conversation private data.

Each conversation between the bot and one user owns a small key/value bag
(:class:`SessionData`).  It holds the sign-in nonce, the PKCE verifier and,
once the user has authenticated, the serialised customer principal.  Bags are
loaded and flushed explicitly through a :class:`SessionStore`; nothing is
written back until :meth:`SessionStore.flush` runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from partner_bot.auth.errors import assert_not_empty, assert_not_none
from partner_bot.cache.base import CacheDatabaseType, CacheService

_LOG = logging.getLogger("partner-bot.sessions")


@dataclass(frozen=True, slots=True)
class ConversationAddress:
    """Routing address of one user's conversation with the bot."""

    bot_id: str
    channel_id: str
    user_id: str
    conversation_id: str
    service_url: str

    def __post_init__(self) -> None:
        assert_not_empty(self.bot_id, "bot_id")
        assert_not_empty(self.channel_id, "channel_id")
        assert_not_empty(self.user_id, "user_id")
        assert_not_empty(self.conversation_id, "conversation_id")

    @property
    def session_key(self) -> str:
        return f"Session::{self.channel_id}::{self.bot_id}::{self.conversation_id}::{self.user_id}"


@dataclass
class SessionData:
    address: ConversationAddress
    values: dict[str, Any] = field(default_factory=dict)
    changed: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        assert_not_empty(key, "key")
        self.values[key] = value
        self.changed = True

    def pop(self, key: str, default: Any = None) -> Any:
        if key not in self.values:
            return default
        self.changed = True
        return self.values.pop(key)

    def __contains__(self, key: str) -> bool:
        return key in self.values


@runtime_checkable
class SessionStore(Protocol):
    def load(self, address: ConversationAddress) -> SessionData: ...

    def flush(self, session: SessionData) -> None: ...


class CacheSessionStore:
    """Keeps session bags in the ``SESSIONS`` partition of the cache."""

    partition = CacheDatabaseType.SESSIONS

    def __init__(self, cache: CacheService, *, ttl_seconds: int | None = None) -> None:
        assert_not_none(cache, "cache")
        self._cache = cache
        self._ttl = ttl_seconds

    def load(self, address: ConversationAddress) -> SessionData:
        assert_not_none(address, "address")
        stored = self._cache.fetch(self.partition, address.session_key)
        values = stored if isinstance(stored, dict) else {}
        return SessionData(address=address, values=values)

    def flush(self, session: SessionData) -> None:
        """Persist *session* if it changed; an empty bag deletes the entry."""
        if not session.changed:
            return
        key = session.address.session_key
        if session.values:
            self._cache.store(self.partition, key, session.values, ttl_seconds=self._ttl)
        else:
            self._cache.delete(self.partition, key)
        session.changed = False
        _LOG.debug("Flushed session conversation=%s keys=%s", session.address.conversation_id[:8], sorted(session.values))

"""OAuth ``state`` parameter: generation, decoding and nonce validation.

The state binds an authorization request to the conversation that started
it.  It carries the conversation's routing address, the user's locale, the
time it was issued and a single-use nonce (``UniqueIdentifier``) that is
also written to the conversation's private session data.

Wire format::

    base64url(JSON payload) "." truncated HMAC-SHA256 hex signature

The signature only makes tampering evident; replay protection comes from the
nonce, which :func:`validate_state` removes from the session on the first
validation attempt, successful or not.

Logging
-------
Only the (truncated) conversation id is ever logged; nonces, the full state
string and the HMAC secret are *never* written to logs.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from hashlib import sha256
from typing import TYPE_CHECKING, Any, Final

from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.errors import StateValidationError, assert_not_empty, assert_not_none

if TYPE_CHECKING:
    from partner_bot.sessions import ConversationAddress, SessionData, SessionStore

_LOG = logging.getLogger("partner-bot.auth.state")

UNIQUE_IDENTIFIER_KEY: Final[str] = "UniqueIdentifier"

_SIG_LEN: Final[int] = 16  # characters kept from hex digest


@dataclass(frozen=True, slots=True)
class OAuthState:
    bot_id: str
    channel_id: str
    user_id: str
    conversation_id: str
    service_url: str
    locale: str
    unique_identifier: str
    issued_at: int

    def address(self) -> "ConversationAddress":
        from partner_bot.sessions import ConversationAddress

        return ConversationAddress(
            bot_id=self.bot_id,
            channel_id=self.channel_id,
            user_id=self.user_id,
            conversation_id=self.conversation_id,
            service_url=self.service_url,
        )


def _b64e(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64d(data: str) -> bytes:
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


def _sign(message: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), msg=message.encode(), digestmod=sha256).hexdigest()
    return digest[:_SIG_LEN]


def encode_state(state: OAuthState, secret: str) -> str:
    assert_not_empty(secret, "secret")
    payload = _b64e(json.dumps(asdict(state), separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{payload}.{_sign(payload, secret)}"


def decode_state(
    token: str,
    secret: str,
    *,
    max_age_seconds: int | None = None,
    clock: Clock = default_clock,
) -> OAuthState:
    """Verify and decode a state received in the OAuth callback.

    Raises
    ------
    StateValidationError
        If the state is malformed, the signature does not validate or the
        state is older than *max_age_seconds*.
    """
    assert_not_empty(secret, "secret")
    if not token:
        raise StateValidationError("state is missing")

    payload, sep, sig = token.partition(".")
    if not sep or not payload or not sig:
        raise StateValidationError("state has an unexpected format")
    # bytes comparison; compare_digest rejects non-ASCII str
    if not hmac.compare_digest(sig.encode("utf-8"), _sign(payload, secret).encode("ascii")):
        raise StateValidationError("state signature mismatch")

    try:
        data: dict[str, Any] = json.loads(_b64d(payload).decode("utf-8"))
        state = OAuthState(**data)
    except (ValueError, TypeError, binascii.Error):
        raise StateValidationError("state cannot be decoded") from None

    if not state.unique_identifier:
        raise StateValidationError("state carries no nonce")
    if max_age_seconds is not None:
        check_state_age(state, max_age_seconds, clock=clock)

    _LOG.debug("Decoded state for conversation=%s****", state.conversation_id[:8])
    return state


def check_state_age(state: OAuthState, max_age_seconds: int, *, clock: Clock = default_clock) -> None:
    """Raise :class:`StateValidationError` when *state* is older than *max_age_seconds*."""
    if clock() - state.issued_at > max_age_seconds:
        raise StateValidationError("state has expired")


def generate_state(
    session: "SessionData",
    secret: str,
    *,
    locale: str,
    clock: Clock = default_clock,
) -> str:
    """Mint a nonce, remember it in *session* and return the encoded state.

    The caller is responsible for flushing *session*.
    """
    assert_not_none(session, "session")
    assert_not_empty(secret, "secret")

    nonce = str(uuid.uuid4())
    session.set(UNIQUE_IDENTIFIER_KEY, nonce)

    address = session.address
    state = OAuthState(
        bot_id=address.bot_id,
        channel_id=address.channel_id,
        user_id=address.user_id,
        conversation_id=address.conversation_id,
        service_url=address.service_url,
        locale=locale or "",
        unique_identifier=nonce,
        issued_at=int(clock()),
    )
    _LOG.debug("Generated state for conversation=%s****", address.conversation_id[:8])
    return encode_state(state, secret)


def validate_state(sessions: "SessionStore", state: OAuthState) -> "SessionData":
    """Check *state* against the nonce stored for its conversation.

    The stored nonce is consumed whatever the outcome.  Returns the loaded
    session so the caller can keep working with it.

    Raises
    ------
    StateValidationError
        No nonce is stored for the conversation, or it differs from the
        nonce embedded in *state* (compared case-insensitively).
    """
    assert_not_none(sessions, "sessions")
    assert_not_none(state, "state")

    session = sessions.load(state.address())
    stored = session.pop(UNIQUE_IDENTIFIER_KEY)
    if stored is not None:
        sessions.flush(session)

    if stored is None:
        _LOG.warning("No sign-in pending for conversation=%s****", state.conversation_id[:8])
        raise StateValidationError("no authentication request is pending for this conversation")
    if str(stored).casefold() != state.unique_identifier.casefold():
        _LOG.warning("Nonce mismatch for conversation=%s****", state.conversation_id[:8])
        raise StateValidationError("state does not match the pending authentication request")
    return session

"""Authentication core package.

This namespace hosts the building blocks of the bot's sign-in and token
handling.  The leaf modules below are **HTTP-agnostic** and safe to import
from anywhere; :mod:`~partner_bot.auth.tokens` and
:mod:`~partner_bot.auth.service` depend on the cache layer and are imported
explicitly.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
errors
    Exception types used by the authentication core.
models
    Immutable dataclasses for tokens, credentials and cache entries.
pkce
    Proof-Key for Code Exchange helpers.
state
    Signed ``state`` parameter and nonce validation.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).
authority / certificates
    Identity authority HTTP client and certificate client assertions.
singleflight / tokens
    Token acquisition engine.
principal / service
    Customer principal and the sign-in flow.

All leaf objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .errors import (  # noqa: F401
    ArgumentInvalidError,
    AuthenticationError,
    AuthorityError,
    AuthorityUnavailableError,
    CacheUnavailableError,
    InteractionRequiredError,
    InvalidGrantError,
    NotAuthorizedError,
    StateValidationError,
)
from .models import (  # noqa: F401
    AuthenticationResult,
    AuthenticationToken,
    ClientCredential,
    CredentialContext,
    TokenCacheItem,
    UserIdentifier,
)
from .pkce import PkcePair, code_challenge_s256, generate_code_verifier  # noqa: F401
from .state import OAuthState, decode_state, encode_state, generate_state, validate_state  # noqa: F401
from .log_utils import get_auth_logger  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # errors
    "ArgumentInvalidError",
    "AuthenticationError",
    "AuthorityError",
    "AuthorityUnavailableError",
    "CacheUnavailableError",
    "InteractionRequiredError",
    "InvalidGrantError",
    "NotAuthorizedError",
    "StateValidationError",
    # models
    "AuthenticationResult",
    "AuthenticationToken",
    "ClientCredential",
    "CredentialContext",
    "TokenCacheItem",
    "UserIdentifier",
    # pkce
    "PkcePair",
    "code_challenge_s256",
    "generate_code_verifier",
    # state
    "OAuthState",
    "decode_state",
    "encode_state",
    "generate_state",
    "validate_state",
    # logging helpers
    "get_auth_logger",
]

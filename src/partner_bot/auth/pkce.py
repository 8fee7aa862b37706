"""PKCE (Proof Key for Code Exchange) binding for the interactive flow.

The verifier is kept in the conversation's private session data next to the
state nonce; only the S256 challenge travels to the authority's authorize
endpoint.  The callback replays the verifier in the code exchange, so a code
intercepted in transit cannot be redeemed by anyone else.

This module performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from hashlib import sha256
from typing import Final

CODE_VERIFIER_KEY: Final[str] = "CodeVerifier"

# RFC 7636 section 4.1: 43-128 characters from the unreserved set.
_VERIFIER_LEN: Final[int] = 64
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)


def generate_code_verifier(length: int = _VERIFIER_LEN) -> str:
    """Return a high-entropy code verifier of *length* characters."""
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be 43-128 characters")
    return "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))


def code_challenge_s256(verifier: str) -> str:
    """Base64url SHA-256 of *verifier* without padding."""
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True, slots=True)
class PkcePair:
    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls) -> "PkcePair":
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=code_challenge_s256(verifier))

    def query_parameters(self) -> dict[str, str]:
        return {"code_challenge": self.challenge, "code_challenge_method": self.method}

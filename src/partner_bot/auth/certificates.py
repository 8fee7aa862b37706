"""Certificate-backed client assertions for the vault application identity.

The certificate is looked up by SHA-1 thumbprint in a directory of ``.pem``
(certificate and private key concatenated) or ``.pfx`` files.  Each token
request carries a freshly signed RS256 JWT whose ``x5t`` header lets the
authority pick the registered public key.
"""

from __future__ import annotations

import base64
import logging
import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.errors import ArgumentInvalidError, assert_not_empty

_LOG = logging.getLogger("partner-bot.auth.certificates")

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
_ASSERTION_LIFETIME = 600


def thumbprint_of(certificate: x509.Certificate) -> str:
    """Upper-case hex SHA-1 fingerprint, the format shown by the portal."""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()  # noqa: S303


@dataclass(frozen=True)
class ClientAssertionCertificate:
    """Application identity authenticated by a signed JWT assertion."""

    client_id: str
    certificate: x509.Certificate
    private_key: Any = field(repr=False)
    clock: Clock = field(default=default_clock, repr=False, compare=False)

    @property
    def thumbprint(self) -> str:
        return thumbprint_of(self.certificate)

    def create_assertion(self, audience: str) -> str:
        now = int(self.clock())
        claims = {
            "aud": audience,
            "iss": self.client_id,
            "sub": self.client_id,
            "jti": str(uuid.uuid4()),
            "nbf": now,
            "exp": now + _ASSERTION_LIFETIME,
        }
        x5t = base64.urlsafe_b64encode(bytes.fromhex(self.thumbprint)).rstrip(b"=").decode("ascii")
        return jwt.encode(claims, self.private_key, algorithm="RS256", headers={"x5t": x5t})

    def form_fields(self, token_endpoint: str) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self.create_assertion(token_endpoint),
        }


def _load_pem(data: bytes, password: bytes | None) -> tuple[x509.Certificate, Any]:
    certificate = x509.load_pem_x509_certificate(data)
    private_key = serialization.load_pem_private_key(data, password)
    return certificate, private_key


def _load_pfx(data: bytes, password: bytes | None) -> tuple[x509.Certificate | None, Any]:
    private_key, certificate, _ = pkcs12.load_key_and_certificates(data, password)
    return certificate, private_key


def find_certificate(
    thumbprint: str,
    directory: str | os.PathLike,
    *,
    password: str | None = None,
) -> tuple[x509.Certificate, Any]:
    """Return ``(certificate, private_key)`` whose thumbprint matches.

    Files that cannot be parsed are skipped; a missing match raises
    :class:`ArgumentInvalidError` naming the thumbprint.
    """
    assert_not_empty(thumbprint, "thumbprint")
    wanted = thumbprint.replace(":", "").replace(" ", "").upper()
    secret = password.encode() if password else None

    base = Path(directory).expanduser()
    candidates = sorted(base.glob("*.pem")) + sorted(base.glob("*.pfx"))
    for path in candidates:
        loader = _load_pfx if path.suffix == ".pfx" else _load_pem
        try:
            certificate, private_key = loader(path.read_bytes(), secret)
        except (OSError, ValueError, TypeError) as exc:
            _LOG.debug("Skipping %s: %s", path.name, exc.__class__.__name__)
            continue
        if certificate is not None and private_key is not None and thumbprint_of(certificate) == wanted:
            _LOG.info("Loaded certificate %s from %s", wanted[:8], path.name)
            return certificate, private_key

    raise ArgumentInvalidError("thumbprint", f"No certificate with thumbprint {wanted} in {base}")


def load_client_assertion(
    client_id: str,
    thumbprint: str,
    directory: str | os.PathLike,
    *,
    password: str | None = None,
    clock: Clock = default_clock,
) -> ClientAssertionCertificate:
    assert_not_empty(client_id, "client_id")
    certificate, private_key = find_certificate(thumbprint, directory, password=password)
    return ClientAssertionCertificate(
        client_id=client_id,
        certificate=certificate,
        private_key=private_key,
        clock=clock,
    )

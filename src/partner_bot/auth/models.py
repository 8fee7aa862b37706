"""Typed, immutable records used by token acquisition and caching."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from partner_bot.auth.clock import Clock, default_clock


@dataclass(frozen=True, slots=True)
class AuthenticationToken:
    """Bare access token plus its expiry (UNIX seconds)."""

    access_token: str
    expires_on: int

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once the current time reaches ``expires_on``."""
        return clock() >= self.expires_on

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthenticationToken":
        return cls(access_token=data["access_token"], expires_on=int(data["expires_on"]))


@dataclass(frozen=True, slots=True)
class UserInfo:
    """Identity claims of the user a token was issued to."""

    unique_id: str
    displayable_id: str | None = None
    given_name: str | None = None
    family_name: str | None = None


@dataclass(frozen=True, slots=True)
class AuthenticationResult:
    """Outcome of a successful exchange with the authority."""

    access_token: str
    expires_on: int
    tenant_id: str | None = None
    user_info: UserInfo | None = None
    refresh_token: str | None = None
    access_token_type: str = "Bearer"

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        return clock() >= self.expires_on

    def to_token(self) -> AuthenticationToken:
        return AuthenticationToken(access_token=self.access_token, expires_on=self.expires_on)


@dataclass(frozen=True, slots=True)
class UserIdentifier:
    """Selects whose cached tokens a silent acquisition may use."""

    id: str


@dataclass(frozen=True, slots=True)
class ClientCredential:
    """Application identity authenticated by a shared secret."""

    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"ClientCredential(client_id={self.client_id!r}, client_secret='****')"

    def form_fields(self, token_endpoint: str) -> dict[str, str]:  # noqa: ARG002
        return {"client_id": self.client_id, "client_secret": self.client_secret}


@dataclass(frozen=True, slots=True)
class CredentialContext:
    """Per-request parameters for one acquisition call."""

    authority: str
    resource: str
    credential: Any  # ClientCredential | ClientAssertionCertificate
    redirect_uri: str | None = None
    scope: str | None = None

    @property
    def client_id(self) -> str:
        return self.credential.client_id

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority.rstrip('/')}/oauth2/token"

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority.rstrip('/')}/oauth2/authorize"


@dataclass(frozen=True, slots=True)
class TokenCacheItem:
    """One entry of the in-memory token table."""

    authority: str
    resource: str
    client_id: str
    access_token: str
    expires_on: int
    unique_id: str | None = None
    displayable_id: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    tenant_id: str | None = None
    refresh_token: str | None = None

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (
            normalize_authority(self.authority),
            self.resource.lower(),
            self.client_id.lower(),
            (self.unique_id or "").lower(),
        )

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        return clock() >= self.expires_on

    def to_result(self) -> AuthenticationResult:
        user_info = None
        if self.unique_id:
            user_info = UserInfo(
                unique_id=self.unique_id,
                displayable_id=self.displayable_id,
                given_name=self.given_name,
                family_name=self.family_name,
            )
        return AuthenticationResult(
            access_token=self.access_token,
            expires_on=self.expires_on,
            tenant_id=self.tenant_id,
            user_info=user_info,
            refresh_token=self.refresh_token,
        )

    @classmethod
    def from_result(
        cls,
        result: AuthenticationResult,
        *,
        authority: str,
        resource: str,
        client_id: str,
        unique_id: str | None = None,
    ) -> "TokenCacheItem":
        info = result.user_info
        return cls(
            authority=authority,
            resource=resource,
            client_id=client_id,
            access_token=result.access_token,
            expires_on=result.expires_on,
            unique_id=unique_id or (info.unique_id if info else None),
            displayable_id=info.displayable_id if info else None,
            given_name=info.given_name if info else None,
            family_name=info.family_name if info else None,
            tenant_id=result.tenant_id,
            refresh_token=result.refresh_token,
        )


_TENANTLESS_AUTHORITIES = ("common", "organizations", "consumers")


def normalize_authority(authority: str) -> str:
    return authority.strip().rstrip("/").lower()


def tenant_authority(authority: str, tenant_id: str | None) -> str:
    """Resolve ``.../common`` style authorities to the issuing tenant.

    Tokens obtained through a multi-tenant endpoint are stored under the
    tenant that actually issued them so that later silent lookups against
    ``{directory}/{tenant_id}`` find them.
    """
    base, _, last = authority.rstrip("/").rpartition("/")
    if tenant_id and base and last.lower() in _TENANTLESS_AUTHORITIES:
        return f"{base}/{tenant_id}"
    return authority.rstrip("/")

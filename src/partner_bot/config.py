"""Bot configuration loaded from ``BOT_*`` environment variables."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Literal

from partner_bot.utils.environment import env_flag, env_int, env_str, env_url

logger = logging.getLogger("partner-bot.config")

CacheBackend = Literal["memory", "disk", "redis"]
_BACKENDS: tuple[str, ...] = ("memory", "disk", "redis")

STATE_SECRET_ENV = "BOT_STATE_HMAC_SECRET"


@dataclass(frozen=True)
class BotConfig:
    """Settings shared by every component of the bot.

    ``authority`` is the multi-tenant sign-in authority; tokens issued through
    it are later refreshed against :meth:`customer_authority`.
    """

    application_id: str
    application_secret: str = field(repr=False)
    application_tenant_id: str
    active_directory_endpoint: str = "https://login.microsoftonline.com"
    authority_endpoint: str = "common"
    graph_endpoint: str = "https://graph.microsoft.com"
    partner_center_application_id: str = ""
    partner_center_application_secret: str = field(default="", repr=False)
    partner_center_application_tenant_id: str = ""
    partner_center_endpoint: str = "https://api.partnercenter.microsoft.com"
    vault_application_id: str = ""
    vault_certificate_thumbprint: str = ""
    vault_certificate_dir: str = ""
    vault_certificate_password: str = field(default="", repr=False)
    cache_backend: CacheBackend = "memory"
    cache_enabled: bool = True
    cache_dir: str = ""
    redis_url: str = ""
    state_secret: str = field(default="", repr=False)
    state_max_age_seconds: int = 900
    session_ttl_seconds: int | None = None
    public_url: str = "http://localhost:3978"
    callback_path: str = "api/OAuthCallback"

    @property
    def authority(self) -> str:
        return f"{self.active_directory_endpoint}/{self.authority_endpoint}"

    def customer_authority(self, tenant_id: str) -> str:
        return f"{self.active_directory_endpoint}/{tenant_id}"

    @property
    def redirect_uri(self) -> str:
        return f"{self.public_url}/{self.callback_path.lstrip('/')}"

    @property
    def partner_center_configured(self) -> bool:
        return bool(self.partner_center_application_id and self.partner_center_application_secret)

    @property
    def vault_configured(self) -> bool:
        return bool(self.vault_application_id and self.vault_certificate_thumbprint)

    def is_auth_configured(self) -> bool:
        return bool(self.application_id and self.application_secret and self.application_tenant_id)

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Create configuration from environment variables.

        Raises:
            ValueError: If the application identity is missing or the cache
                backend is unknown.
        """
        application_id = env_str("BOT_APPLICATION_ID")
        application_secret = env_str("BOT_APPLICATION_SECRET")
        application_tenant_id = env_str("BOT_APPLICATION_TENANT_ID")
        if not (application_id and application_secret and application_tenant_id):
            raise ValueError(
                "BOT_APPLICATION_ID, BOT_APPLICATION_SECRET and BOT_APPLICATION_TENANT_ID must be set"
            )

        backend = env_str("BOT_CACHE_BACKEND", "memory").lower()
        if backend not in _BACKENDS:
            raise ValueError(f"BOT_CACHE_BACKEND must be one of {', '.join(_BACKENDS)}, got {backend!r}")
        redis_url = env_str("BOT_REDIS_URL")
        if backend == "redis" and not redis_url:
            raise ValueError("BOT_REDIS_URL is required when BOT_CACHE_BACKEND=redis")

        state_secret = env_str(STATE_SECRET_ENV)
        if not state_secret:
            state_secret = uuid.uuid4().hex
            logger.warning(
                "Environment variable %s not set - generated transient secret. "
                "Pending sign-ins will fail after a restart and across instances.",
                STATE_SECRET_ENV,
            )

        return cls(
            application_id=application_id,
            application_secret=application_secret,
            application_tenant_id=application_tenant_id,
            active_directory_endpoint=env_url("BOT_ACTIVE_DIRECTORY_ENDPOINT", cls.active_directory_endpoint),
            authority_endpoint=env_str("BOT_AUTHORITY_ENDPOINT", cls.authority_endpoint).strip("/"),
            graph_endpoint=env_url("BOT_GRAPH_ENDPOINT", cls.graph_endpoint),
            partner_center_application_id=env_str("BOT_PARTNER_CENTER_APPLICATION_ID"),
            partner_center_application_secret=env_str("BOT_PARTNER_CENTER_APPLICATION_SECRET"),
            partner_center_application_tenant_id=env_str(
                "BOT_PARTNER_CENTER_APPLICATION_TENANT_ID", application_tenant_id
            ),
            partner_center_endpoint=env_url("BOT_PARTNER_CENTER_ENDPOINT", cls.partner_center_endpoint),
            vault_application_id=env_str("BOT_VAULT_APPLICATION_ID"),
            vault_certificate_thumbprint=env_str("BOT_VAULT_CERTIFICATE_THUMBPRINT"),
            vault_certificate_dir=env_str("BOT_VAULT_CERTIFICATE_DIR"),
            vault_certificate_password=env_str("BOT_VAULT_CERTIFICATE_PASSWORD"),
            cache_backend=backend,  # type: ignore[arg-type]
            cache_enabled=env_flag("BOT_CACHE_ENABLED", True),
            cache_dir=env_str("BOT_CACHE_DIR"),
            redis_url=redis_url,
            state_secret=state_secret,
            state_max_age_seconds=env_int("BOT_STATE_MAX_AGE_SECONDS", cls.state_max_age_seconds),
            session_ttl_seconds=env_int("BOT_SESSION_TTL_SECONDS"),
            public_url=env_url("BOT_PUBLIC_URL", cls.public_url),
            callback_path=env_str("BOT_CALLBACK_PATH", cls.callback_path).strip("/"),
        )

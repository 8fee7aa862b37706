from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from partner_bot.auth.certificates import load_client_assertion
from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.models import ClientCredential
from partner_bot.auth.service import AuthenticationService, ConversationResumer
from partner_bot.auth.tokens import TokenManager
from partner_bot.cache.base import CacheService, CacheStore
from partner_bot.cache.disk import DiskCacheStore
from partner_bot.cache.memory import InMemoryCacheStore
from partner_bot.cache.redis_store import RedisCacheStore
from partner_bot.capabilities import CapabilityRegistry, PartnerOperations, default_registry
from partner_bot.config import BotConfig
from partner_bot.directory import GraphDirectoryClient
from partner_bot.sessions import CacheSessionStore, SessionStore

logger = logging.getLogger("partner-bot.context")


@dataclass(frozen=True)
class ServiceContext:
    """
    Every long-lived service of the bot, built once at startup and handed
    to the HTTP layer and the conversation handlers.
    """

    config: BotConfig
    cache: CacheService
    sessions: SessionStore
    tokens: TokenManager
    directory: GraphDirectoryClient
    capabilities: CapabilityRegistry
    authentication: AuthenticationService

    def close(self) -> None:
        close = getattr(self.cache.backend, "close", None)
        if callable(close):
            close()


def build_cache_store(config: BotConfig, *, clock: Clock = default_clock) -> CacheStore:
    if config.cache_backend == "redis":
        return RedisCacheStore(url=config.redis_url)
    if config.cache_backend == "disk":
        return DiskCacheStore(config.cache_dir or None, clock=clock)
    return InMemoryCacheStore(clock=clock)


def build_service_context(
    config: BotConfig,
    *,
    partner_operations: PartnerOperations | None = None,
    resumer: ConversationResumer | None = None,
    cache_store: CacheStore | None = None,
    clock: Clock = default_clock,
) -> ServiceContext:
    """Wire the bot's services from *config*."""
    store = cache_store or build_cache_store(config, clock=clock)
    cache = CacheService(store, enabled=config.cache_enabled)
    # sessions always need a store, even with token caching switched off
    sessions = CacheSessionStore(CacheService(store), ttl_seconds=config.session_ttl_seconds)

    partner_credential = None
    if config.partner_center_configured:
        partner_credential = ClientCredential(
            config.partner_center_application_id, config.partner_center_application_secret
        )
    certificate_loader = None
    if config.vault_configured:
        certificate_loader = partial(
            load_client_assertion,
            config.vault_application_id,
            config.vault_certificate_thumbprint,
            config.vault_certificate_dir or ".",
            password=config.vault_certificate_password or None,
            clock=clock,
        )

    tokens = TokenManager(
        cache=cache,
        credential=ClientCredential(config.application_id, config.application_secret),
        partner_credential=partner_credential,
        partner_resource=config.partner_center_endpoint,
        certificate_loader=certificate_loader,
        clock=clock,
    )
    directory = GraphDirectoryClient(config.graph_endpoint, config.partner_center_application_tenant_id)
    capabilities = (
        default_registry(partner_operations, config.partner_center_application_tenant_id)
        if partner_operations is not None
        else CapabilityRegistry()
    )
    authentication = AuthenticationService(
        config=config,
        tokens=tokens,
        sessions=sessions,
        directory=directory,
        capabilities=capabilities,
        partner_operations=partner_operations,
        resumer=resumer,
        clock=clock,
    )
    logger.info(
        "Service context ready cache=%s enabled=%s capabilities=%d",
        config.cache_backend,
        cache.is_enabled,
        len(capabilities),
    )
    return ServiceContext(
        config=config,
        cache=cache,
        sessions=sessions,
        tokens=tokens,
        directory=directory,
        capabilities=capabilities,
        authentication=authentication,
    )

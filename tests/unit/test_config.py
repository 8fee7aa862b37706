"""
Unit tests for BotConfig.from_env and service wiring.

Coverage:
* Required application identity
* Defaults, URL normalisation and derived endpoints
* Cache backend selection and validation
* Transient state secret when none is configured
* build_service_context honours the cache switch
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace

import pytest

from partner_bot.cache.disk import DiskCacheStore
from partner_bot.cache.memory import InMemoryCacheStore
from partner_bot.cache.redis_store import RedisCacheStore
from partner_bot.config import BotConfig
from partner_bot.context import build_cache_store, build_service_context
from partner_bot.sessions import ConversationAddress

_ENV_PREFIX = "BOT_"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIX):
            monkeypatch.delenv(name)
    monkeypatch.setenv("BOT_APPLICATION_ID", "bot-app")
    monkeypatch.setenv("BOT_APPLICATION_SECRET", "bot-secret")
    monkeypatch.setenv("BOT_APPLICATION_TENANT_ID", "tenant-partner")


def test_defaults(monkeypatch) -> None:
    monkeypatch.setenv("BOT_STATE_HMAC_SECRET", "fixed")
    config = BotConfig.from_env()

    assert config.authority == "https://login.microsoftonline.com/common"
    assert config.customer_authority("tenant-x") == "https://login.microsoftonline.com/tenant-x"
    assert config.redirect_uri == "http://localhost:3978/api/OAuthCallback"
    assert config.partner_center_application_tenant_id == "tenant-partner"
    assert config.cache_backend == "memory"
    assert config.cache_enabled is True
    assert config.state_secret == "fixed"
    assert config.partner_center_configured is False
    assert config.vault_configured is False


def test_urls_are_normalised(monkeypatch) -> None:
    monkeypatch.setenv("BOT_ACTIVE_DIRECTORY_ENDPOINT", "https://login.example.test/")
    monkeypatch.setenv("BOT_AUTHORITY_ENDPOINT", "/organizations/")
    monkeypatch.setenv("BOT_PUBLIC_URL", "https://bot.example.test/")
    monkeypatch.setenv("BOT_CALLBACK_PATH", "/auth/callback")

    config = BotConfig.from_env()

    assert config.authority == "https://login.example.test/organizations"
    assert config.redirect_uri == "https://bot.example.test/auth/callback"


@pytest.mark.parametrize("missing", ["BOT_APPLICATION_ID", "BOT_APPLICATION_SECRET", "BOT_APPLICATION_TENANT_ID"])
def test_application_identity_required(monkeypatch, missing: str) -> None:
    monkeypatch.delenv(missing)
    with pytest.raises(ValueError, match="BOT_APPLICATION_ID"):
        BotConfig.from_env()


def test_unknown_backend_rejected(monkeypatch) -> None:
    monkeypatch.setenv("BOT_CACHE_BACKEND", "memcached")
    with pytest.raises(ValueError, match="BOT_CACHE_BACKEND"):
        BotConfig.from_env()


def test_redis_requires_url(monkeypatch) -> None:
    monkeypatch.setenv("BOT_CACHE_BACKEND", "redis")
    with pytest.raises(ValueError, match="BOT_REDIS_URL"):
        BotConfig.from_env()


def test_transient_state_secret_is_logged(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="partner-bot.config"):
        config = BotConfig.from_env()
    assert config.state_secret
    assert "BOT_STATE_HMAC_SECRET" in caplog.text
    assert config.state_secret not in caplog.text


def test_secrets_not_in_repr(monkeypatch) -> None:
    monkeypatch.setenv("BOT_STATE_HMAC_SECRET", "hmac-value")
    text = repr(BotConfig.from_env())
    assert "bot-secret" not in text
    assert "hmac-value" not in text


def test_integer_and_flag_parsing(monkeypatch) -> None:
    monkeypatch.setenv("BOT_CACHE_ENABLED", "off")
    monkeypatch.setenv("BOT_STATE_MAX_AGE_SECONDS", "300")
    monkeypatch.setenv("BOT_SESSION_TTL_SECONDS", "not-a-number")

    config = BotConfig.from_env()

    assert config.cache_enabled is False
    assert config.state_max_age_seconds == 300
    assert config.session_ttl_seconds is None


# --------------------------------------------------------------------------- #
# Wiring                                                                      #
# --------------------------------------------------------------------------- #
def test_build_cache_store_selects_backend(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("BOT_STATE_HMAC_SECRET", "fixed")
    base = BotConfig.from_env()

    assert isinstance(build_cache_store(base), InMemoryCacheStore)
    disk = build_cache_store(replace(base, cache_backend="disk", cache_dir=str(tmp_path)))
    assert isinstance(disk, DiskCacheStore)
    assert disk.base_dir == tmp_path
    # constructing a redis store does not connect
    redis_store = build_cache_store(replace(base, cache_backend="redis", redis_url="redis://localhost:6379/0"))
    assert isinstance(redis_store, RedisCacheStore)


def test_disabled_cache_still_persists_sessions(monkeypatch) -> None:
    monkeypatch.setenv("BOT_CACHE_ENABLED", "false")
    context = build_service_context(BotConfig.from_env())

    assert context.cache.is_enabled is False
    assert len(context.capabilities) == 0

    address = ConversationAddress("bot", "msteams", "user", "conv", "https://s")
    session = context.sessions.load(address)
    session.set("k", "v")
    context.sessions.flush(session)
    assert context.sessions.load(address).get("k") == "v"

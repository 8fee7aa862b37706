"""Tests for the ``partner-bot`` console entry point."""

from __future__ import annotations

import logging

import pytest
import uvicorn
from starlette.applications import Starlette

from partner_bot import __version__
from partner_bot.servers import main as main_module
from partner_bot.servers.correlation import CorrelationIdFilter


@pytest.fixture(autouse=True)
def restore_logger(monkeypatch):
    root = logging.getLogger("partner-bot")
    saved = (list(root.handlers), root.level, root.propagate)
    for name in ("BOT_HOST", "BOT_PORT", "BOT_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    root.propagate = saved[2]


@pytest.fixture
def bot_env(monkeypatch):
    monkeypatch.setenv("BOT_APPLICATION_ID", "bot-app")
    monkeypatch.setenv("BOT_APPLICATION_SECRET", "bot-secret")
    monkeypatch.setenv("BOT_APPLICATION_TENANT_ID", "tenant-partner")
    monkeypatch.setenv("BOT_STATE_HMAC_SECRET", "fixed")
    monkeypatch.setenv("BOT_CACHE_BACKEND", "memory")


def test_version_flag(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main_module.main(["--version"])
    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_invalid_configuration_exits_with_2(monkeypatch) -> None:
    monkeypatch.delenv("BOT_APPLICATION_ID", raising=False)
    started = []
    monkeypatch.setattr(uvicorn, "run", lambda *a, **kw: started.append(a))

    assert main_module.main([]) == 2
    assert started == []


def test_main_starts_uvicorn(monkeypatch, bot_env) -> None:
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kw: calls.append((app, kw)))

    assert main_module.main(["--host", "0.0.0.0", "--port", "8080", "--log-level", "DEBUG"]) == 0

    app, kwargs = calls[0]
    assert isinstance(app, Starlette)
    assert kwargs == {"host": "0.0.0.0", "port": 8080, "log_level": "debug"}
    root = logging.getLogger("partner-bot")
    assert root.level == logging.DEBUG
    assert any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters)


def test_port_from_environment(monkeypatch, bot_env) -> None:
    monkeypatch.setenv("BOT_PORT", "9000")
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kw: calls.append(kw))

    main_module.main([])

    assert calls[0]["port"] == 9000
    assert calls[0]["host"] == "127.0.0.1"

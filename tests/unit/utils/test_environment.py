"""Unit tests for environment variable helpers."""

import logging

import pytest

from partner_bot.utils.environment import env_flag, env_int, env_str, env_url, truthy


@pytest.mark.parametrize("value", ["true", "1", "YES", " on "])
def test_truthy(value):
    assert truthy(value) is True


@pytest.mark.parametrize("value", [None, "", "false", "maybe"])
def test_not_truthy(value):
    assert truthy(value) is False


def test_env_flag(monkeypatch):
    monkeypatch.setenv("FLAG_ON", "Yes")
    monkeypatch.setenv("FLAG_OFF", "off")
    monkeypatch.setenv("FLAG_BLANK", "  ")
    monkeypatch.delenv("FLAG_UNSET", raising=False)

    assert env_flag("FLAG_ON", False) is True
    assert env_flag("FLAG_OFF", True) is False
    assert env_flag("FLAG_BLANK", True) is True
    assert env_flag("FLAG_UNSET", False) is False


def test_env_flag_warns_on_typo(monkeypatch, caplog):
    monkeypatch.setenv("FLAG_TYPO", "ture")
    with caplog.at_level(logging.WARNING, logger="partner-bot.utils.environment"):
        assert env_flag("FLAG_TYPO", False) is False
    assert "FLAG_TYPO" in caplog.text


def test_env_int(monkeypatch):
    monkeypatch.setenv("NUM_OK", "42")
    monkeypatch.setenv("NUM_BAD", "forty-two")
    monkeypatch.delenv("NUM_UNSET", raising=False)

    assert env_int("NUM_OK") == 42
    assert env_int("NUM_BAD", 7) == 7
    assert env_int("NUM_UNSET") is None


def test_env_str_and_url(monkeypatch):
    monkeypatch.setenv("SOME_URL", " https://example.test/base/ ")
    monkeypatch.delenv("MISSING_URL", raising=False)

    assert env_str("SOME_URL") == "https://example.test/base/"
    assert env_url("SOME_URL") == "https://example.test/base"
    assert env_url("MISSING_URL", "https://default.test/") == "https://default.test"

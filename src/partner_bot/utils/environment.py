"""Utility functions related to environment variable parsing."""

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("partner-bot.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_FALSY: Final[Tuple[str, ...]] = ("false", "0", "no", "n", "off")


def truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def env_flag(name: str, default: bool) -> bool:
    """
    Return the boolean value of ``name``.

    Unset or unrecognised values fall back to *default*; an unrecognised
    value is logged so that typos such as ``BOT_CACHE_ENABLED=ture`` are
    visible at startup.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    logger.warning("Ignoring unrecognised boolean %s=%r", name, raw)
    return default


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def env_url(name: str, default: str = "") -> str:
    """Return a URL-valued variable with any trailing slash removed."""
    return env_str(name, default).rstrip("/")

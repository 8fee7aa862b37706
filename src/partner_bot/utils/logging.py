"""Logging helpers shared by the bot and its HTTP surface."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Return *value* with everything but the first *keep_chars* masked.

    Tokens, codes, nonces and secrets must only ever reach log records
    through this helper.
    """
    if not value:
        return ""
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return f"{value[:keep_chars]}{'*' * 4}"


def setup_logging(level: int | str = logging.INFO, stream=sys.stderr) -> logging.Logger:  # noqa: ANN001
    """Configure the ``partner-bot`` logger hierarchy and return its root."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root = logging.getLogger("partner-bot")
    root.setLevel(level)
    # re-running setup must not stack handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    return root

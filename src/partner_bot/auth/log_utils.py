"""Structured logging helpers for authentication components.

Records emitted through :func:`get_auth_logger` carry a fixed set of context
fields and nothing else, so a token or code can never ride along as "extra".
The whitelist:

- ``conversation_id`` – Conversation being authenticated (first 8 chars kept)
- ``subject``         – Object identifier of the principal (first 8 chars kept)
- ``resource``        – Resource the token is scoped to
- ``correlation_id``  – Per-request identifier set by the HTTP middleware

Usage
-----
>>> from partner_bot.auth.log_utils import get_auth_logger
>>> log = get_auth_logger(
...     base_logger_name="partner-bot.auth.tokens",
...     subject="7f3b2c1a-0d4e-4c55-9e0b-5a8f2e1d9c77",
...     resource="https://graph.microsoft.com",
... )
>>> log.info("Token served from cache")
INFO partner-bot.auth.tokens subject=7f3b2c1a resource=https://graph.microsoft.com ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Attach the whitelisted context to every record."""

    extra_keys = ("conversation_id", "subject", "resource", "correlation_id")
    truncated_keys = ("conversation_id", "subject")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        context = {key: value for key, value in (extra or {}).items() if key in self.extra_keys and value is not None}
        for key in self.truncated_keys:
            if key in context:
                context[key] = str(context[key])[:8]
        super().__init__(logger, context)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        # call-site extras win over the adapter's context
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "partner-bot.auth",
    conversation_id: str | None = None,
    subject: str | None = None,
    resource: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    context = dict(
        conversation_id=conversation_id,
        subject=subject,
        resource=resource,
        correlation_id=correlation_id,
    )
    return _AuthLoggerAdapter(logging.getLogger(base_logger_name), context)

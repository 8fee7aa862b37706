"""Per-request correlation IDs for the callback surface.

Each request gets an ID, either the caller's ``X-Correlation-ID`` when it is
a plain token or a fresh UUID4 hex string.  The ID is stored on
``request.state``, echoed in the response header and made available to log
records through :class:`CorrelationIdFilter`.
"""

from __future__ import annotations

import contextvars
import logging
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_HEADER_NAME = "X-Correlation-ID"
_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_logger = logging.getLogger("partner-bot.correlation")

_current_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    """Adds ``record.correlation_id`` unless the call site already set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = _current_id.get()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that attaches a per-request correlation ID."""

    def __init__(self, app, header_name: str = _HEADER_NAME) -> None:  # type: ignore[override]  # noqa: ANN401
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]  # noqa: ANN001
        incoming = request.headers.get(self.header_name)
        # caller-supplied ids end up in logs; accept only plain tokens
        correlation_id = incoming if incoming and _VALID_ID.match(incoming) else uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        token = _current_id.set(correlation_id)
        try:
            _logger.debug("%s %s", request.method, request.url.path)
            response = await call_next(request)
        finally:
            _current_id.reset(token)
        response.headers[self.header_name] = correlation_id
        return response

"""OAuth callback endpoint.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate business logic to ``AuthenticationService``.
3. Return an appropriate Starlette ``Response`` type.

SECURITY NOTE
-------------
• No raw secrets (state, codes, verifiers, access / refresh tokens, client
  secrets) are ever logged.
• Failure pages are generic; authority error details never reach the browser.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.
"""

from __future__ import annotations

import logging
from html import escape

from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from partner_bot.auth.errors import (
    ArgumentInvalidError,
    AuthenticationError,
    NotAuthorizedError,
    StateValidationError,
)
from partner_bot.auth.service import AuthenticationService
from partner_bot.utils.logging import mask_sensitive

_LOG = logging.getLogger("partner-bot.auth.routes")

SUCCESS_TITLE = "Authentication successful"
SUCCESS_BODY = "You have signed in. You may close this window and return to the conversation."
FAILURE_TITLE = "Authentication failed"
FAILURE_BODY = "We could not complete your sign-in. Please return to the conversation and try again."
NO_RELATIONSHIP_BODY = "Your organization does not have a business relationship with this partner."


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny success / error HTML page."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{escape(title)}</title></head><body><h1>{escape(title)}</h1><p>{escape(body)}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


def oauth_callback_route(service: AuthenticationService, *, path: str = "/api/OAuthCallback") -> Route:
    """Build the ``GET`` route the authority redirects the browser to."""

    async def _oauth_callback(request: Request) -> Response:
        # provider-side errors such as access_denied
        if request.query_params.get("error"):
            _LOG.info(
                "Authority returned error=%s correlation_id=%s",
                request.query_params.get("error"),
                _correlation_id(request),
            )
            return _html_page(FAILURE_TITLE, FAILURE_BODY, 400)

        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state:
            return _html_page(FAILURE_TITLE, "The sign-in response is missing required parameters.", 400)

        try:
            principal = await service.complete_authentication(code, state)
        except NotAuthorizedError:
            return _html_page(FAILURE_TITLE, NO_RELATIONSHIP_BODY, 403)
        except (StateValidationError, ArgumentInvalidError) as exc:
            _LOG.warning(
                "Rejected callback state=%s: %s correlation_id=%s",
                mask_sensitive(state, 6),
                exc,
                _correlation_id(request),
            )
            return _html_page(FAILURE_TITLE, FAILURE_BODY, 400)
        except AuthenticationError as exc:
            _LOG.warning(
                "OAuth callback error=%s correlation_id=%s",
                exc.error_code,
                _correlation_id(request),
            )
            return _html_page(FAILURE_TITLE, FAILURE_BODY, 400)

        _LOG.info(
            "OAuth success tenant=%s**** correlation_id=%s",
            principal.customer_id[:8],
            _correlation_id(request),
        )
        return _html_page(SUCCESS_TITLE, SUCCESS_BODY)

    return Route(path, _oauth_callback, methods=["GET"], name="oauth_callback")

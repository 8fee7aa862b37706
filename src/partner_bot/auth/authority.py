"""HTTP client for the identity authority's token and authorize endpoints.

All exchanges are plain form posts to ``{authority}/oauth2/token``; the
grant-specific fields are assembled here and the JSON reply is turned into an
:class:`~partner_bot.auth.models.AuthenticationResult`.  Identity claims are
read from the ``id_token`` (or, for application tokens, the access token)
*without* signature verification: the token came straight from the
authority over TLS and is only used for routing, never for authorisation.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping
from urllib.parse import urlencode

import jwt
import requests

from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.errors import (
    AuthorityError,
    AuthorityUnavailableError,
    InvalidGrantError,
)
from partner_bot.auth.models import AuthenticationResult, CredentialContext, UserInfo
from partner_bot.utils.logging import mask_sensitive

_LOG = logging.getLogger("partner-bot.auth.authority")

DEFAULT_TIMEOUT = (5, 20)  # (connect, read) seconds

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


def read_claims(token: str | None) -> dict[str, Any]:
    """Return the unverified claims of *token*, or ``{}`` when it is not a JWT."""
    if not token:
        return {}
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}


class AuthorityClient:
    """Blocking client for one identity authority deployment.

    The token manager runs these calls in worker threads; nothing here
    touches the cache.
    """

    def __init__(
        self,
        *,
        clock: Clock = default_clock,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
    ) -> None:
        self._clock = clock
        self._timeout = timeout

    # ------------------------------------------------------------------ #
    # Grants                                                             #
    # ------------------------------------------------------------------ #
    def redeem_authorization_code(
        self,
        context: CredentialContext,
        code: str,
        redirect_uri: str,
        *,
        code_verifier: str | None = None,
    ) -> AuthenticationResult:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "resource": context.resource,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier
        return self._request_token(context, form)

    def redeem_refresh_token(self, context: CredentialContext, refresh_token: str) -> AuthenticationResult:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "resource": context.resource,
        }
        result = self._request_token(context, form)
        if result.refresh_token is None:
            # authority kept the old refresh token alive
            result = replace(result, refresh_token=refresh_token)
        return result

    def client_credentials(self, context: CredentialContext) -> AuthenticationResult:
        form = {"grant_type": "client_credentials", "resource": context.resource}
        return self._request_token(context, form)

    def on_behalf_of(self, context: CredentialContext, user_assertion: str) -> AuthenticationResult:
        form = {
            "grant_type": JWT_BEARER_GRANT,
            "assertion": user_assertion,
            "requested_token_use": "on_behalf_of",
            "resource": context.resource,
        }
        if context.scope:
            form["scope"] = context.scope
        return self._request_token(context, form)

    # ------------------------------------------------------------------ #
    # Authorize endpoint                                                 #
    # ------------------------------------------------------------------ #
    def authorization_request_url(
        self,
        context: CredentialContext,
        redirect_uri: str,
        extra_query_parameters: Mapping[str, str] | None = None,
    ) -> str:
        query: dict[str, str] = {
            "response_type": "code",
            "client_id": context.client_id,
            "redirect_uri": redirect_uri,
            "resource": context.resource,
        }
        if context.scope:
            query["scope"] = context.scope
        for name, value in (extra_query_parameters or {}).items():
            if value is not None:
                query.setdefault(name, value)
        return f"{context.authorize_endpoint}?{urlencode(query)}"

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #
    def _request_token(self, context: CredentialContext, form: dict[str, str]) -> AuthenticationResult:
        endpoint = context.token_endpoint
        payload = dict(form)
        payload.update(context.credential.form_fields(endpoint))

        grant = form["grant_type"]
        try:
            resp = requests.post(endpoint, data=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            _LOG.warning("Token request to %s failed: %s", endpoint, exc.__class__.__name__)
            raise AuthorityUnavailableError("temporarily_unavailable", str(exc)) from exc

        data = _json_or_empty(resp)
        if not resp.ok:
            raise _error_from_response(resp.status_code, data)

        access_token = data.get("access_token")
        if not access_token:
            raise AuthorityUnavailableError(
                "invalid_response",
                "Token response missing access_token",
                status_code=resp.status_code,
            )

        result = self._parse_result(data)
        _LOG.debug(
            "Authority granted %s token=%s expires_on=%s",
            grant,
            mask_sensitive(access_token),
            result.expires_on,
        )
        return result

    def _parse_result(self, data: Mapping[str, Any]) -> AuthenticationResult:
        expires_on = data.get("expires_on")
        if expires_on is not None and str(expires_on).isdigit():
            expires_at = int(expires_on)
        else:
            expires_at = int(self._clock()) + int(data.get("expires_in", 3600))

        claims = read_claims(data.get("id_token")) or read_claims(data.get("access_token"))
        user_info = None
        unique_id = claims.get("oid") or claims.get("sub")
        if unique_id and data.get("id_token"):
            user_info = UserInfo(
                unique_id=unique_id,
                displayable_id=claims.get("upn") or claims.get("unique_name") or claims.get("preferred_username"),
                given_name=claims.get("given_name"),
                family_name=claims.get("family_name"),
            )
        return AuthenticationResult(
            access_token=data["access_token"],
            expires_on=expires_at,
            tenant_id=claims.get("tid"),
            user_info=user_info,
            refresh_token=data.get("refresh_token"),
            access_token_type=data.get("token_type", "Bearer"),
        )


def _json_or_empty(resp: requests.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_from_response(status_code: int, data: Mapping[str, Any]) -> AuthorityError:
    error = str(data.get("error") or f"http_{status_code}")
    description = data.get("error_description")
    _LOG.warning("Authority rejected request status=%s error=%s", status_code, error)
    if error == "invalid_grant":
        return InvalidGrantError(error, description, status_code=status_code)
    if status_code >= 500 or error == "temporarily_unavailable":
        return AuthorityUnavailableError(error, description, status_code=status_code)
    return AuthorityError(error, description, status_code=status_code)

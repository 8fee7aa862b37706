"""AuthenticationService: the sign-in flow of a conversation.

Three steps replace the long-running sign-in dialog:

1. :meth:`AuthenticationService.begin_authentication` remembers a nonce and a
   PKCE verifier in the conversation's session and returns the authorize URL
   to show the user.
2. The authority redirects the browser to the callback route, which calls
   :meth:`AuthenticationService.complete_authentication`.  The state is
   decoded and matched against the stored nonce, the code is redeemed, the
   business relationship and directory roles are checked and the resulting
   :class:`~partner_bot.auth.principal.CustomerPrincipal` is saved in the
   session.  The waiting conversation is then resumed.
3. When the user writes again, :meth:`AuthenticationService.check_authentication`
   finds the principal.

Handlers in ``partner_bot.servers.auth`` stay thin and only translate the
exceptions raised here into responses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.errors import (
    AuthenticationError,
    AuthorityError,
    InteractionRequiredError,
    NotAuthorizedError,
    assert_not_empty,
    assert_not_none,
)
from partner_bot.auth.log_utils import get_auth_logger
from partner_bot.auth.models import UserIdentifier
from partner_bot.auth.pkce import CODE_VERIFIER_KEY, PkcePair
from partner_bot.auth.principal import CUSTOMER_PRINCIPAL_KEY, CustomerPrincipal
from partner_bot.auth.state import OAuthState, check_state_age, decode_state, generate_state, validate_state
from partner_bot.auth.tokens import TokenManager
from partner_bot.capabilities import CapabilityRegistry, CustomerNotFoundError, PartnerOperations
from partner_bot.config import BotConfig
from partner_bot.directory import GraphDirectoryClient
from partner_bot.sessions import ConversationAddress, SessionData, SessionStore

_LOG = logging.getLogger("partner-bot.auth.service")

SIGN_IN_TEXT = "Please sign in so I can verify your access."
AUTHENTICATION_FAILED_TEXT = "Authentication failed. Please try signing in again."
NO_RELATIONSHIP_TEXT = "Unable to find a business relationship for your organization."


class ConversationResumer(Protocol):
    """Delivers a message into a conversation that is waiting on sign-in."""

    async def resume(self, address: ConversationAddress, locale: str, text: str) -> None: ...


class LoggingConversationResumer:
    """Resumer used when no bot connector is wired in."""

    async def resume(self, address: ConversationAddress, locale: str, text: str) -> None:
        _LOG.info(
            "Resume conversation=%s**** channel=%s locale=%s: %s",
            address.conversation_id[:8],
            address.channel_id,
            locale or "-",
            text,
        )


@dataclass(frozen=True)
class SignInPrompt:
    authorize_url: str
    text: str = SIGN_IN_TEXT


class AuthenticationService:
    def __init__(
        self,
        *,
        config: BotConfig,
        tokens: TokenManager,
        sessions: SessionStore,
        directory: GraphDirectoryClient,
        capabilities: CapabilityRegistry,
        partner_operations: PartnerOperations | None = None,
        resumer: ConversationResumer | None = None,
        clock: Clock = default_clock,
    ) -> None:
        assert_not_none(config, "config")
        assert_not_none(tokens, "tokens")
        assert_not_none(sessions, "sessions")
        self._config = config
        self._tokens = tokens
        self._sessions = sessions
        self._directory = directory
        self._capabilities = capabilities
        self._partner_operations = partner_operations
        self._resumer = resumer or LoggingConversationResumer()
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Conversation side                                                  #
    # ------------------------------------------------------------------ #
    async def begin_authentication(self, session: SessionData, locale: str) -> SignInPrompt:
        """Start the interactive flow for *session* and return the sign-in prompt."""
        assert_not_none(session, "session")

        state = generate_state(session, self._config.state_secret, locale=locale, clock=self._clock)
        pkce = PkcePair.generate()
        session.set(CODE_VERIFIER_KEY, pkce.verifier)

        authorize_url = await self._tokens.get_authorization_request_url_async(
            self._config.authority,
            self._config.redirect_uri,
            self._config.graph_endpoint,
            {"state": state},
            code_challenge=pkce.challenge,
        )
        await asyncio.to_thread(self._sessions.flush, session)
        get_auth_logger(
            base_logger_name=_LOG.name, conversation_id=session.address.conversation_id
        ).info("Sign-in requested")
        return SignInPrompt(authorize_url=authorize_url)

    def check_authentication(self, session: SessionData) -> CustomerPrincipal | None:
        """Return the principal saved by the callback, if sign-in has completed."""
        assert_not_none(session, "session")
        data = session.get(CUSTOMER_PRINCIPAL_KEY)
        return CustomerPrincipal.from_dict(data) if data else None

    async def get_customer_principal(self, session: SessionData) -> CustomerPrincipal | None:
        """Return the session's principal with a freshly acquired access token.

        Raises
        ------
        InteractionRequiredError
            The cached refresh material is gone; the stale principal is
            removed so the next message starts a new sign-in.
        """
        principal = self.check_authentication(session)
        if principal is None:
            return None

        try:
            result = await self._tokens.acquire_token_silent_async(
                self._config.customer_authority(principal.customer_id),
                self._config.graph_endpoint,
                UserIdentifier(principal.object_id),
            )
        except InteractionRequiredError:
            session.pop(CUSTOMER_PRINCIPAL_KEY)
            await asyncio.to_thread(self._sessions.flush, session)
            raise

        principal.access_token = result.access_token
        principal.expires_on = result.expires_on
        await asyncio.to_thread(self.store_customer_principal, session, principal)
        return principal

    def store_customer_principal(self, session: SessionData, principal: CustomerPrincipal) -> None:
        assert_not_none(session, "session")
        assert_not_none(principal, "principal")
        session.set(CUSTOMER_PRINCIPAL_KEY, principal.to_dict())
        self._sessions.flush(session)

    # ------------------------------------------------------------------ #
    # Callback side                                                      #
    # ------------------------------------------------------------------ #
    async def complete_authentication(
        self,
        code: str,
        state: str,
        redirect_uri: str | None = None,
    ) -> CustomerPrincipal:
        """Finish the interactive flow started by :meth:`begin_authentication`.

        Raises
        ------
        StateValidationError
            The state is malformed, tampered, expired or does not match the
            nonce stored for its conversation.
        NotAuthorizedError
            The user's tenant has no relationship with the partner.
        AuthenticationError
            Any other failure (authority, directory, cache).  No principal is
            stored; once the state has decoded, the conversation is told that
            sign-in failed.
        """
        assert_not_empty(code, "code")
        assert_not_empty(state, "state")

        oauth_state = decode_state(state, self._config.state_secret)
        address = oauth_state.address()
        log = get_auth_logger(base_logger_name=_LOG.name, conversation_id=address.conversation_id)

        try:
            check_state_age(oauth_state, self._config.state_max_age_seconds, clock=self._clock)
            session = await asyncio.to_thread(validate_state, self._sessions, oauth_state)
            # the verifier is single use like the nonce
            verifier = session.pop(CODE_VERIFIER_KEY)
            if verifier is not None:
                await asyncio.to_thread(self._sessions.flush, session)
            principal = await self._build_principal(code, redirect_uri or self._config.redirect_uri, verifier)
            await asyncio.to_thread(self.store_customer_principal, session, principal)
        except NotAuthorizedError:
            log.info("Sign-in refused: no business relationship")
            await self._resume(oauth_state, NO_RELATIONSHIP_TEXT)
            raise
        except AuthenticationError as exc:
            log.warning("Sign-in failed: %s", exc.error_code)
            await self._resume(oauth_state, AUTHENTICATION_FAILED_TEXT)
            raise

        log.info(
            "Sign-in completed roles=%d capabilities=%d",
            len(principal.roles),
            len(principal.available_capabilities),
        )
        await self._resume(oauth_state, f"Welcome {principal.name or 'back'}! You are now signed in.")
        return principal

    async def _build_principal(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None,
    ) -> CustomerPrincipal:
        result = await self._tokens.get_token_by_authorization_code_async(
            self._config.authority,
            code,
            self._config.graph_endpoint,
            redirect_uri,
            code_verifier=code_verifier,
        )
        if result.user_info is None or not result.tenant_id:
            raise AuthorityError("invalid_response", "Token response carried no user identity")

        tenant_id = result.tenant_id
        if tenant_id.lower() != self._config.application_tenant_id.lower():
            await self._confirm_relationship(tenant_id)

        roles = await asyncio.to_thread(
            self._directory.get_directory_roles,
            result.access_token,
            tenant_id,
            result.user_info.unique_id,
        )
        granted = self._capabilities.authorized_for(role.display_name for role in roles)
        return CustomerPrincipal(
            access_token=result.access_token,
            expires_on=result.expires_on,
            customer_id=tenant_id,
            object_id=result.user_info.unique_id,
            name=result.user_info.given_name,
            roles=roles,
            available_capabilities=[capability.name.value for capability in granted],
        )

    async def _confirm_relationship(self, tenant_id: str) -> None:
        if self._partner_operations is None:
            raise NotAuthorizedError(tenant_id=tenant_id, message="Partner operations are not configured.")
        try:
            await asyncio.to_thread(self._partner_operations.get_customer, tenant_id)
        except CustomerNotFoundError:
            raise NotAuthorizedError(tenant_id=tenant_id) from None

    async def _resume(self, state: OAuthState, text: str) -> None:
        try:
            await self._resumer.resume(state.address(), state.locale, text)
        except Exception:  # noqa: BLE001
            _LOG.exception("Failed to resume conversation=%s****", state.conversation_id[:8])

"""Token acquisition engine.

:class:`TokenManager` performs every grant the bot needs against the
identity authority:

* silent acquisition (cached token, else one refresh-token redemption),
* application-only tokens (shared secret or certificate assertion),
* the Partner Center application credentials,
* authorization-code redemption at the end of the interactive flow,
* on-behalf-of ("app + user") exchanges.

Each grant reads and writes its token table through
:class:`~partner_bot.cache.token_cache.DistributedTokenCache` when the cache
service is enabled, or through a process-local table otherwise.  Table
access is short, synchronous and guarded by the per-key lock; the network
calls happen outside of it in worker threads.  The cache is only written
once an exchange has completed, so a cancelled call leaves it untouched.

Every ``*_async`` coroutine has a blocking twin without the suffix that
raises exactly the same exception types.  The blocking twins refuse to run
on a thread with a running event loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import replace
from hashlib import sha256
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from partner_bot.auth.authority import AuthorityClient, read_claims
from partner_bot.auth.clock import Clock, default_clock
from partner_bot.auth.errors import (
    ArgumentInvalidError,
    CacheUnavailableError,
    InteractionRequiredError,
    InvalidGrantError,
    assert_not_empty,
    assert_not_none,
)
from partner_bot.auth.log_utils import get_auth_logger
from partner_bot.auth.models import (
    AuthenticationResult,
    AuthenticationToken,
    ClientCredential,
    CredentialContext,
    TokenCacheItem,
    UserIdentifier,
    normalize_authority,
    tenant_authority,
)
from partner_bot.auth.singleflight import SingleFlight
from partner_bot.cache.base import CacheDatabaseType, CacheService
from partner_bot.cache.token_cache import (
    DistributedTokenCache,
    TokenCache,
    app_only_cache_key,
    cache_key,
)
from partner_bot.utils.logging import mask_sensitive

T = TypeVar("T")

_LOG = logging.getLogger("partner-bot.auth.tokens")

PARTNER_CENTER_APP_ONLY_KEY = "PartnerCenter::AppOnly"


def _synchronous_execute(operation: Callable[[], Awaitable[T]]) -> T:
    """Run *operation* to completion from blocking code.

    Inside a running event loop this raises ``RuntimeError``; await the
    ``*_async`` variant there.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(operation())
    raise RuntimeError("blocking token calls cannot run inside an event loop; await the *_async variant")


def _subject_of_assertion(user_assertion: str) -> str:
    claims = read_claims(user_assertion)
    return claims.get("oid") or sha256(user_assertion.encode("utf-8")).hexdigest()[:32]


class TokenManager:
    """Acquires, caches and refreshes tokens for the bot.

    Parameters
    ----------
    cache:
        Shared cache service; when disabled, token tables live in-process.
    credential:
        Primary application identity (client id + secret).
    partner_credential / partner_resource:
        Identity and resource used for Partner Center application tokens.
    certificate_loader:
        Zero-argument callable returning the vault application's
        :class:`~partner_bot.auth.certificates.ClientAssertionCertificate`.
        Called once, on first use.
    """

    def __init__(
        self,
        *,
        cache: CacheService,
        credential: ClientCredential,
        authority_client: AuthorityClient | None = None,
        partner_credential: ClientCredential | None = None,
        partner_resource: str | None = None,
        certificate_loader: Callable[[], Any] | None = None,
        single_flight: SingleFlight | None = None,
        clock: Clock = default_clock,
    ) -> None:
        assert_not_none(cache, "cache")
        assert_not_none(credential, "credential")
        self._cache = cache
        self._credential = credential
        self._clock = clock
        self._authority = authority_client or AuthorityClient(clock=clock)
        self._partner_credential = partner_credential
        self._partner_resource = partner_resource
        self._certificate_loader = certificate_loader
        self._certificate: Any = None
        self._flights = single_flight or SingleFlight()
        self._local_guard = threading.Lock()
        self._local_tables: dict[str, TokenCache] = {}

    @property
    def client_id(self) -> str:
        return self._credential.client_id

    # ------------------------------------------------------------------ #
    # Silent acquisition                                                 #
    # ------------------------------------------------------------------ #
    async def acquire_token_silent_async(
        self,
        authority: str,
        resource: str,
        user_id: UserIdentifier | str,
    ) -> AuthenticationResult:
        """Return a cached token for *user_id*, refreshing it once if expired.

        Raises
        ------
        InteractionRequiredError
            No cached refresh material exists, or the authority rejected it.
        """
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        assert_not_none(user_id, "user_id")
        subject = user_id.id if isinstance(user_id, UserIdentifier) else user_id
        assert_not_empty(subject, "user_id")

        log = get_auth_logger(base_logger_name=_LOG.name, subject=subject, resource=resource)
        table = self._table(resource, subject=subject)
        item = await asyncio.to_thread(
            self._lookup, table, authority=authority, resource=resource, client_id=self.client_id, unique_id=subject
        )

        if item is not None and not item.is_expired(clock=self._clock):
            log.debug("Serving cached token expires_on=%s", item.expires_on)
            return item.to_result()

        if item is None or not item.refresh_token:
            log.info("No refresh material cached; interactive sign-in required")
            raise InteractionRequiredError(resource=resource)

        flight_key = ("silent", normalize_authority(authority), resource.lower(), subject.lower())
        return await self._flights.do(flight_key, lambda: self._refresh(table, item, authority, resource))

    def acquire_token_silent(
        self,
        authority: str,
        resource: str,
        user_id: UserIdentifier | str,
    ) -> AuthenticationResult:
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        assert_not_none(user_id, "user_id")
        return _synchronous_execute(lambda: self.acquire_token_silent_async(authority, resource, user_id))

    async def _refresh(
        self,
        table: TokenCache,
        item: TokenCacheItem,
        authority: str,
        resource: str,
    ) -> AuthenticationResult:
        log = get_auth_logger(base_logger_name=_LOG.name, subject=item.unique_id, resource=resource)
        context = CredentialContext(authority=authority, resource=resource, credential=self._credential)
        try:
            result = await asyncio.to_thread(self._authority.redeem_refresh_token, context, item.refresh_token)
        except InvalidGrantError as exc:
            log.info("Refresh token rejected (%s); evicting cached entry", exc.error)
            await asyncio.to_thread(self._evict, table, item)
            raise InteractionRequiredError(resource=resource, authority_error=exc.error) from exc

        refreshed = replace(
            item,
            access_token=result.access_token,
            expires_on=result.expires_on,
            refresh_token=result.refresh_token or item.refresh_token,
            tenant_id=result.tenant_id or item.tenant_id,
        )
        await asyncio.to_thread(self._save, table, refreshed)
        log.info("Refreshed access token expires_on=%s", refreshed.expires_on)
        return refreshed.to_result()

    # ------------------------------------------------------------------ #
    # Application-only                                                   #
    # ------------------------------------------------------------------ #
    async def get_app_only_token_async(self, authority: str, resource: str) -> AuthenticationToken:
        """Client-credentials token for the primary application identity."""
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")

        flight_key = ("app-only", normalize_authority(authority), resource.lower())
        return await self._flights.do(
            flight_key,
            lambda: self._app_only(authority, resource, self._credential, app_only_cache_key(resource)),
        )

    def get_app_only_token(self, authority: str, resource: str) -> AuthenticationToken:
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        return _synchronous_execute(lambda: self.get_app_only_token_async(authority, resource))

    async def get_app_only_token_with_certificate_async(self, authority: str, resource: str) -> AuthenticationToken:
        """Client-credentials token for the vault identity (certificate assertion)."""
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")

        credential = await asyncio.to_thread(self._vault_credential)
        flight_key = ("app-only", normalize_authority(authority), resource.lower(), credential.client_id)
        return await self._flights.do(
            flight_key,
            lambda: self._app_only(
                authority, resource, credential, app_only_cache_key(resource, credential.client_id)
            ),
        )

    def get_app_only_token_with_certificate(self, authority: str, resource: str) -> AuthenticationToken:
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        return _synchronous_execute(lambda: self.get_app_only_token_with_certificate_async(authority, resource))

    async def _app_only(
        self,
        authority: str,
        resource: str,
        credential: Any,
        key: str,
    ) -> AuthenticationToken:
        table = self._table(resource, key=key)
        item = await asyncio.to_thread(
            self._lookup, table, authority=authority, resource=resource, client_id=credential.client_id, unique_id=None
        )
        if item is not None and not item.is_expired(clock=self._clock):
            return AuthenticationToken(access_token=item.access_token, expires_on=item.expires_on)

        context = CredentialContext(authority=authority, resource=resource, credential=credential)
        result = await asyncio.to_thread(self._authority.client_credentials, context)
        fresh = TokenCacheItem.from_result(
            replace(result, user_info=None),
            authority=authority,
            resource=resource,
            client_id=credential.client_id,
        )
        await asyncio.to_thread(self._save, table, fresh, item)
        _LOG.info("Acquired app-only token resource=%s expires_on=%s", resource, result.expires_on)
        return result.to_token()

    def _vault_credential(self) -> Any:
        if self._certificate is None:
            if self._certificate_loader is None:
                raise ArgumentInvalidError("certificate", "No vault application certificate configured")
            self._certificate = self._certificate_loader()
        return self._certificate

    # ------------------------------------------------------------------ #
    # Partner Center                                                     #
    # ------------------------------------------------------------------ #
    async def get_partner_center_app_only_credentials_async(self, authority: str) -> AuthenticationToken:
        """Application token for the Partner Center API, cached as one record."""
        assert_not_empty(authority, "authority")
        if self._partner_credential is None or not self._partner_resource:
            raise ArgumentInvalidError("partner_credential", "Partner Center application is not configured")

        flight_key = ("partner-center", normalize_authority(authority))
        return await self._flights.do(flight_key, lambda: self._partner_center(authority))

    def get_partner_center_app_only_credentials(self, authority: str) -> AuthenticationToken:
        assert_not_empty(authority, "authority")
        return _synchronous_execute(lambda: self.get_partner_center_app_only_credentials_async(authority))

    async def _partner_center(self, authority: str) -> AuthenticationToken:
        cached = await asyncio.to_thread(self._fetch_record, PARTNER_CENTER_APP_ONLY_KEY)
        if cached is not None and not cached.is_expired(clock=self._clock):
            return cached

        context = CredentialContext(
            authority=authority,
            resource=self._partner_resource,
            credential=self._partner_credential,
        )
        result = await asyncio.to_thread(self._authority.client_credentials, context)
        token = result.to_token()
        await asyncio.to_thread(self._store_record, PARTNER_CENTER_APP_ONLY_KEY, token)
        _LOG.info("Acquired Partner Center app-only credentials expires_on=%s", token.expires_on)
        return token

    def _fetch_record(self, key: str) -> AuthenticationToken | None:
        if not self._cache.is_enabled:
            return None
        try:
            data = self._cache.fetch(CacheDatabaseType.AUTHENTICATION, key)
            return AuthenticationToken.from_dict(data) if data else None
        except CacheUnavailableError as exc:
            _LOG.warning("Cache read failed for %s (%s); requesting a new token", key, exc)
        except (KeyError, TypeError, ValueError):
            _LOG.warning("Discarding unreadable cached record %s", key)
        return None

    def _store_record(self, key: str, token: AuthenticationToken) -> None:
        if not self._cache.is_enabled:
            return
        try:
            self._cache.store(CacheDatabaseType.AUTHENTICATION, key, token.to_dict())
        except CacheUnavailableError as exc:
            _LOG.warning("Cache write failed for %s: %s", key, exc)

    # ------------------------------------------------------------------ #
    # Interactive flow                                                   #
    # ------------------------------------------------------------------ #
    async def get_token_by_authorization_code_async(
        self,
        authority: str,
        code: str,
        resource: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> AuthenticationResult:
        """Redeem an authorization code and cache the resulting tokens.

        Raises
        ------
        InvalidGrantError
            The code was already used, expired or issued for another client.
        """
        assert_not_empty(authority, "authority")
        assert_not_empty(code, "code")
        assert_not_empty(resource, "resource")
        assert_not_none(redirect_uri, "redirect_uri")

        context = CredentialContext(
            authority=authority,
            resource=resource,
            credential=self._credential,
            redirect_uri=redirect_uri,
        )
        result = await asyncio.to_thread(
            self._authority.redeem_authorization_code,
            context,
            code,
            redirect_uri,
            code_verifier=code_verifier,
        )

        if result.user_info is None:
            _LOG.warning("Authorization code result carries no user identity; not cached")
            return result

        subject = result.user_info.unique_id
        item = TokenCacheItem.from_result(
            result,
            authority=tenant_authority(authority, result.tenant_id),
            resource=resource,
            client_id=self.client_id,
        )
        await asyncio.to_thread(self._save, self._table(resource, subject=subject), item)
        get_auth_logger(base_logger_name=_LOG.name, subject=subject, resource=resource).info(
            "Redeemed authorization code expires_on=%s", result.expires_on
        )
        return result

    def get_token_by_authorization_code(
        self,
        authority: str,
        code: str,
        resource: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> AuthenticationResult:
        assert_not_empty(authority, "authority")
        assert_not_empty(code, "code")
        assert_not_empty(resource, "resource")
        assert_not_none(redirect_uri, "redirect_uri")
        return _synchronous_execute(
            lambda: self.get_token_by_authorization_code_async(authority, code, resource, redirect_uri, code_verifier)
        )

    async def get_authorization_request_url_async(
        self,
        authority: str,
        redirect_uri: str,
        resource: str,
        extra_query_parameters: Mapping[str, str] | None = None,
        code_challenge: str | None = None,
    ) -> str:
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        assert_not_none(redirect_uri, "redirect_uri")

        extra = dict(extra_query_parameters or {})
        if code_challenge:
            extra["code_challenge"] = code_challenge
            extra["code_challenge_method"] = "S256"
        context = CredentialContext(authority=authority, resource=resource, credential=self._credential)
        return self._authority.authorization_request_url(context, redirect_uri, extra)

    def get_authorization_request_url(
        self,
        authority: str,
        redirect_uri: str,
        resource: str,
        extra_query_parameters: Mapping[str, str] | None = None,
        code_challenge: str | None = None,
    ) -> str:
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        assert_not_none(redirect_uri, "redirect_uri")
        return _synchronous_execute(
            lambda: self.get_authorization_request_url_async(
                authority, redirect_uri, resource, extra_query_parameters, code_challenge
            )
        )

    # ------------------------------------------------------------------ #
    # On-behalf-of                                                       #
    # ------------------------------------------------------------------ #
    async def get_app_plus_user_token_async(
        self,
        authority: str,
        resource: str,
        user_assertion: str,
    ) -> AuthenticationResult:
        """Exchange a user's access token for one scoped to *resource*."""
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        assert_not_empty(user_assertion, "user_assertion")

        subject = _subject_of_assertion(user_assertion)
        flight_key = ("app+user", normalize_authority(authority), resource.lower(), subject.lower())
        return await self._flights.do(
            flight_key, lambda: self._on_behalf_of(authority, resource, user_assertion, subject)
        )

    def get_app_plus_user_token(self, authority: str, resource: str, user_assertion: str) -> AuthenticationResult:
        assert_not_empty(authority, "authority")
        assert_not_empty(resource, "resource")
        assert_not_empty(user_assertion, "user_assertion")
        return _synchronous_execute(lambda: self.get_app_plus_user_token_async(authority, resource, user_assertion))

    async def _on_behalf_of(
        self,
        authority: str,
        resource: str,
        user_assertion: str,
        subject: str,
    ) -> AuthenticationResult:
        table = self._table(resource, subject=subject)
        item = await asyncio.to_thread(
            self._lookup, table, authority=authority, resource=resource, client_id=self.client_id, unique_id=subject
        )
        if item is not None and not item.is_expired(clock=self._clock):
            return item.to_result()

        context = CredentialContext(authority=authority, resource=resource, credential=self._credential)
        result = await asyncio.to_thread(self._authority.on_behalf_of, context, user_assertion)
        fresh = TokenCacheItem.from_result(
            result,
            authority=authority,
            resource=resource,
            client_id=self.client_id,
            unique_id=subject,
        )
        await asyncio.to_thread(self._save, table, fresh, item)
        get_auth_logger(base_logger_name=_LOG.name, subject=subject, resource=resource).info(
            "Acquired app+user token expires_on=%s", result.expires_on
        )
        return result

    # ------------------------------------------------------------------ #
    # Token table helpers (run in worker threads)                        #
    # ------------------------------------------------------------------ #
    def _table(self, resource: str, *, subject: str | None = None, key: str | None = None) -> TokenCache:
        if self._cache.is_enabled:
            return DistributedTokenCache(self._cache, resource, subject, key=key)
        local_key = key or cache_key(resource, subject or "")
        with self._local_guard:
            table = self._local_tables.get(local_key)
            if table is None:
                table = self._local_tables[local_key] = TokenCache()
            return table

    def _lookup(
        self,
        table: TokenCache,
        *,
        authority: str,
        resource: str,
        client_id: str,
        unique_id: str | None,
    ) -> TokenCacheItem | None:
        try:
            with table.access():
                item = table.find(authority=authority, resource=resource, client_id=client_id, unique_id=unique_id)
                if item is None and unique_id:
                    item = _find_any_tenant(table, authority, resource, client_id, unique_id)
                return item
        except CacheUnavailableError as exc:
            _LOG.warning("Token cache read failed (%s); treating as a cache miss", exc)
            return None

    def _save(self, table: TokenCache, item: TokenCacheItem, previous: TokenCacheItem | None = None) -> None:
        try:
            with table.access():
                if previous is not None and previous.key != item.key:
                    table.remove_item(previous)
                table.store_item(item)
        except CacheUnavailableError as exc:
            _LOG.warning("Token cache write failed (%s); token=%s not persisted", exc, mask_sensitive(item.access_token))

    def _evict(self, table: TokenCache, item: TokenCacheItem) -> None:
        try:
            table.delete_item(item)
        except CacheUnavailableError as exc:
            _LOG.warning("Token cache eviction failed: %s", exc)


def _find_any_tenant(
    table: TokenCache,
    authority: str,
    resource: str,
    client_id: str,
    unique_id: str,
) -> TokenCacheItem | None:
    """Resolve ``.../common`` style lookups to the entry of any issuing tenant."""
    if tenant_authority(authority, "tenant") == authority.rstrip("/"):
        return None
    prefix = normalize_authority(authority).rpartition("/")[0]
    for candidate in table.read_items():
        authority_key, resource_key, client_key, subject_key = candidate.key
        if (
            authority_key.startswith(prefix + "/")
            and resource_key == resource.lower()
            and client_key == client_id.lower()
            and subject_key == unique_id.lower()
        ):
            return candidate
    return None

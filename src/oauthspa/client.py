"""The OAuth 2.0 Authorization Code + PKCE client.

:class:`OAuthClient` drives the whole token lifecycle for one
:class:`~oauthspa.models.ClientConfig`:

1. :meth:`~OAuthClient.login_with_redirect` stores a PKCE verifier and
   sends the user to the authorization endpoint.
2. :meth:`~OAuthClient.handle_redirect_callback` redeems the returned code
   for the first configured resource, then obtains every other resource's
   token through the shared refresh token in the background.
3. :meth:`~OAuthClient.get_access_token` hands out tokens, refreshing
   expired ones first.
4. :meth:`~OAuthClient.logout` revokes and forgets everything.

Every change to a resource's access token is fanned out to the
:class:`~oauthspa.subscriptions.SubscriptionBus` and invalidates the
user-info cache.

Host capabilities are injected: the key-value store that persists tokens,
the :class:`~oauthspa.navigation.Navigator` standing in for the browser's
location, an optional :class:`httpx.AsyncClient`, a millisecond clock, and
the PKCE random source and hasher.

Example::

    client = OAuthClient(config, storage=FileStore(path), navigator=navigator)
    client.login_with_redirect("http://127.0.0.1:8765/oauth/callback")
    # ... the browser comes back to the redirect URI ...
    await client.handle_redirect_callback("http://127.0.0.1:8765/oauth/callback")
    token = await client.get_access_token("graph")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx
from pydantic import ValidationError

from oauthspa.exceptions import (
    IntrospectionError,
    MissingCodeError,
    MissingRefreshTokenError,
    MissingVerifierError,
    NotConfiguredError,
    TokenExchangeError,
    UnknownResourceError,
    UserInfoFetchError,
)
from oauthspa.exit_codes import EXIT_CONNECTION_ERROR
from oauthspa.models import ClientConfig, Resource, TokenResponse
from oauthspa.navigation import BrowserNavigator, Navigator
from oauthspa.pkce import Hasher, RandomSource, generate_pkce_pair
from oauthspa.storage import KeyValueStore, MemoryStore
from oauthspa.subscriptions import Subscriber, SubscriptionBus, Unsubscribe
from oauthspa.tokens import Clock, TokenStore
from oauthspa.userinfo import UserInfo, UserInfoCache

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

CODE_SEARCH_PARAMETER = "code"
STATE_SEARCH_PARAMETER = "state"


class OAuthClient:
    """OAuth 2.0 Authorization Code + PKCE client for one or more resources.

    Args:
        config: The immutable client configuration.
        storage: Where tokens persist. Defaults to a fresh
            :class:`~oauthspa.storage.MemoryStore`; pass a
            :class:`~oauthspa.storage.FileStore` to survive restarts.
        navigator: Browser location stand-in. Defaults to
            :class:`~oauthspa.navigation.BrowserNavigator`.
        http_client: Shared :class:`httpx.AsyncClient`. When ``None`` a
            short-lived client with a 30-second timeout is used per request.
        clock: Millisecond clock for expiry arithmetic.
        random_source: PKCE verifier byte source (CSPRNG by default).
        hasher: PKCE SHA-256 implementation.
    """

    def __init__(
        self,
        config: ClientConfig,
        storage: Optional[KeyValueStore] = None,
        navigator: Optional[Navigator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
        random_source: Optional[RandomSource] = None,
        hasher: Optional[Hasher] = None,
    ) -> None:
        self.config = config
        self.tokens = TokenStore(storage if storage is not None else MemoryStore(), config.client_id, clock)
        self.navigator: Navigator = navigator or BrowserNavigator()
        self._http_client = http_client
        self._random_source = random_source
        self._hasher = hasher
        self._user_info = UserInfoCache()
        self._bus = SubscriptionBus(self.tokens.get_access_token)
        self._background: set[asyncio.Task[None]] = set()

    @property
    def client_id(self) -> str:
        return self.config.client_id

    # ------------------------------------------------------------------ #
    # Flow
    # ------------------------------------------------------------------ #

    def login_with_redirect(
        self,
        redirect_uri: str,
        state: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> None:
        """Send the user to the authorization endpoint.

        A new PKCE verifier replaces any outstanding one; the challenge
        derived from it travels in the authorization URL. Navigation is the
        last thing this method does and nothing should be expected to run
        after it in a browser host.

        Args:
            redirect_uri: Where the provider sends the user back to. Pass
                the same value to :meth:`handle_redirect_callback`.
            state: Opaque value returned unchanged in the callback.
            prompt: Provider prompt hint, e.g. ``"login"`` for a fresh
                session.
        """
        code_verifier, code_challenge = generate_pkce_pair(self._random_source, self._hasher)
        self.tokens.set_code_verifier(code_verifier)

        url = self._build_authorization_url(redirect_uri, code_challenge, state, prompt)
        logger.debug("Redirecting to authorization endpoint for client '%s'", self.client_id)
        self.navigator.navigate_to(url)

    def _build_authorization_url(
        self,
        redirect_uri: str,
        code_challenge: str,
        state: Optional[str],
        prompt: Optional[str],
    ) -> str:
        params: dict[str, Optional[str]] = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "code_challenge": code_challenge,
            "prompt": prompt,
            "state": state,
            "scope": self.config.joined_scope(),
            "response_type": "code",
            "nonce": self.config.nonce,
            "method": "S256",
            "code_challenge_method": "S256",
        }
        parsed = urlparse(self.config.authorization_endpoint)
        query = dict(parse_qs(parsed.query, keep_blank_values=True))
        merged: dict[str, Any] = {k: v[-1] for k, v in query.items()}
        merged.update({k: v for k, v in params.items() if v is not None})
        return urlunparse(parsed._replace(query=urlencode(merged)))

    async def handle_redirect_callback(self, redirect_uri: str) -> Optional[str]:
        """Redeem the authorization code found in the navigator's current URL.

        The stored verifier is consumed whether or not the exchange
        succeeds. The first configured resource is redeemed with the code;
        every other resource is refreshed in background tasks whose
        failures are only logged and never reach this caller (observe them
        through :meth:`subscribe`, or await
        :meth:`wait_for_background_tasks`).

        Args:
            redirect_uri: The redirect URI used in :meth:`login_with_redirect`.

        Returns:
            The ``state`` query parameter of the callback URL, if any.

        Raises:
            MissingCodeError: If the callback URL has no ``code``.
            MissingVerifierError: If no verifier was stored.
            TokenExchangeError: If the token endpoint rejects the code or
                answers with a malformed body.
        """
        first, *others = self.config.resources

        params = parse_qs(urlparse(self.navigator.current_url()).query)
        code = _first_param(params, CODE_SEARCH_PARAMETER)
        state = _first_param(params, STATE_SEARCH_PARAMETER)

        code_verifier = self.tokens.get_code_verifier()
        self.tokens.clear_code_verifier()

        if not code:
            error = _first_param(params, "error")
            if error:
                description = _first_param(params, "error_description")
                detail = f": {description}" if description else ""
                raise MissingCodeError(f"Authorization was denied ({error}){detail}")
            raise MissingCodeError("No code was found in the callback url.")
        if not code_verifier:
            raise MissingVerifierError("No code verifier was stored before the redirect.")

        form = {
            "client_id": self.client_id,
            "code_verifier": code_verifier,
            "code": code,
            "redirect_uri": redirect_uri,
            "scope": first.joined_scope(),
            "grant_type": "authorization_code",
        }

        try:
            token = await self._request_token(form)
        except TokenExchangeError:
            self._clear_access_token(first.identifier)
            raise

        self.tokens.set_refresh_token(token.refresh_token)
        self._set_access_token(first.identifier, token)
        logger.info("Authorization code redeemed for resource '%s'", first.identifier)

        for resource in others:
            self._spawn_background_refresh(resource.identifier)

        return state

    async def refresh_access_token(self, resource_identifier: str) -> None:
        """Exchange the refresh token for a new access token of one resource.

        Exactly one request is made. On failure only this resource's access
        token is cleared; the refresh token and other resources stay as
        they are.

        Raises:
            UnknownResourceError: If the resource is not configured.
            MissingRefreshTokenError: If no refresh token is stored.
            TokenExchangeError: If the refresh is rejected or malformed.
        """
        resource = self._resolve(resource_identifier)

        refresh_token = self.tokens.get_refresh_token()
        if not refresh_token:
            raise MissingRefreshTokenError("No refresh token is stored.")

        form = {
            "client_id": self.client_id,
            "refresh_token": refresh_token,
            "scope": resource.joined_scope(),
            "grant_type": "refresh_token",
        }

        try:
            token = await self._request_token(form)
        except TokenExchangeError as exc:
            logger.warning("Refresh failed for resource '%s': %s", resource.identifier, exc)
            self._clear_access_token(resource.identifier)
            raise

        self.tokens.set_refresh_token(token.refresh_token)
        self._set_access_token(resource.identifier, token)
        logger.debug("Refreshed access token for resource '%s'", resource.identifier)

    async def logout(self, return_to: Optional[str] = None) -> None:
        """Revoke tokens at the provider, forget them locally, and leave.

        Revocation is best effort: failures are logged and never prevent the
        local state from being cleared. Without a revoke endpoint no
        revocation is attempted; without a logout endpoint the method
        returns after clearing local state.

        Args:
            return_to: ``post_logout_redirect_uri`` for the logout endpoint.
                Defaults to the navigator's current URL without its query.
        """
        refresh_token = self.tokens.get_refresh_token()
        access_tokens = []
        for resource in self.config.resources:
            access_token = self.tokens.get_access_token(resource.identifier)
            if access_token:
                access_tokens.append(access_token)

        try:
            if self.config.revoke_endpoint:
                revocations = [self._revoke_token(t, "access_token") for t in access_tokens]
                if refresh_token:
                    revocations.append(self._revoke_token(refresh_token, "refresh_token"))
                results = await asyncio.gather(*revocations, return_exceptions=True)
                for result in results:
                    if isinstance(result, BaseException):
                        logger.warning("Token revocation failed: %s", result)
            else:
                logger.debug("No revoke endpoint configured; skipping revocation")
        finally:
            self.tokens.clear_refresh_token()
            for resource in self.config.resources:
                self._clear_access_token(resource.identifier)
            self.tokens.clear_code_verifier()

        if not self.config.logout_endpoint:
            return

        redirect_uri = return_to
        if redirect_uri is None:
            current = urlparse(self.navigator.current_url())
            redirect_uri = urlunparse(current._replace(query="", fragment=""))

        url = urlparse(self.config.logout_endpoint)
        query = urlencode({"post_logout_redirect_uri": redirect_uri}) if redirect_uri else ""
        self.navigator.navigate_to(urlunparse(url._replace(query=query)))

    async def _revoke_token(self, token: str, token_type_hint: str) -> None:
        endpoint = self.config.revoke_endpoint
        if not endpoint:
            raise NotConfiguredError("The token revocation endpoint has not been specified.")
        response = await self._send(
            "POST",
            endpoint,
            data={
                "token": token,
                "token_type_hint": token_type_hint,
                "client_id": self.client_id,
            },
        )
        logger.debug("Revoked %s (HTTP %s)", token_type_hint, response.status_code)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    async def get_access_token(
        self,
        resource_identifier: str,
        refresh_if_expired: bool = True,
    ) -> Optional[str]:
        """Return the resource's access token, refreshing it first when expired.

        Returns ``None`` without any refresh attempt when no token was ever
        stored. A failed refresh raises rather than returning ``None``.

        Args:
            resource_identifier: The resource to return a token for.
            refresh_if_expired: Whether to refresh an expired token. If
                disabled, callers will eventually send an outdated token
                and receive ``401 Unauthorized`` responses.
        """
        self._resolve(resource_identifier)
        if not self.tokens.get_access_token(resource_identifier):
            return None

        if refresh_if_expired and self.token_is_expired(resource_identifier):
            await self.refresh_access_token(resource_identifier)

        return self.tokens.get_access_token(resource_identifier)

    def token_is_expired(self, resource_identifier: str) -> bool:
        """``True`` if the resource's access token is past its expiry (or has none)."""
        return self.tokens.is_expired(resource_identifier)

    def is_authorized(self, resource_identifier: str) -> bool:
        """``True`` if an access token is stored for the resource."""
        return self.tokens.get_access_token(resource_identifier) is not None

    def get_access_token_key(self, resource_identifier: str) -> str:
        return self.tokens.access_token_key(resource_identifier)

    def get_expiration_time_key(self, resource_identifier: str) -> str:
        return self.tokens.expiration_time_key(resource_identifier)

    async def get_user_info(self) -> Optional[UserInfo]:
        """Return the authenticated user's profile, or ``None`` if not authenticated.

        Concurrent callers share one request; the result is cached until
        any access token changes.

        Raises:
            NotConfiguredError: If no user-info endpoint or no user-info
                resource is configured.
            UserInfoFetchError: If the endpoint answers with a non-200 status.
        """
        if not self.config.user_info_endpoint:
            raise NotConfiguredError("The user information endpoint has not been specified.")
        if self.config.user_info_resource is None:
            raise NotConfiguredError("No resource is flagged as the user information resource.")
        return await self._user_info.get(self._resolve_user_info_token, self._fetch_user_info)

    async def _resolve_user_info_token(self) -> Optional[str]:
        resource = self.config.user_info_resource
        if resource is None:
            raise NotConfiguredError("No resource is flagged as the user information resource.")
        return await self.get_access_token(resource.identifier) or None

    async def _fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        endpoint = self.config.user_info_endpoint
        if not endpoint:
            raise NotConfiguredError("The user information endpoint has not been specified.")

        try:
            response = await self._send(
                "GET",
                endpoint,
                headers={"Authorization": access_token, "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise UserInfoFetchError(f"User information request failed: {exc}") from exc

        data = _json_or_none(response)
        if response.status_code != 200:
            raise UserInfoFetchError(
                _describe_error("User information endpoint", response.status_code, data),
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise UserInfoFetchError(
                "User information response is not a JSON object",
                status_code=response.status_code,
            )
        return data

    async def introspect_token(self, resource_identifier: str) -> Optional[dict[str, Any]]:
        """Ask the provider whether the resource's access token is active.

        Returns:
            The provider's payload verbatim (``{"active": bool, ...}``), or
            ``None`` when no access token is stored.

        Raises:
            NotConfiguredError: If no introspection endpoint is configured.
            IntrospectionError: If the endpoint answers with a non-200 status.
        """
        endpoint = self.config.introspect_endpoint
        if not endpoint:
            raise NotConfiguredError("The token introspection endpoint has not been specified.")

        access_token = await self.get_access_token(resource_identifier)
        if not access_token:
            return None

        try:
            response = await self._send(
                "POST",
                endpoint,
                data={"client_id": self.client_id, "token": access_token},
            )
        except httpx.HTTPError as exc:
            raise IntrospectionError(f"Token introspection failed: {exc}") from exc

        data = _json_or_none(response)
        if response.status_code != 200:
            raise IntrospectionError(
                _describe_error("Introspection endpoint", response.status_code, data),
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise IntrospectionError(
                "Introspection response is not a JSON object",
                status_code=response.status_code,
            )
        return data

    # ------------------------------------------------------------------ #
    # Subscriptions and background work
    # ------------------------------------------------------------------ #

    def subscribe(self, resource_identifier: str, callback: Subscriber) -> Unsubscribe:
        """Observe the resource's access token.

        *callback* is called right away with the stored token (possibly
        ``None``) and again after every change to it.

        Returns:
            An idempotent unsubscribe function.
        """
        self._resolve(resource_identifier)
        return self._bus.subscribe(resource_identifier, callback)

    async def wait_for_background_tasks(self) -> None:
        """Wait until every background refresh started by a callback has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn_background_refresh(self, resource_identifier: str) -> None:
        task = asyncio.get_running_loop().create_task(
            self.refresh_access_token(resource_identifier),
            name=f"oauthspa-refresh-{resource_identifier}",
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background task %s failed: %s", task.get_name(), exc)

    # ------------------------------------------------------------------ #
    # State mutation
    # ------------------------------------------------------------------ #

    def _set_access_token(self, resource_identifier: str, token: TokenResponse) -> None:
        self.tokens.set_access_token(resource_identifier, token.access_token, token.expires_in)
        self._user_info.invalidate()
        self._bus.notify(resource_identifier)

    def _clear_access_token(self, resource_identifier: str) -> None:
        self.tokens.clear_access_token(resource_identifier)
        self._user_info.invalidate()
        self._bus.notify(resource_identifier)

    def _resolve(self, resource_identifier: str) -> Resource:
        resource = self.config.get_resource(resource_identifier)
        if resource is None:
            raise UnknownResourceError(resource_identifier)
        return resource

    # ------------------------------------------------------------------ #
    # HTTP
    # ------------------------------------------------------------------ #

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
            return await client.request(method, url, **kwargs)

    async def _request_token(self, form: dict[str, str]) -> TokenResponse:
        """POST *form* to the token endpoint and validate the response shape.

        Raises:
            TokenExchangeError: On transport failure, non-200 status, a
                non-JSON body, or a body missing the token fields.
        """
        try:
            response = await self._send(
                "POST",
                self.config.token_endpoint,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(
                f"Token request failed: {exc}", exit_code=EXIT_CONNECTION_ERROR
            ) from exc

        data = _json_or_none(response)
        status = response.status_code

        if status != 200:
            error = data.get("error") if isinstance(data, dict) else None
            description = data.get("error_description") if isinstance(data, dict) else None
            raise TokenExchangeError(
                _describe_error("Token endpoint", status, data),
                error=error if isinstance(error, str) else None,
                error_description=description if isinstance(description, str) else None,
                status_code=status,
            )

        if not isinstance(data, dict):
            raise TokenExchangeError("Token response is not a JSON object", status_code=status)

        try:
            return TokenResponse.model_validate(data)
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise TokenExchangeError(
                "Token response has missing or invalid fields: " + ", ".join(fields),
                status_code=status,
            ) from exc


def _first_param(params: dict[str, list[str]], name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else None


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _describe_error(source: str, status: int, data: Any) -> str:
    """Format a provider error as ``error (status): description``."""
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        message = f"{data['error']} ({status})"
        description = data.get("error_description")
        if isinstance(description, str) and description:
            message += f": {description}"
        return message
    return f"{source} returned HTTP {status}"

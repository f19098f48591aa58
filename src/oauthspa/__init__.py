"""oauthspa -- OAuth 2.0 authorization code + PKCE client with multi-resource tokens.

One authorization round trip yields a refresh token shared by every
configured resource. The first resource is redeemed with the authorization
code, the others are obtained in the background through the refresh token,
and each keeps its own access token and expiry in a pluggable key-value
store.

Typical library use::

    client = OAuthClient(config, storage=MemoryStore(), navigator=navigator)
    client.login_with_redirect("https://app.example.com/callback")
    # ... the browser comes back to the callback URL ...
    await client.handle_redirect_callback("https://app.example.com/callback")
    token = await client.get_access_token("graph")

The ``oauthspa`` console script wraps the same client with profiles,
file-backed token storage and a loopback redirect listener.

Modules:
    client: The token-lifecycle engine (:class:`OAuthClient`).
    models: Pydantic models for client configuration and provider payloads.
    storage: Key-value store protocol with memory and file implementations.
    pkce: PKCE verifier and challenge generation.
    tokens: Storage-key layout and expiry arithmetic.
    discovery: ``.well-known/openid-configuration`` support.
    app: Typer application and CLI entry point.
"""

__version__ = "0.1.0"

from oauthspa.client import OAuthClient
from oauthspa.discovery import fetch_provider_metadata, well_known_url
from oauthspa.exceptions import (
    AuthorizationError,
    ConfigError,
    DiscoveryError,
    IntrospectionError,
    MissingCodeError,
    MissingRefreshTokenError,
    MissingVerifierError,
    NotConfiguredError,
    OAuthSpaError,
    TokenExchangeError,
    UnknownResourceError,
    UserInfoFetchError,
)
from oauthspa.models import ClientConfig, Resource, TokenResponse
from oauthspa.navigation import BrowserNavigator, LoopbackNavigator, Navigator
from oauthspa.pkce import code_challenge, generate_pkce_pair, generate_verifier
from oauthspa.storage import FileStore, KeyValueStore, MemoryStore

__all__ = [
    "AuthorizationError",
    "BrowserNavigator",
    "ClientConfig",
    "ConfigError",
    "DiscoveryError",
    "FileStore",
    "IntrospectionError",
    "KeyValueStore",
    "LoopbackNavigator",
    "MemoryStore",
    "MissingCodeError",
    "MissingRefreshTokenError",
    "MissingVerifierError",
    "Navigator",
    "NotConfiguredError",
    "OAuthClient",
    "OAuthSpaError",
    "Resource",
    "TokenExchangeError",
    "TokenResponse",
    "UnknownResourceError",
    "UserInfoFetchError",
    "code_challenge",
    "fetch_provider_metadata",
    "generate_pkce_pair",
    "generate_verifier",
    "well_known_url",
]

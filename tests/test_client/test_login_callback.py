"""Tests for the authorization redirect and the callback code exchange."""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from oauthspa.exceptions import (
    MissingCodeError,
    MissingVerifierError,
    TokenExchangeError,
)
from oauthspa.exit_codes import EXIT_AUTH_FAILURE, EXIT_CONNECTION_ERROR
from oauthspa.models import Resource
from oauthspa.pkce import code_challenge

REDIRECT_URI = "https://app.example.com/callback"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_json(
    access_token: str = "A",
    refresh_token: Optional[str] = "R",
    expires_in: Any = 3600,
) -> dict[str, Any]:
    data: dict[str, Any] = {"access_token": access_token, "expires_in": expires_in, "token_type": "Bearer"}
    if refresh_token is not None:
        data["refresh_token"] = refresh_token
    return data


def _by_scope(provider: Any, tokens: dict[str, httpx.Response]):
    """Token endpoint handler choosing the response by requested scope."""

    def handler(request: httpx.Request) -> httpx.Response:
        return tokens[provider.form(request)["scope"]]

    return handler


def _arrive(navigator: Any, **params: str) -> None:
    query = "&".join(f"{k}={v}" for k, v in params.items())
    navigator.url = f"{REDIRECT_URI}?{query}"


class _SevensSource:
    def bytes(self, n: int) -> bytes:
        return b"\x07" * n


# ---------------------------------------------------------------------------
# login_with_redirect
# ---------------------------------------------------------------------------


class TestLoginWithRedirect:
    def test_navigates_to_authorization_endpoint(self, make_client, navigator) -> None:
        client = make_client()
        client.login_with_redirect(REDIRECT_URI, state="xyz", prompt="login")

        assert len(navigator.history) == 1
        url = urlparse(navigator.history[0])
        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://auth.example.com/authorize"

        query = navigator.last_query()
        assert query["client_id"] == ["client"]
        assert query["redirect_uri"] == [REDIRECT_URI]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["graphUser.Read sharepointAllSites.Read sharepointAllSites.Write"]
        assert query["method"] == ["S256"]
        assert query["code_challenge_method"] == ["S256"]
        assert query["nonce"] == ["12321321"]
        assert query["state"] == ["xyz"]
        assert query["prompt"] == ["login"]

    def test_stores_verifier_and_sends_its_challenge(self, make_client, navigator) -> None:
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)

        verifier = client.tokens.get_code_verifier()
        assert verifier is not None and len(verifier) == 43
        assert navigator.last_query()["code_challenge"] == [code_challenge(verifier)]

    def test_omits_unset_optional_parameters(self, make_client, navigator) -> None:
        make_client().login_with_redirect(REDIRECT_URI)
        query = navigator.last_query()
        assert "state" not in query
        assert "prompt" not in query

    def test_new_login_replaces_verifier(self, make_client) -> None:
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        first = client.tokens.get_code_verifier()
        client.login_with_redirect(REDIRECT_URI)
        assert client.tokens.get_code_verifier() != first

    def test_keeps_existing_endpoint_query(self, make_client, make_config, navigator) -> None:
        config = make_config(authorization_endpoint="https://auth.example.com/authorize?tenant=t1")
        make_client(config).login_with_redirect(REDIRECT_URI)
        query = navigator.last_query()
        assert query["tenant"] == ["t1"]
        assert query["client_id"] == ["client"]

    def test_custom_nonce(self, make_client, make_config, navigator) -> None:
        make_client(make_config(nonce="n-1")).login_with_redirect(REDIRECT_URI)
        assert navigator.last_query()["nonce"] == ["n-1"]

    def test_injected_random_source(self, make_client) -> None:
        client = make_client(random_source=_SevensSource())
        client.login_with_redirect(REDIRECT_URI)
        assert client.tokens.get_code_verifier() == "BwcH" * 10 + "Bwc"


# ---------------------------------------------------------------------------
# handle_redirect_callback
# ---------------------------------------------------------------------------


class TestHandleRedirectCallback:
    @pytest.mark.asyncio
    async def test_login_then_callback_authorizes_every_resource(
        self, make_client, provider, navigator, clock
    ) -> None:
        provider.on(
            "/token",
            _by_scope(provider, {
                "graphUser.Read": httpx.Response(200, json=_token_json("A", "R")),
                "sharepointAllSites.Read sharepointAllSites.Write": httpx.Response(
                    200, json=_token_json("S", "R", 1800)
                ),
            }),
        )
        client = make_client()
        client.login_with_redirect(REDIRECT_URI, state="st")
        _arrive(navigator, code="abc", state="st")

        state = await client.handle_redirect_callback(REDIRECT_URI)
        await client.wait_for_background_tasks()

        assert state == "st"
        assert client.tokens.get_refresh_token() == "R"
        for identifier in ("graph", "sharepoint"):
            assert client.is_authorized(identifier)
            assert client.tokens.get_expiration_time(identifier) > clock()
        assert await client.get_access_token("graph") == "A"
        assert await client.get_access_token("sharepoint") == "S"
        assert client.tokens.get_code_verifier() is None

    @pytest.mark.asyncio
    async def test_code_exchange_request(self, make_client, provider, navigator) -> None:
        provider.on("/token", httpx.Response(200, json=_token_json()))
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        verifier = client.tokens.get_code_verifier()
        _arrive(navigator, code="abc")

        await client.handle_redirect_callback(REDIRECT_URI)
        await client.wait_for_background_tasks()

        exchange = provider.requests_to("/token")[0]
        assert exchange.method == "POST"
        assert exchange.headers["content-type"] == "application/x-www-form-urlencoded"
        assert provider.form(exchange) == {
            "client_id": "client",
            "code_verifier": verifier,
            "code": "abc",
            "redirect_uri": REDIRECT_URI,
            "scope": "graphUser.Read",
            "grant_type": "authorization_code",
        }

    @pytest.mark.asyncio
    async def test_secondary_resources_use_refresh_grant(self, make_client, provider, navigator) -> None:
        provider.on("/token", httpx.Response(200, json=_token_json()))
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        await client.handle_redirect_callback(REDIRECT_URI)
        await client.wait_for_background_tasks()

        forms = [provider.form(r) for r in provider.requests_to("/token")]
        assert [f["grant_type"] for f in forms] == ["authorization_code", "refresh_token"]
        assert forms[1]["refresh_token"] == "R"
        assert forms[1]["scope"] == "sharepointAllSites.Read sharepointAllSites.Write"

    @pytest.mark.asyncio
    async def test_missing_code(self, make_client, navigator) -> None:
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, state="st")

        with pytest.raises(MissingCodeError, match="No code was found"):
            await client.handle_redirect_callback(REDIRECT_URI)
        assert client.tokens.get_code_verifier() is None

    @pytest.mark.asyncio
    async def test_provider_error_in_callback(self, make_client, navigator) -> None:
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, error="access_denied", error_description="User+cancelled")

        with pytest.raises(MissingCodeError, match=r"access_denied\): User cancelled"):
            await client.handle_redirect_callback(REDIRECT_URI)

    @pytest.mark.asyncio
    async def test_missing_verifier(self, make_client, provider, navigator) -> None:
        client = make_client()
        _arrive(navigator, code="abc")

        with pytest.raises(MissingVerifierError) as exc_info:
            await client.handle_redirect_callback(REDIRECT_URI)
        assert exc_info.value.exit_code == EXIT_AUTH_FAILURE
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_rejected_code_clears_first_resource_only(
        self, make_client, provider, navigator
    ) -> None:
        provider.on(
            "/token",
            httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code expired"}),
        )
        client = make_client()
        client.tokens.set_access_token("graph", "stale", 60)
        client.tokens.set_access_token("sharepoint", "S-old", 60)
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        with pytest.raises(TokenExchangeError) as exc_info:
            await client.handle_redirect_callback(REDIRECT_URI)

        err = exc_info.value
        assert err.error == "invalid_grant"
        assert err.error_description == "Code expired"
        assert err.status_code == 400
        assert str(err) == "invalid_grant (400): Code expired"
        assert not client.is_authorized("graph")
        assert client.is_authorized("sharepoint")
        assert client.tokens.get_code_verifier() is None
        assert len(provider.requests_to("/token")) == 1

    @pytest.mark.asyncio
    async def test_malformed_success_body(self, make_client, provider, navigator) -> None:
        provider.on("/token", httpx.Response(200, json={"access_token": "A", "refresh_token": "R", "expires_in": "soon"}))
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        with pytest.raises(TokenExchangeError, match="missing or invalid fields: expires_in$"):
            await client.handle_redirect_callback(REDIRECT_URI)
        assert not client.is_authorized("graph")

    @pytest.mark.asyncio
    async def test_non_finite_expiry_stores_nothing(self, make_client, provider, navigator) -> None:
        provider.on(
            "/token",
            httpx.Response(
                200,
                content=b'{"access_token": "A", "refresh_token": "R", "expires_in": NaN}',
                headers={"Content-Type": "application/json"},
            ),
        )
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        with pytest.raises(TokenExchangeError, match="missing or invalid fields: expires_in$"):
            await client.handle_redirect_callback(REDIRECT_URI)
        assert not client.is_authorized("graph")
        assert client.tokens.get_refresh_token() is None

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, make_client, provider, navigator) -> None:
        provider.on("/token", httpx.Response(502, text="Bad Gateway"))
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        with pytest.raises(TokenExchangeError, match="Token endpoint returned HTTP 502") as exc_info:
            await client.handle_redirect_callback(REDIRECT_URI)
        assert exc_info.value.error is None

    @pytest.mark.asyncio
    async def test_transport_failure(self, make_client, provider, navigator) -> None:
        provider.on("/token", httpx.ConnectError("connection refused"))
        client = make_client()
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        with pytest.raises(TokenExchangeError) as exc_info:
            await client.handle_redirect_callback(REDIRECT_URI)
        assert exc_info.value.exit_code == EXIT_CONNECTION_ERROR
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_secondary_failure_is_not_raised(
        self, make_client, provider, navigator, caplog: pytest.LogCaptureFixture
    ) -> None:
        provider.on(
            "/token",
            httpx.Response(200, json=_token_json()),
            httpx.Response(400, json={"error": "invalid_scope"}),
        )
        client = make_client()
        seen: list[Optional[str]] = []
        client.subscribe("sharepoint", seen.append)
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        with caplog.at_level(logging.WARNING, logger="oauthspa"):
            await client.handle_redirect_callback(REDIRECT_URI)
            await client.wait_for_background_tasks()

        assert client.is_authorized("graph")
        assert not client.is_authorized("sharepoint")
        assert client.tokens.get_refresh_token() == "R"
        assert seen == [None, None]
        assert "oauthspa-refresh-sharepoint" in caplog.text

    @pytest.mark.asyncio
    async def test_single_resource_makes_one_request(
        self, make_client, make_config, provider, navigator
    ) -> None:
        provider.on("/token", httpx.Response(200, json=_token_json()))
        client = make_client(make_config(resources=[Resource(identifier="graph", scopes=["User.Read"])]))
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        assert await client.handle_redirect_callback(REDIRECT_URI) is None
        await client.wait_for_background_tasks()
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_notifies_subscribers(self, make_client, provider, navigator) -> None:
        provider.on("/token", httpx.Response(200, json=_token_json()))
        client = make_client()
        seen: list[Optional[str]] = []
        client.subscribe("graph", seen.append)
        client.login_with_redirect(REDIRECT_URI)
        _arrive(navigator, code="abc")

        await client.handle_redirect_callback(REDIRECT_URI)
        await client.wait_for_background_tasks()
        assert seen == [None, "A"]


def test_redirect_query_parsing_handles_encoded_values() -> None:
    query = parse_qs(urlparse(f"{REDIRECT_URI}?code=a%2Fb&state=s").query)
    assert query["code"] == ["a/b"]

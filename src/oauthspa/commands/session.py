"""Session commands -- run the authorization flow and use its tokens.

These are registered as top-level commands of the ``oauthspa`` CLI and all
operate on the active profile (see :func:`oauthspa.config.resolve_profile`).
Tokens persist in the profile's :class:`~oauthspa.storage.FileStore`, so a
``login`` in one invocation serves every later ``token`` call until the
refresh token is revoked.

Typical workflow::

    oauthspa login                   # browser round trip
    oauthspa token graph             # print a (refreshed) access token
    oauthspa status                  # per-resource token state
    oauthspa logout
"""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timezone
from typing import Any, Coroutine, Optional, TypeVar
from urllib.parse import parse_qs, urlparse

import typer

from oauthspa.client import OAuthClient
from oauthspa.exceptions import OAuthSpaError
from oauthspa.exit_codes import EXIT_AUTH_FAILURE, EXIT_GENERIC_FAILURE
from oauthspa.models import Profile
from oauthspa.navigation import LoopbackNavigator
from oauthspa.output import (
    debug,
    error,
    format_response,
    info,
    print_data,
    print_table,
    success,
    suggest,
    warning,
)

T = TypeVar("T")


def _open_client(ctx: typer.Context, local_logout: bool = False) -> tuple[Profile, OAuthClient, LoopbackNavigator]:
    """Build a client for the active profile, backed by its token file."""
    from oauthspa.config import open_token_storage, resolve_profile

    obj = ctx.obj or {}
    profile = resolve_profile(obj.get("profile"))
    config = profile.client
    if local_logout:
        config = config.model_copy(update={"logout_endpoint": None})

    navigator = LoopbackNavigator(port=profile.redirect_port, path=profile.redirect_path)
    client = OAuthClient(config, storage=open_token_storage(profile.name), navigator=navigator)
    return profile, client, navigator


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, mapping library errors to a clean exit."""
    try:
        return asyncio.run(coro)
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def login_command(
    ctx: typer.Context,
    prompt: Optional[str] = typer.Option(
        None, "--prompt", help="Provider prompt hint, e.g. 'login' to force a fresh session."
    ),
) -> None:
    """Log in through the browser and store the resulting tokens.

    Opens the provider's authorization page, waits for the redirect on a
    loopback listener, checks the returned ``state``, then redeems the code.
    Secondary resources are fetched with the refresh token before the
    command returns; a failure there is reported as a warning only.

    Example::

        oauthspa login
        oauthspa --profile aps login --prompt login
    """
    profile, client, navigator = _open_or_exit(ctx)

    state = secrets.token_urlsafe(16)
    try:
        with navigator.listen():
            client.login_with_redirect(navigator.redirect_uri, state=state, prompt=prompt)
            info("Opening the browser for authorization. If it does not open, visit:")
            info(navigator.history[-1])
            debug(f"Waiting for the redirect on {navigator.redirect_uri}")
            navigator.wait_for_redirect()
    except OSError as exc:
        error(f"Could not listen on port {profile.redirect_port}: {exc}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE) from None
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    params = parse_qs(urlparse(navigator.current_url()).query)
    if params.get("state", [None])[0] != state:
        client.tokens.clear_code_verifier()
        error("The callback state does not match the login request.")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    async def _complete() -> None:
        await client.handle_redirect_callback(navigator.redirect_uri)
        await client.wait_for_background_tasks()

    _run(_complete())

    missing = [r.identifier for r in profile.client.resources if not client.is_authorized(r.identifier)]
    success(f'Logged in with profile "{profile.name}".')
    for identifier in missing:
        warning(f"No token obtained for resource '{identifier}'.")


def token_command(
    ctx: typer.Context,
    resource: str = typer.Argument(help="Resource identifier."),
    no_refresh: bool = typer.Option(
        False, "--no-refresh", help="Print the stored token even if it has expired."
    ),
) -> None:
    """Print the access token of a resource, refreshing it when expired.

    Example::

        curl -H "Authorization: Bearer $(oauthspa token graph)" https://...
    """
    _, client, _ = _open_or_exit(ctx)
    access_token = _run(client.get_access_token(resource, refresh_if_expired=not no_refresh))
    if access_token is None:
        error(f"Not logged in for resource '{resource}'.")
        suggest("Log in: oauthspa login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    print_data(access_token)


def refresh_command(
    ctx: typer.Context,
    resource: str = typer.Argument(help="Resource identifier."),
) -> None:
    """Force a refresh of a resource's access token."""
    _, client, _ = _open_or_exit(ctx)
    _run(client.refresh_access_token(resource))
    success(f"Refreshed the access token for '{resource}'.")


def userinfo_command(ctx: typer.Context) -> None:
    """Print the authenticated user's profile."""
    _, client, _ = _open_or_exit(ctx)
    user_info = _run(client.get_user_info())
    if user_info is None:
        error("Not logged in.")
        suggest("Log in: oauthspa login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    format_response(user_info)


def introspect_command(
    ctx: typer.Context,
    resource: str = typer.Argument(help="Resource identifier."),
) -> None:
    """Ask the provider whether a resource's access token is active."""
    _, client, _ = _open_or_exit(ctx)
    payload = _run(client.introspect_token(resource))
    if payload is None:
        error(f"Not logged in for resource '{resource}'.")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    format_response(payload)


def status_command(ctx: typer.Context) -> None:
    """Show the stored token state of every resource. Makes no network calls."""
    profile, client, _ = _open_or_exit(ctx)

    rows: list[list[str]] = []
    for resource in profile.client.resources:
        authorized = client.is_authorized(resource.identifier)
        expires_at = client.tokens.get_expiration_time(resource.identifier)
        rows.append([
            resource.identifier,
            "yes" if authorized else "no",
            _format_ms(expires_at) if authorized else "-",
            ("yes" if client.token_is_expired(resource.identifier) else "no") if authorized else "-",
        ])

    print_table(["Resource", "Authorized", "Expires", "Expired"], rows, title=f"Profile: {profile.name}")
    if client.tokens.get_refresh_token() is None:
        suggest("No refresh token stored. Log in: oauthspa login")


def logout_command(
    ctx: typer.Context,
    return_to: Optional[str] = typer.Option(
        None, "--return-to", help="post_logout_redirect_uri for the provider's logout page."
    ),
    local: bool = typer.Option(
        False, "--local", help="Only revoke and forget tokens; do not open the logout page."
    ),
) -> None:
    """Revoke the stored tokens and forget them."""
    profile, client, _ = _open_or_exit(ctx, local_logout=local)
    _run(client.logout(return_to=return_to))
    success(f'Logged out of profile "{profile.name}".')


def _open_or_exit(ctx: typer.Context, local_logout: bool = False) -> tuple[Profile, OAuthClient, LoopbackNavigator]:
    try:
        return _open_client(ctx, local_logout=local_logout)
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _format_ms(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat(timespec="seconds")

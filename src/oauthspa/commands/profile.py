"""Profile commands -- create, inspect, and remove client configurations.

Provides the ``oauthspa profile`` sub-command group. A profile is one
:class:`~oauthspa.models.ClientConfig` plus the loopback redirect settings
the CLI uses; see :mod:`oauthspa.config` for where profiles live.

Resources are given as ``IDENTIFIER=SCOPE[,SCOPE...]``. The identifier is
prefixed to every scope unless ``--scope-prefix`` overrides it::

    oauthspa profile add graph-app \\
        --client-id 1234 \\
        --authorization-endpoint https://login.example.com/authorize \\
        --token-endpoint https://login.example.com/token \\
        --resource "https://graph.example.com/=User.Read" \\
        --user-info-resource "https://graph.example.com/"

    oauthspa profile discover myidp https://idp.example.com --client-id 1234 \\
        --resource api=read,write

    oauthspa profile autodesk aps --client-id 1234 --scope data:read
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from pydantic import ValidationError

from oauthspa.exceptions import OAuthSpaError
from oauthspa.models import ClientConfig, Profile, Resource
from oauthspa.output import error, format_response, info, print_table, success, suggest

profile_app = typer.Typer(no_args_is_help=True)


def parse_resources(
    entries: list[str],
    user_info_resource: Optional[str] = None,
    scope_prefix: Optional[str] = None,
) -> list[Resource]:
    """Parse ``IDENTIFIER=SCOPE[,SCOPE...]`` strings into resources.

    The identifier is split at the last ``=`` so that URL identifiers with
    query strings survive.

    Raises:
        typer.BadParameter: On an empty identifier or an unknown
            ``user_info_resource``.
    """
    resources: list[Resource] = []
    for entry in entries:
        identifier, sep, scopes = entry.rpartition("=")
        if not sep:
            identifier, scopes = entry, ""
        if not identifier:
            raise typer.BadParameter(f"Resource '{entry}' has no identifier.")
        resources.append(
            Resource(
                identifier=identifier,
                scopes=[s.strip() for s in scopes.split(",") if s.strip()],
                is_user_info_resource=(identifier == user_info_resource),
                scope_prefix=scope_prefix,
            )
        )
    if user_info_resource is not None and not any(r.is_user_info_resource for r in resources):
        raise typer.BadParameter(f"--user-info-resource '{user_info_resource}' is not among --resource.")
    return resources


def _save_new_profile(
    name: str,
    client: ClientConfig,
    redirect_port: int,
    force: bool,
) -> None:
    from oauthspa.config import profile_exists, save_profile

    if profile_exists(name) and not force:
        error(f"Profile '{name}' already exists. Use --force to overwrite.")
        raise typer.Exit(code=2)
    save_profile(Profile(name=name, client=client, redirect_port=redirect_port))
    success(f'Profile "{name}" saved.')
    suggest(f"Log in: oauthspa --profile {name} login")


@profile_app.command("add")
def profile_add(
    name: str = typer.Argument(help="Profile name."),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client identifier."),
    authorization_endpoint: str = typer.Option(..., "--authorization-endpoint"),
    token_endpoint: str = typer.Option(..., "--token-endpoint"),
    resource: list[str] = typer.Option(
        ..., "--resource", "-r", help="IDENTIFIER=SCOPE[,SCOPE...]; repeat for more resources."
    ),
    revoke_endpoint: Optional[str] = typer.Option(None, "--revoke-endpoint"),
    logout_endpoint: Optional[str] = typer.Option(None, "--logout-endpoint"),
    introspect_endpoint: Optional[str] = typer.Option(None, "--introspect-endpoint"),
    user_info_endpoint: Optional[str] = typer.Option(None, "--user-info-endpoint"),
    user_info_resource: Optional[str] = typer.Option(
        None, "--user-info-resource", help="Resource whose token authorizes the user-info endpoint."
    ),
    scope_prefix: Optional[str] = typer.Option(
        None, "--scope-prefix", help="Prefix for every scope (defaults to each resource identifier)."
    ),
    redirect_port: int = typer.Option(0, "--redirect-port", help="Loopback port (0 = any free port)."),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing profile."),
) -> None:
    """Create a profile from explicit endpoints."""
    resources = parse_resources(resource, user_info_resource, scope_prefix)
    try:
        client = ClientConfig(
            client_id=client_id,
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            revoke_endpoint=revoke_endpoint,
            logout_endpoint=logout_endpoint,
            introspect_endpoint=introspect_endpoint,
            user_info_endpoint=user_info_endpoint,
            resources=resources,
        )
    except ValidationError as exc:
        error(f"Invalid client configuration: {exc}")
        raise typer.Exit(code=2) from None
    _save_new_profile(name, client, redirect_port, force)


@profile_app.command("discover")
def profile_discover(
    name: str = typer.Argument(help="Profile name."),
    issuer: str = typer.Argument(help="Issuer URL or full .well-known document URL."),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client identifier."),
    resource: list[str] = typer.Option(
        ..., "--resource", "-r", help="IDENTIFIER=SCOPE[,SCOPE...]; repeat for more resources."
    ),
    user_info_resource: Optional[str] = typer.Option(None, "--user-info-resource"),
    scope_prefix: Optional[str] = typer.Option(None, "--scope-prefix"),
    redirect_port: int = typer.Option(0, "--redirect-port"),
    force: bool = typer.Option(False, "--force", "-f"),
) -> None:
    """Create a profile from the provider's discovery document."""
    from oauthspa.discovery import fetch_provider_metadata, well_known_url

    resources = parse_resources(resource, user_info_resource, scope_prefix)
    url = well_known_url(issuer)
    info(f"Fetching {url}")
    try:
        metadata = asyncio.run(fetch_provider_metadata(url))
        client = metadata.to_client_config(client_id, resources)
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    except ValidationError as exc:
        error(f"Invalid client configuration: {exc}")
        raise typer.Exit(code=2) from None
    _save_new_profile(name, client, redirect_port, force)


@profile_app.command("autodesk")
def profile_autodesk(
    name: str = typer.Argument(help="Profile name."),
    client_id: str = typer.Option(..., "--client-id", help="APS application client ID."),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="APS scope; repeat for more (default: user-profile:read data:read)."
    ),
    redirect_port: int = typer.Option(0, "--redirect-port"),
    force: bool = typer.Option(False, "--force", "-f"),
) -> None:
    """Create a profile for Autodesk Platform Services."""
    from oauthspa.providers.autodesk import autodesk_client_config

    try:
        client = autodesk_client_config(client_id, scope) if scope else autodesk_client_config(client_id)
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    _save_new_profile(name, client, redirect_port, force)


@profile_app.command("list")
def profile_list() -> None:
    """List profiles with their client IDs and resources."""
    from oauthspa.config import list_profiles, load_global_config, load_profile

    names = list_profiles()
    if not names:
        info("No profiles configured.")
        suggest("Create one: oauthspa profile add <name> ...")
        return

    default = load_global_config().default_profile
    rows: list[list[str]] = []
    for profile_name in names:
        try:
            profile = load_profile(profile_name)
        except OAuthSpaError:
            rows.append([profile_name, "error", "-", ""])
            continue
        rows.append([
            profile_name,
            profile.client.client_id,
            ", ".join(r.identifier for r in profile.client.resources),
            "*" if profile_name == default else "",
        ])
    print_table(["Profile", "Client ID", "Resources", "Default"], rows, title="Profiles")


@profile_app.command("show")
def profile_show(name: str = typer.Argument(help="Profile name.")) -> None:
    """Print a profile's configuration."""
    from oauthspa.config import load_profile

    try:
        profile = load_profile(name)
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    format_response(profile.model_dump(mode="json"))


@profile_app.command("use")
def profile_use(name: str = typer.Argument(help="Profile name.")) -> None:
    """Make a profile the default."""
    from oauthspa.config import load_global_config, profile_exists, save_global_config

    if not profile_exists(name):
        error(f"Profile '{name}' not found.")
        raise typer.Exit(code=2)
    config = load_global_config()
    config.default_profile = name
    save_global_config(config)
    success(f'Default profile set to "{name}".')


@profile_app.command("remove")
def profile_remove(
    name: str = typer.Argument(help="Profile name."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete a profile and its stored tokens (without revoking them)."""
    from oauthspa.config import delete_profile, load_global_config, save_global_config

    if not force:
        typer.confirm(f"Delete profile '{name}' and its stored tokens?", abort=True)
    try:
        delete_profile(name)
    except OAuthSpaError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    config = load_global_config()
    if config.default_profile == name:
        config.default_profile = None
        save_global_config(config)
    success(f'Profile "{name}" removed.')

"""Canonical Pydantic models shared across all oauthspa modules.

The models fall into three groups:

**Client configuration** -- immutable, created once per client:
    :class:`Resource` and :class:`ClientConfig`.

**Provider payloads** -- validated responses from the authorization server:
    :class:`TokenResponse`, :class:`ProviderMetadata`.

**Host configuration** -- serialised as JSON in the user's config directory
by :mod:`oauthspa.config`: :class:`Profile` and :class:`GlobalConfig`.

All models use Pydantic v2. Provider payload models use ``extra="allow"``
so that provider-specific fields (``ext_expires_in``, ``id_token``, ...)
survive validation and stay reachable through ``model_extra``.
"""

from __future__ import annotations

from typing import Annotated, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    model_validator,
)

DEFAULT_NONCE = "12321321"
"""Fixed ``nonce`` marker sent with every authorization request."""


# --- Client configuration ---


class Resource(BaseModel):
    """A protected API the client requests its own access token for.

    Every resource of one client shares the refresh token obtained during
    the single authorization round trip, but keeps an independent access
    token and expiry.

    Example::

        Resource(identifier="graph", scopes=["User.Read"], is_user_info_resource=True)
    """

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(
        min_length=1,
        description="Unique resource name; namespaces the storage keys",
    )
    scopes: list[str] = Field(
        default_factory=list,
        description="Permissions requested for this resource, in order",
    )
    is_user_info_resource: bool = Field(
        default=False,
        description="Whether this resource's token authorizes the user-info endpoint",
    )
    scope_prefix: Optional[str] = Field(
        default=None,
        description="String prefixed to every permission (defaults to the identifier)",
    )

    @property
    def prefix(self) -> str:
        return self.identifier if self.scope_prefix is None else self.scope_prefix

    def joined_scope(self) -> str:
        """Return the space-joined, resource-qualified scope string."""
        return " ".join(f"{self.prefix}{permission}" for permission in self.scopes)


class ClientConfig(BaseModel):
    """Immutable configuration of one OAuth client.

    ``authorization_endpoint`` and ``token_endpoint`` are required; every
    other endpoint is optional and the operations depending on it either
    degrade (logout without a revoke or logout endpoint) or raise
    :class:`~oauthspa.exceptions.NotConfiguredError`.

    The ordered :attr:`resources` list doubles as the resource registry: the
    first resource is the one redeemed with the authorization code, every
    other resource is obtained through the refresh token.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(min_length=1)
    authorization_endpoint: str
    token_endpoint: str
    revoke_endpoint: Optional[str] = None
    logout_endpoint: Optional[str] = None
    introspect_endpoint: Optional[str] = None
    user_info_endpoint: Optional[str] = None
    nonce: str = DEFAULT_NONCE
    resources: list[Resource] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_resources(self) -> ClientConfig:
        seen: set[str] = set()
        for resource in self.resources:
            if resource.identifier in seen:
                raise ValueError(f"Duplicate resource identifier '{resource.identifier}'")
            seen.add(resource.identifier)
        flagged = [r.identifier for r in self.resources if r.is_user_info_resource]
        if len(flagged) > 1:
            raise ValueError(
                "At most one resource may be the user-info resource, got: "
                + ", ".join(flagged)
            )
        return self

    def get_resource(self, identifier: str) -> Optional[Resource]:
        """Return the resource named *identifier*, or ``None``."""
        for resource in self.resources:
            if resource.identifier == identifier:
                return resource
        return None

    @property
    def user_info_resource(self) -> Optional[Resource]:
        for resource in self.resources:
            if resource.is_user_info_resource:
                return resource
        return None

    def joined_scope(self) -> str:
        """Return the scope string for the authorization request (all resources)."""
        return " ".join(
            scope for scope in (r.joined_scope() for r in self.resources) if scope
        )


# --- Provider payloads ---


class TokenResponse(BaseModel):
    """Successful token endpoint response.

    Types are strict: a numeric string ``expires_in`` or a missing
    ``access_token`` is a shape violation, not something to coerce. Both
    grants must return a ``refresh_token``. ``expires_in`` must be a finite,
    non-negative number of seconds.
    """

    model_config = ConfigDict(extra="allow")

    access_token: StrictStr
    expires_in: Union[
        Annotated[StrictInt, Field(ge=0)],
        Annotated[StrictFloat, Field(ge=0, allow_inf_nan=False)],
    ]
    refresh_token: StrictStr
    token_type: Optional[str] = None
    scope: Optional[str] = None


class ProviderMetadata(BaseModel):
    """Endpoints advertised by a provider's discovery document."""

    model_config = ConfigDict(extra="allow")

    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    device_authorization_endpoint: Optional[str] = None
    introspection_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None

    def to_client_config(self, client_id: str, resources: list[Resource]) -> ClientConfig:
        """Build a :class:`ClientConfig` from the discovered endpoints."""
        return ClientConfig(
            client_id=client_id,
            authorization_endpoint=self.authorization_endpoint,
            token_endpoint=self.token_endpoint,
            revoke_endpoint=self.revocation_endpoint,
            logout_endpoint=self.end_session_endpoint,
            introspect_endpoint=self.introspection_endpoint,
            user_info_endpoint=self.userinfo_endpoint,
            resources=resources,
        )


# --- Host configuration ---


class Profile(BaseModel):
    """A named client configuration used by the command-line host.

    Example::

        Profile(name="aps", client=ClientConfig(...), redirect_port=8765)
    """

    name: str = Field(description="Profile identifier, used as the file name")
    client: ClientConfig
    redirect_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Loopback port for the redirect listener (0 = any free port)",
    )
    redirect_path: str = Field(
        default="/oauth/callback",
        description="Path of the loopback redirect URI",
    )


class GlobalConfig(BaseModel):
    """Top-level settings stored in ``config.json``."""

    default_profile: Optional[str] = None
    auto_select_single_profile: bool = True
    output_format: str = Field(default="auto", description="auto, json, plain, rich")

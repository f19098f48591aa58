"""Autodesk Platform Services (APS) preset.

APS scopes are unqualified (``data:read``, not ``<resource>data:read``), so
the preset's single resource uses an empty scope prefix. The same resource
authorizes the user-profile endpoint.
"""

from __future__ import annotations

from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict

from oauthspa.exceptions import ConfigError
from oauthspa.models import ClientConfig, Resource

AUTHENTICATION_BASE_URL = "https://developer.api.autodesk.com/authentication/v2"
USER_INFO_ENDPOINT = "https://api.userprofile.autodesk.com/userinfo"

AUTODESK_SCOPES: tuple[str, ...] = (
    "user-profile:read",
    "user:read",
    "user:write",
    "viewables:read",
    "data:read",
    "data:write",
    "data:create",
    "data:search",
    "bucket:create",
    "bucket:read",
    "bucket:update",
    "bucket:delete",
    "code:all",
    "account:read",
    "account:write",
    "openid",
)


class AutodeskAddress(BaseModel):
    model_config = ConfigDict(extra="allow")

    street_address: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class AutodeskUserInformation(BaseModel):
    """Profile returned by the APS user-info endpoint.

    Only the commonly used claims are declared; everything else the endpoint
    returns is preserved in ``model_extra``.

    Example::

        info = await client.get_user_info()
        profile = AutodeskUserInformation.model_validate(info)
        print(profile.email)
    """

    model_config = ConfigDict(extra="allow")

    sub: str
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    preferred_username: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    profile: Optional[str] = None
    picture: Optional[str] = None
    locale: Optional[str] = None
    updated_at: Optional[int] = None
    is_2fa_enabled: Optional[bool] = None
    country_code: Optional[str] = None
    address: Optional[AutodeskAddress] = None
    phone_number: Optional[str] = None
    phone_number_verified: Optional[bool] = None
    ldap_enabled: Optional[bool] = None
    ldap_domain: Optional[str] = None
    job_title: Optional[str] = None
    industry: Optional[str] = None
    industry_code: Optional[str] = None
    about_me: Optional[str] = None
    language: Optional[str] = None
    company: Optional[str] = None
    created_date: Optional[str] = None
    last_login_date: Optional[str] = None
    eidm_guid: Optional[str] = None
    opt_in: Optional[bool] = None
    thumbnails: Optional[dict[str, str]] = None


def autodesk_client_config(
    client_id: str,
    scopes: Sequence[str] = ("user-profile:read", "data:read"),
    identifier: str = "autodesk",
) -> ClientConfig:
    """Build a :class:`~oauthspa.models.ClientConfig` for APS.

    Args:
        client_id: The APS application's client ID.
        scopes: Requested APS scopes; each must be in :data:`AUTODESK_SCOPES`.
        identifier: Resource identifier used for storage keys.

    Raises:
        ConfigError: If a scope is not an APS scope.
    """
    unknown = [s for s in scopes if s not in AUTODESK_SCOPES]
    if unknown:
        raise ConfigError(f"Unknown Autodesk scope(s): {', '.join(unknown)}")

    return ClientConfig(
        client_id=client_id,
        authorization_endpoint=f"{AUTHENTICATION_BASE_URL}/authorize",
        token_endpoint=f"{AUTHENTICATION_BASE_URL}/token",
        revoke_endpoint=f"{AUTHENTICATION_BASE_URL}/revoke",
        introspect_endpoint=f"{AUTHENTICATION_BASE_URL}/introspect",
        logout_endpoint=f"{AUTHENTICATION_BASE_URL}/logout",
        user_info_endpoint=USER_INFO_ENDPOINT,
        resources=[
            Resource(
                identifier=identifier,
                scopes=list(scopes),
                is_user_info_resource=True,
                scope_prefix="",
            )
        ],
    )

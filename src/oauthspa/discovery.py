"""Provider discovery via ``.well-known/openid-configuration``.

:func:`fetch_provider_metadata` reads a provider's discovery document and
returns the endpoints an :class:`~oauthspa.client.OAuthClient` needs.
``authorization_endpoint`` and ``token_endpoint`` are mandatory; every other
endpoint is kept only when the document advertises it as a string.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from oauthspa.exceptions import DiscoveryError
from oauthspa.models import ProviderMetadata

logger = logging.getLogger(__name__)

_REQUIRED = ("authorization_endpoint", "token_endpoint")
_OPTIONAL = (
    "userinfo_endpoint",
    "end_session_endpoint",
    "device_authorization_endpoint",
    "introspection_endpoint",
    "revocation_endpoint",
    "jwks_uri",
)


def well_known_url(issuer: str) -> str:
    """Return the discovery document URL for *issuer*.

    URLs that already point at a ``.well-known`` document are returned as is.
    """
    if "/.well-known/" in issuer:
        return issuer
    return issuer.rstrip("/") + "/.well-known/openid-configuration"


def parse_provider_metadata(data: Any) -> ProviderMetadata:
    """Validate a decoded discovery document.

    Raises:
        DiscoveryError: If *data* is not an object or a required endpoint is
            missing or not a string.
    """
    if not isinstance(data, dict):
        raise DiscoveryError("Provider configuration is not a JSON object")

    for key in _REQUIRED:
        if not isinstance(data.get(key), str):
            raise DiscoveryError(f'"{key}" did not exist in the provider configuration')

    fields: dict[str, Optional[str]] = {key: data[key] for key in _REQUIRED}
    for key in _OPTIONAL:
        value = data.get(key)
        fields[key] = value if isinstance(value, str) else None
    return ProviderMetadata(**fields)


async def fetch_provider_metadata(
    configuration_endpoint: str,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> ProviderMetadata:
    """Fetch and validate a provider's discovery document.

    Args:
        configuration_endpoint: The discovery document URL (see
            :func:`well_known_url`).
        http_client: Optional shared client; a short-lived one is used
            otherwise.
        timeout: Request timeout for the short-lived client.

    Raises:
        DiscoveryError: On transport failure, non-200 status, a non-JSON
            body, or missing required endpoints.
    """
    logger.debug("Fetching provider configuration from %s", configuration_endpoint)
    try:
        if http_client is not None:
            response = await http_client.get(configuration_endpoint)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(configuration_endpoint)
    except httpx.HTTPError as exc:
        raise DiscoveryError(f"Provider configuration request failed: {exc}") from exc

    if response.status_code != 200:
        raise DiscoveryError(
            f"Provider configuration endpoint returned HTTP {response.status_code}"
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise DiscoveryError("Provider configuration is not valid JSON") from exc
    return parse_provider_metadata(data)

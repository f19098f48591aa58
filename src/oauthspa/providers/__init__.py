"""Presets for specific authorization providers.

Each module exposes a ``*_client_config`` factory returning a ready
:class:`~oauthspa.models.ClientConfig` plus the provider's scope catalogue
and user-profile model.
"""

from oauthspa.providers.autodesk import (
    AUTODESK_SCOPES,
    AutodeskUserInformation,
    autodesk_client_config,
)

__all__ = ["AUTODESK_SCOPES", "AutodeskUserInformation", "autodesk_client_config"]

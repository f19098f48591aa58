"""Token store -- per-resource access tokens over a key-value store.

Key layout for client ``c`` and resource ``r``::

    c.r.OAuthAccessToken      access token
    c.r.OAuthExpirationTime   absolute expiry, epoch milliseconds
    c.OAuthRefreshToken       refresh token shared by every resource
    c.OAuthCodeVerifier       PKCE verifier, present between redirect and callback

The access token and its expiry are always written and removed together.
Nothing here notifies observers; :class:`~oauthspa.client.OAuthClient`
fans out after every mutation.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Union

from oauthspa.storage import KeyValueStore

Clock = Callable[[], int]
"""Returns the current time in epoch milliseconds."""


def system_clock() -> int:
    return int(time.time() * 1000)


class TokenStore:
    """Reads and writes token state for one client.

    Args:
        storage: Backing :class:`~oauthspa.storage.KeyValueStore`.
        client_id: Client identifier; namespaces every key.
        clock: Millisecond clock used for expiry arithmetic.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        client_id: str,
        clock: Optional[Clock] = None,
    ) -> None:
        self._storage = storage
        self._client_id = client_id
        self._clock = clock or system_clock

        self.refresh_token_key = f"{client_id}.OAuthRefreshToken"
        self.code_verifier_key = f"{client_id}.OAuthCodeVerifier"

    def now(self) -> int:
        return self._clock()

    # --- key derivation ---

    def access_token_key(self, resource: str) -> str:
        return f"{self._client_id}.{resource}.OAuthAccessToken"

    def expiration_time_key(self, resource: str) -> str:
        return f"{self._client_id}.{resource}.OAuthExpirationTime"

    # --- access tokens ---

    def get_access_token(self, resource: str) -> Optional[str]:
        return self._storage.get(self.access_token_key(resource)) or None

    def get_expiration_time(self, resource: str) -> Optional[int]:
        """Return the stored expiry in epoch milliseconds, or ``None``."""
        raw = self._storage.get(self.expiration_time_key(resource))
        if not raw:
            return None
        try:
            return int(float(raw))
        except ValueError:
            return None

    def set_access_token(
        self,
        resource: str,
        access_token: str,
        expires_in: Union[int, float],
    ) -> int:
        """Store *access_token* expiring *expires_in* seconds from now.

        Returns:
            The absolute expiry in epoch milliseconds.
        """
        expires_at = self.now() + int(expires_in * 1000)
        self._storage.set(self.access_token_key(resource), access_token)
        self._storage.set(self.expiration_time_key(resource), str(expires_at))
        return expires_at

    def clear_access_token(self, resource: str) -> None:
        self._storage.delete(self.access_token_key(resource))
        self._storage.delete(self.expiration_time_key(resource))

    def is_expired(self, resource: str) -> bool:
        """Whether the resource's token is past its expiry.

        A token expiring at exactly the current millisecond is still valid;
        a missing expiry counts as expired.
        """
        expires_at = self.get_expiration_time(resource)
        return self.now() > (expires_at or 0)

    # --- refresh token ---

    def get_refresh_token(self) -> Optional[str]:
        return self._storage.get(self.refresh_token_key) or None

    def set_refresh_token(self, refresh_token: str) -> None:
        if refresh_token:
            self._storage.set(self.refresh_token_key, refresh_token)

    def clear_refresh_token(self) -> None:
        self._storage.delete(self.refresh_token_key)

    # --- code verifier ---

    def get_code_verifier(self) -> Optional[str]:
        return self._storage.get(self.code_verifier_key) or None

    def set_code_verifier(self, code_verifier: str) -> None:
        self._storage.set(self.code_verifier_key, code_verifier)

    def clear_code_verifier(self) -> None:
        self._storage.delete(self.code_verifier_key)

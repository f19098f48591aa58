"""PKCE (:rfc:`7636`) verifier and S256 challenge generation.

The two capabilities the generator needs from its host are injectable so
that tests can pin the output:

- :class:`RandomSource` -- must be a CSPRNG outside tests.
  :class:`SystemRandomSource` wraps :func:`secrets.token_bytes`.
- :class:`Hasher` -- SHA-256 digest. :class:`Sha256Hasher` wraps
  :mod:`hashlib`.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Optional, Protocol

VERIFIER_BYTES = 32


class RandomSource(Protocol):
    def bytes(self, n: int) -> bytes: ...


class Hasher(Protocol):
    def sha256(self, data: bytes) -> bytes: ...


class SystemRandomSource:
    """Random bytes from the operating system CSPRNG."""

    def bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)


class Sha256Hasher:
    def sha256(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()


def base64url_encode(data: bytes) -> str:
    """Base64url-encode *data* without ``=`` padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_verifier(random_source: Optional[RandomSource] = None) -> str:
    """Generate a PKCE code verifier.

    32 random bytes encode to 43 base64url characters (256 bits of entropy),
    the lower bound :rfc:`7636` allows.

    Args:
        random_source: Byte source; defaults to :class:`SystemRandomSource`.

    Returns:
        The code verifier string.
    """
    source = random_source or SystemRandomSource()
    return base64url_encode(source.bytes(VERIFIER_BYTES))


def code_challenge(verifier: str, hasher: Optional[Hasher] = None) -> str:
    """Derive the S256 code challenge for *verifier*.

    Args:
        verifier: The code verifier.
        hasher: SHA-256 implementation; defaults to :class:`Sha256Hasher`.

    Returns:
        ``base64url(SHA-256(UTF-8(verifier)))`` without padding.
    """
    digest = (hasher or Sha256Hasher()).sha256(verifier.encode("utf-8"))
    return base64url_encode(digest)


def generate_pkce_pair(
    random_source: Optional[RandomSource] = None,
    hasher: Optional[Hasher] = None,
) -> tuple[str, str]:
    """Generate a ``(code_verifier, code_challenge)`` pair."""
    verifier = generate_verifier(random_source)
    return verifier, code_challenge(verifier, hasher)

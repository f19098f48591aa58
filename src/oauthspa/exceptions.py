"""Exception hierarchy for oauthspa.

All exceptions inherit from :class:`OAuthSpaError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`oauthspa.exit_codes`.
The command-line entry point in :func:`oauthspa.app.main` catches
``OAuthSpaError`` and exits with the matching code. Library callers are
expected to treat any error raised by a token accessor as "not
authenticated for this resource" and offer a new login.

Subclass hierarchy::

    OAuthSpaError               (exit 1)
    +-- ConfigError             (exit 7)
    |   +-- NotConfiguredError  (exit 7)
    +-- AuthorizationError      (exit 3)
    |   +-- MissingCodeError
    |   +-- MissingVerifierError
    |   +-- MissingRefreshTokenError
    |   +-- TokenExchangeError
    +-- UnknownResourceError    (exit 2)
    +-- UserInfoFetchError      (exit 5)
    +-- IntrospectionError      (exit 5)
    +-- DiscoveryError          (exit 5)
"""

from __future__ import annotations

from typing import Optional

from oauthspa.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PROVIDER_ERROR,
)


class OAuthSpaError(Exception):
    """Base exception for all oauthspa errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(OAuthSpaError):
    """Raised for configuration problems (missing profiles, invalid JSON, invalid client config)."""

    exit_code = EXIT_CONFIG_ERROR


class NotConfiguredError(ConfigError):
    """Raised when an operation needs an optional endpoint or resource that was not supplied."""


class AuthorizationError(OAuthSpaError):
    """Base class for failures of the authorization-code flow and token refresh."""

    exit_code = EXIT_AUTH_FAILURE


class MissingCodeError(AuthorizationError):
    """Raised when the callback URL carries no authorization ``code``."""


class MissingVerifierError(AuthorizationError):
    """Raised when no PKCE code verifier was stored before the callback."""


class MissingRefreshTokenError(AuthorizationError):
    """Raised when a refresh is requested but no refresh token is stored."""


class TokenExchangeError(AuthorizationError):
    """Raised when the token endpoint rejects a request or returns a malformed body.

    Args:
        message: Human-readable description.
        error: The provider's ``error`` code, when the response carried one.
        error_description: The provider's ``error_description``, if any.
        status_code: HTTP status of the token response, or ``None`` when the
            request never produced a response.
        exit_code: Optional override, used for transport failures.
    """

    def __init__(
        self,
        message: str,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
        status_code: Optional[int] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, exit_code)
        self.error = error
        self.error_description = error_description
        self.status_code = status_code


class UnknownResourceError(OAuthSpaError):
    """Raised when a resource identifier is not part of the client configuration."""

    exit_code = EXIT_INVALID_USAGE

    def __init__(self, identifier: str):
        super().__init__(f'There exists no resource for the identifier "{identifier}".')
        self.identifier = identifier


class UserInfoFetchError(OAuthSpaError):
    """Raised when the user-info endpoint answers with a non-200 status."""

    exit_code = EXIT_PROVIDER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class IntrospectionError(OAuthSpaError):
    """Raised when the introspection endpoint answers with a non-200 status."""

    exit_code = EXIT_PROVIDER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DiscoveryError(OAuthSpaError):
    """Raised when provider metadata cannot be fetched or lacks required endpoints."""

    exit_code = EXIT_PROVIDER_ERROR

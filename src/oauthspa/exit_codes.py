"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~oauthspa.exceptions.OAuthSpaError` subclass.
Shell wrappers can inspect the exit code to tell "log in again" apart from
"the provider is misconfigured" without parsing stderr.

Example::

    $ oauthspa token graph
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no valid token, log in again
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or an unknown resource."""

EXIT_AUTH_FAILURE = 3
"""The authorization flow failed or no usable token is stored."""

EXIT_PROVIDER_ERROR = 5
"""The authorization server answered with an unexpected status or payload."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CONFIG_ERROR = 7
"""The client configuration is missing an endpoint or is otherwise invalid."""

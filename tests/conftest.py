"""Shared test fixtures for oauthspa.

Provides a stub authorization server built on :class:`httpx.MockTransport`,
deterministic host capabilities (clock, navigator, storage), isolated
config directories, and a CLI runner. These fixtures are automatically
discovered by pytest and available to all test modules without explicit
imports.
"""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import pytest

from oauthspa.client import OAuthClient
from oauthspa.models import ClientConfig, Resource
from oauthspa.output import OutputFormat, OutputManager, reset_output, set_output
from oauthspa.storage import MemoryStore

AUTH_BASE = "https://auth.example.com"
REDIRECT_URI = "https://app.example.com/callback"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale. The
    Rich logging handler installed by the CLI holds the same stale stream.
    """
    yield
    reset_output()
    package_logger = logging.getLogger("oauthspa")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Stub authorization server
# ---------------------------------------------------------------------------

Entry = Union[httpx.Response, Exception, Callable[[httpx.Request], Any]]


class StubProvider:
    """Scripted responses keyed by request path.

    Each path holds a queue of entries consumed in order; the last entry
    repeats once the queue is down to one. An entry is an
    :class:`httpx.Response`, an exception to raise, or a (possibly async)
    callable receiving the request.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, list[Entry]] = {}
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(self._dispatch))

    def on(self, path: str, *entries: Entry) -> None:
        self._routes[path] = list(entries)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return dict(parse_qsl(request.content.decode()))

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": "not_found"})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            entry = entry(request)
            if inspect.isawaitable(entry):
                entry = await entry
        return entry


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


# ---------------------------------------------------------------------------
# Host capabilities
# ---------------------------------------------------------------------------


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class RecordingNavigator:
    """Navigator that records every navigation instead of leaving the page."""

    def __init__(self, current_url: str = REDIRECT_URI) -> None:
        self.history: list[str] = []
        self.url = current_url

    def navigate_to(self, url: str) -> None:
        self.history.append(url)

    def current_url(self) -> str:
        return self.url

    def last_query(self) -> dict[str, list[str]]:
        return parse_qs(urlparse(self.history[-1]).query)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


# ---------------------------------------------------------------------------
# Client fixtures
# ---------------------------------------------------------------------------


def _build_config(**overrides: Any) -> ClientConfig:
    fields: dict[str, Any] = {
        "client_id": "client",
        "authorization_endpoint": f"{AUTH_BASE}/authorize",
        "token_endpoint": f"{AUTH_BASE}/token",
        "revoke_endpoint": f"{AUTH_BASE}/revoke",
        "logout_endpoint": f"{AUTH_BASE}/logout",
        "introspect_endpoint": f"{AUTH_BASE}/introspect",
        "user_info_endpoint": f"{AUTH_BASE}/userinfo",
        "resources": [
            Resource(identifier="graph", scopes=["User.Read"], is_user_info_resource=True),
            Resource(identifier="sharepoint", scopes=["AllSites.Read", "AllSites.Write"]),
        ],
    }
    fields.update(overrides)
    return ClientConfig(**fields)


@pytest.fixture
def make_config() -> Callable[..., ClientConfig]:
    """Factory for a two-resource config; keyword arguments override fields."""
    return _build_config


@pytest.fixture
def make_client(
    provider: StubProvider,
    clock: FakeClock,
    navigator: RecordingNavigator,
    store: MemoryStore,
) -> Callable[..., OAuthClient]:
    """Factory for an :class:`OAuthClient` wired to the stub provider."""

    def _make(config: Optional[ClientConfig] = None, **kwargs: Any) -> OAuthClient:
        return OAuthClient(
            config or _build_config(),
            storage=store,
            navigator=navigator,
            http_client=provider.http_client,
            clock=clock,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user config or tokens, and clears
    ``OAUTHSPA_PROFILE``.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("oauthspa.config._is_xdg_platform", lambda: True)
    monkeypatch.delenv("OAUTHSPA_PROFILE", raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()

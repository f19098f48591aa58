"""Navigation capability -- where the engine sends the user, and where it is.

:class:`Navigator` replaces the browser's location object:

- :meth:`~Navigator.navigate_to` leaves the current page. For the engine it
  is a terminal side effect; nothing waits for it to "finish".
- :meth:`~Navigator.current_url` is the page the user is on, which after an
  authorization round trip is the redirect URI carrying ``code`` and
  ``state`` in its query string.

Two implementations are provided:

- :class:`BrowserNavigator` opens URLs in the system browser and lets the
  host record the current URL by hand.
- :class:`LoopbackNavigator` additionally listens on ``127.0.0.1`` for the
  provider's redirect, so a command-line host can complete the flow
  without a web server of its own.
"""

from __future__ import annotations

import html
import logging
import threading
import webbrowser
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Iterator, Optional, Protocol
from urllib.parse import parse_qs, urlparse

from oauthspa.exceptions import MissingCodeError

logger = logging.getLogger(__name__)


class Navigator(Protocol):
    def navigate_to(self, url: str) -> None: ...

    def current_url(self) -> str: ...


class BrowserNavigator:
    """Open URLs in the user's browser.

    Args:
        current_url: The initial location reported by :meth:`current_url`.
    """

    def __init__(self, current_url: str = "") -> None:
        self._current_url = current_url
        self.history: list[str] = []

    def navigate_to(self, url: str) -> None:
        self.history.append(url)
        logger.debug("Opening browser at %s", url)

        # Some browsers block the caller until the window closes
        browser_thread = threading.Thread(target=webbrowser.open, args=(url,), daemon=True)
        browser_thread.start()

    def current_url(self) -> str:
        return self._current_url

    def set_current_url(self, url: str) -> None:
        self._current_url = url


class LoopbackNavigator(BrowserNavigator):
    """Browser navigator that captures the redirect on a loopback listener.

    The redirect URI is ``http://127.0.0.1:{port}{path}``. Bind the listener
    with :meth:`listen` before sending the user to the provider, then call
    :meth:`wait_for_redirect` inside the block to serve exactly one request;
    the full URL of that request becomes :meth:`current_url`. The socket
    stays bound for the whole block, so a port picked by the OS cannot be
    taken by another process in between.

    Example::

        navigator = LoopbackNavigator()
        with navigator.listen():
            client.login_with_redirect(navigator.redirect_uri)
            navigator.wait_for_redirect()

    Args:
        port: Listening port; ``0`` lets the OS pick one when binding.
        path: Path component of the redirect URI.
        timeout: Seconds to wait for the redirect.
    """

    def __init__(self, port: int = 0, path: str = "/oauth/callback", timeout: float = 120.0) -> None:
        self.port = port
        self.path = path if path.startswith("/") else f"/{path}"
        self.timeout = timeout
        self._server: Optional[HTTPServer] = None
        self._captured: Optional[str] = None
        super().__init__(current_url=self.redirect_uri if port else "")

    @property
    def redirect_uri(self) -> str:
        if not self.port:
            raise RuntimeError("The loopback port is chosen when binding; call listen() first.")
        return f"http://127.0.0.1:{self.port}{self.path}"

    @property
    def listening(self) -> bool:
        return self._server is not None

    @contextmanager
    def listen(self) -> Iterator[LoopbackNavigator]:
        """Bind the loopback listener for the duration of the block."""
        navigator = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                navigator._captured = f"http://127.0.0.1:{navigator.port}{self.path}"
                params = parse_qs(urlparse(self.path).query)

                if "error" in params:
                    body = f"Authorization failed: {html.escape(params['error'][0])}"
                    error_desc = params.get("error_description", [""])[0]
                    if error_desc:
                        body += f" - {html.escape(error_desc)}"
                elif "code" in params:
                    body = (
                        "Authorization successful! You can close this window "
                        "and return to the terminal."
                    )
                else:
                    body = "No authorization code received."

                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(f"<html><body><h2>{body}</h2></body></html>".encode("utf-8"))

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("Loopback listener: " + format, *args)

        server = HTTPServer(("127.0.0.1", self.port), CallbackHandler)
        server.timeout = self.timeout
        self.port = server.server_address[1]
        self._server = server
        self.set_current_url(self.redirect_uri)
        logger.debug("Listening for the redirect on %s", self.redirect_uri)
        try:
            yield self
        finally:
            self._server = None
            server.server_close()

    def wait_for_redirect(self) -> str:
        """Serve one request on the loopback address and record its URL.

        Binds for the duration of the call when :meth:`listen` is not
        active.

        Returns:
            The captured callback URL.

        Raises:
            MissingCodeError: If nothing arrived within :attr:`timeout`.
        """
        if self._server is None:
            with self.listen():
                return self.wait_for_redirect()

        self._captured = None
        self._server.handle_request()

        url = self._captured
        if url is None:
            raise MissingCodeError(
                f"No redirect received on {self.redirect_uri} within {self.timeout:g} seconds"
            )
        self.set_current_url(url)
        return url

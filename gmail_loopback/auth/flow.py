"""Loopback authorization flow (RFC 8252) for installed applications.

A ``LoopbackAuthFlow`` runs exactly one authorization attempt:

1. Binds a single-use HTTP listener on ``localhost:<port>``.
2. Builds the consent URL and asks the browser opener to show it.
3. Waits for the provider to redirect to ``/callback`` with either an
   authorization ``code`` or an ``error``.
4. Settles its future exactly once and releases the port.

State machine::

    IDLE -> LISTENING -> (RESOLVED | DENIED | MALFORMED | CANCELLED) -> CLOSED

``CLOSED`` is terminal. A new instance is needed for another attempt.

Security considerations:
- The listener binds the loopback interface only
- Only one flow per port may be active in the process at a time
- The authorization code is never logged
"""

from __future__ import annotations

import concurrent.futures
import html
import logging
import threading
import webbrowser
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, quote, urlencode, urlparse

from gmail_loopback.config import GOOGLE_AUTH_URI, OAuthConfig
from gmail_loopback.utils.errors import (
    AuthenticationError,
    AuthorizationDeniedError,
    BindError,
    FlowCancelledError,
    FlowStateError,
    MissingCodeError,
)

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"
LOOPBACK_HOST = "localhost"

# How often the serving thread checks whether it should stop
_POLL_INTERVAL = 0.1

BrowserOpener = Callable[[str], bool]

_SUCCESS_PAGE = (
    b"<html><body><h1>Authorization Successful</h1>"
    b"<p>You can close this window and return to the application.</p>"
    b"<script>window.close();</script></body></html>"
)
_MISSING_CODE_PAGE = (
    b"<html><body><h1>Error</h1>"
    b"<p>No authorization code received. You can close this window.</p>"
    b"</body></html>"
)

# Ports held by live flows in this process
_active_ports: set[int] = set()
_active_ports_lock = threading.Lock()


class FlowState(Enum):
    """Lifecycle of a ``LoopbackAuthFlow``."""

    IDLE = "idle"
    LISTENING = "listening"
    RESOLVED = "resolved"
    DENIED = "denied"
    MALFORMED = "malformed"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class RequestState(Enum):
    """Progress of the authorization request itself."""

    PENDING = "pending"
    AWAITING_REDIRECT = "awaiting_redirect"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AuthorizationRequest:
    """The single in-flight authorization request of a flow."""

    client_id: str
    client_secret: str
    redirect_port: int
    scopes: list[str] = field(default_factory=list)
    state: RequestState = RequestState.PENDING


def open_in_browser(url: str) -> bool:
    """Open ``url`` in the default browser. Returns False if none is available."""
    try:
        return webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning("Could not launch a browser: %s", e)
        return False


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    auth_uri: str = GOOGLE_AUTH_URI,
) -> str:
    """Build the provider consent URL for an offline-access code grant."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{auth_uri}?{urlencode(params, quote_via=quote)}"


class _LoopbackServer(HTTPServer):
    """HTTPServer that knows which flow it reports to."""

    flow: LoopbackAuthFlow

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.exception("Error handling OAuth callback from %s", client_address)


class _CallbackHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the OAuth redirect."""

    server: _LoopbackServer
    # Seconds a connected client may stall before the socket is dropped
    timeout = 10

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)

        if parsed.path != CALLBACK_PATH:
            self._respond(404, b"Not found", content_type="text/plain")
            return

        params = parse_qs(parsed.query)
        flow = self.server.flow

        if "error" in params:
            error = params["error"][0]
            description = params.get("error_description", [""])[0]
            self._respond(
                400,
                (
                    "<html><body><h1>Authorization Failed</h1>"
                    f"<p>{html.escape(error)}</p>"
                    "<p>You can close this window.</p></body></html>"
                ).encode("utf-8"),
            )
            details = {"error_description": description} if description else None
            flow._settle(
                FlowState.DENIED, error=AuthorizationDeniedError(error, details=details)
            )
            return

        code = params.get("code", [""])[0]
        if code:
            self._respond(200, _SUCCESS_PAGE)
            flow._settle(FlowState.RESOLVED, code=code)
        else:
            self._respond(400, _MISSING_CODE_PAGE)
            flow._settle(
                FlowState.MALFORMED,
                error=MissingCodeError(details={"params": sorted(params.keys())}),
            )

    def _respond(self, status: int, body: bytes, content_type: str = "text/html") -> None:
        self.send_response(status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        # The default implementation would print the query string, code included
        logger.debug("OAuth callback server: %s %s", self.command, urlparse(self.path).path)


class LoopbackAuthFlow:
    """Single-use coordinator for one loopback authorization attempt.

    Attributes:
        _config: OAuth client settings (client, port, scopes).
        _browser: Callable used to show the consent URL.
        _future: Settled exactly once with the code or the failure.

    Example:
        >>> flow = LoopbackAuthFlow(OAuthConfig.from_env())
        >>> flow.begin_flow()
        >>> code = flow.wait_for_code(timeout=120)
    """

    def __init__(
        self,
        config: OAuthConfig,
        browser: BrowserOpener = open_in_browser,
        auth_uri: str = GOOGLE_AUTH_URI,
    ) -> None:
        self._config = config
        self._browser = browser
        self._auth_uri = auth_uri

        self._lock = threading.Lock()
        self._state = FlowState.IDLE
        self._request: AuthorizationRequest | None = None
        self._future: Future[str] | None = None
        self._server: _LoopbackServer | None = None
        self._thread: threading.Thread | None = None
        self._closing = threading.Event()
        self._port: int | None = None
        self._authorization_url: str | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> FlowState:
        with self._lock:
            return self._state

    @property
    def request(self) -> AuthorizationRequest | None:
        """The in-flight request; None before start and after close."""
        return self._request

    @property
    def port(self) -> int | None:
        """Port actually bound by the listener."""
        return self._port

    @property
    def redirect_uri(self) -> str:
        port = self._port if self._port is not None else self._config.redirect_port
        return f"http://{LOOPBACK_HOST}:{port}{CALLBACK_PATH}"

    @property
    def authorization_url(self) -> str | None:
        """Consent URL, for hosts that present it when no browser opened."""
        return self._authorization_url

    # -------------------------------------------------------------------------
    # Flow control
    # -------------------------------------------------------------------------

    def begin_flow(self) -> Future[str]:
        """Bind the listener, open the consent page and return the pending code.

        Returns:
            Future resolving to the authorization code, or failing with
            AuthorizationDeniedError, MissingCodeError or FlowCancelledError.

        Raises:
            FlowStateError: If this instance already ran a flow.
            BindError: If the redirect port is unavailable.
        """
        with self._lock:
            if self._state is not FlowState.IDLE:
                raise FlowStateError(
                    "Authorization flow already started; create a new flow instance",
                    details={"state": self._state.value},
                )

            self._request = AuthorizationRequest(
                client_id=self._config.client_id,
                client_secret=self._config.client_secret,
                redirect_port=self._config.redirect_port,
                scopes=list(self._config.scopes),
            )
            try:
                server = self._bind(self._config.redirect_port)
            except BindError:
                self._request.state = RequestState.FAILED
                self._request = None
                self._state = FlowState.CLOSED
                raise

            server.flow = self
            server.timeout = _POLL_INTERVAL
            self._server = server
            self._port = server.server_address[1]
            self._future = Future()
            self._request.state = RequestState.AWAITING_REDIRECT
            self._state = FlowState.LISTENING
            self._authorization_url = build_authorization_url(
                self._config.client_id,
                self.redirect_uri,
                self._config.scopes,
                self._auth_uri,
            )
            self._thread = threading.Thread(
                target=self._serve,
                name=f"oauth-callback-{self._port}",
                daemon=True,
            )
            self._thread.start()
            future = self._future

        logger.info("OAuth callback server listening on %s", self.redirect_uri)
        self._open_browser(self._authorization_url)
        return future

    def wait_for_code(self, timeout: float | None = None) -> str:
        """Block until the flow settles and return the authorization code.

        Args:
            timeout: Seconds to wait. On expiry the flow is cancelled.

        Raises:
            FlowStateError: If the flow was never started.
            AuthorizationDeniedError: If the user declined or the redirect
                was malformed.
            FlowCancelledError: If the flow was shut down or timed out.
        """
        future = self._future
        if future is None:
            raise FlowStateError("Authorization flow has not been started")

        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Timed out after %ss waiting for authorization", timeout)
            self._settle(
                FlowState.CANCELLED,
                error=FlowCancelledError(
                    "Timed out waiting for authorization",
                    details={"timeout_seconds": timeout},
                ),
            )
            self.shutdown()
            # Either our cancellation or a redirect that won the race
            return future.result()

    def shutdown(self) -> None:
        """Cancel the flow if pending and release the port.

        Idempotent and safe from any thread. A no-op when no listener is
        active. Returns once the socket is closed, unless called from the
        listener thread itself.
        """
        with self._lock:
            if self._state in (FlowState.IDLE, FlowState.CLOSED):
                return

        self._settle(
            FlowState.CANCELLED,
            error=FlowCancelledError("Authorization flow was cancelled"),
        )
        self._closing.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _bind(self, port: int) -> _LoopbackServer:
        with _active_ports_lock:
            if port in _active_ports:
                raise BindError(
                    f"Port {port} is held by another authorization flow",
                    port=port,
                )
            try:
                server = _LoopbackServer((LOOPBACK_HOST, port), _CallbackHandler)
            except OSError as e:
                logger.error("Could not bind OAuth callback server to port %d: %s", port, e)
                raise BindError(
                    f"Could not bind {LOOPBACK_HOST}:{port}: {e.strerror or e}",
                    port=port,
                    details={"errno": e.errno},
                ) from e
            _active_ports.add(server.server_address[1])
        return server

    def _open_browser(self, url: str) -> None:
        try:
            opened = self._browser(url)
        except Exception as e:
            logger.warning("Browser launch failed: %s", e)
            opened = False

        if not opened:
            logger.warning("Could not open a browser. Please visit: %s", url)

    def _settle(
        self,
        outcome: FlowState,
        code: str | None = None,
        error: AuthenticationError | None = None,
    ) -> bool:
        """Settle the future once; later calls are ignored.

        Returns:
            True if this call settled the flow.
        """
        with self._lock:
            if self._state is not FlowState.LISTENING:
                return False
            self._state = outcome
            if self._request is not None:
                self._request.state = (
                    RequestState.COMPLETED if error is None else RequestState.FAILED
                )
            future = self._future

        if future is None:
            raise FlowStateError("Authorization flow has no pending result")
        if error is None:
            logger.info("Authorization code received")
            future.set_result(code or "")
        else:
            logger.info("Authorization flow ended: %s", outcome.value)
            future.set_exception(error)
        self._closing.set()
        return True

    def _serve(self) -> None:
        server = self._server
        if server is None:
            raise FlowStateError("Callback listener is not bound")
        try:
            while not self._closing.is_set():
                server.handle_request()
        except Exception as e:
            logger.error("OAuth callback server stopped unexpectedly: %s", e)
            self._settle(
                FlowState.CANCELLED,
                error=AuthenticationError(
                    "Callback listener stopped unexpectedly",
                    details={"error_type": type(e).__name__},
                ),
            )
        finally:
            server.server_close()
            with _active_ports_lock:
                _active_ports.discard(server.server_address[1])
            with self._lock:
                self._state = FlowState.CLOSED
                self._request = None
                self._server = None
            logger.debug("OAuth callback server on port %s closed", self._port)


__all__ = [
    "LoopbackAuthFlow",
    "AuthorizationRequest",
    "FlowState",
    "RequestState",
    "BrowserOpener",
    "build_authorization_url",
    "open_in_browser",
    "CALLBACK_PATH",
]

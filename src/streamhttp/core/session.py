"""
=============================================================================
CONNECTION SESSION
=============================================================================

Drives one client connection from its first byte to close or hand-off.
Each session runs in its own thread; a slow client blocks only itself.

=============================================================================
SESSION STATE MACHINE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │        ┌──────────────────────────────────────────────┐              │
    │        ▼                                              │              │
    │   AWAIT_REQUEST_LINE ──► HEADERS ──► BODY ──► DISPATCH│              │
    │        │                   │          │          │    │              │
    │        │ idle timeout      │ error    │ error    ▼    │              │
    │        │ (reused conn)     │          │    WRITE_RESPONSE            │
    │        │                   │          │       │    │  │              │
    │        ▼                   ▼          ▼       │    └─►LOOP           │
    │      CLOSE ◄──────────────────────────────────┘                      │
    │                                                                      │
    │   DISPATCH ──(response upgraded to event stream)──► HANDOFF          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

CLOSE closes the socket. HANDOFF does not: the socket now belongs to the
broadcaster and the session thread simply ends. An upgraded connection
is never read from again.

=============================================================================
ERROR → RESPONSE
=============================================================================

    timeout while idle on a reused connection    close silently
    timeout anywhere else                        408, close
    ProtocolError (request line, headers)        400 / 431 / 501, close
    PayloadError (body)                          400 / 413, close
    version not HTTP/1.0 or HTTP/1.1             505, close
    secure-only path on the plain port           3xx to https, close
    no route, no default handler                 404, keep alive
    method other than GET / HEAD / POST          501, keep alive
    handler raised                               500, close

=============================================================================
"""

import dataclasses
import logging
import socket
import time
from enum import Enum
from typing import Optional

from ..broadcast import EventBroadcaster
from ..config import ServerConfig
from ..errors import HandlerError, HTTPError, PayloadError, ProtocolError, RoutingError
from ..http.codec import Phase, decode_request, encode_head, iter_response
from ..http.request import HTTPRequest
from ..http.response import (
    BodyKind,
    HTTPResponse,
    error_response,
    internal_error,
    not_found,
    not_implemented,
    redirect,
)
from ..http.router import Router
from ..http.status_codes import HTTPStatus
from ..logs import log_request
from ..redirect import Redirector
from .connection import Connection, ConnectionSink, ConnectionState


logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")
SUPPORTED_METHODS = ("GET", "HEAD", "POST")


class SessionState(Enum):
    AWAIT_REQUEST_LINE = "await_request_line"
    HEADERS = "headers"
    BODY = "body"
    DISPATCH = "dispatch"
    WRITE_RESPONSE = "write_response"
    LOOP = "loop"
    CLOSE = "close"
    HANDOFF = "handoff"


_PHASE_STATES = {
    Phase.REQUEST_LINE: SessionState.AWAIT_REQUEST_LINE,
    Phase.HEADERS: SessionState.HEADERS,
    Phase.BODY: SessionState.BODY,
}


class ConnectionSession:
    """
    Serves requests on one connection until it closes or is handed off.

    Args:
        connection: The accepted client connection.
        router: Maps request paths to handlers.
        broadcaster: Receives the connection when a handler upgrades it.
        redirector: Plain → secure redirection; None disables it.
        config: Limits, timeouts and identity.
    """

    def __init__(
        self,
        connection: Connection,
        router: Router,
        broadcaster: EventBroadcaster,
        redirector: Optional[Redirector] = None,
        config: Optional[ServerConfig] = None,
    ):
        self.connection = connection
        self.router = router
        self.broadcaster = broadcaster
        self.redirector = redirector
        self.config = config or ServerConfig()
        self.state = SessionState.AWAIT_REQUEST_LINE

    @property
    def is_handed_off(self) -> bool:
        return self.state == SessionState.HANDOFF

    def run(self) -> SessionState:
        """
        Serve the connection. Returns the terminal state (CLOSE or HANDOFF).
        """
        conn = self.connection
        try:
            if not conn.handshake():
                self.state = SessionState.CLOSE
                return self.state

            self.state = SessionState.LOOP
            while self.state == SessionState.LOOP:
                self.state = self._serve_one()
        except Exception as e:
            logger.exception(f"[{conn.id}] Session error: {e}")
            self.state = SessionState.CLOSE
        finally:
            if self.state != SessionState.HANDOFF:
                self.state = SessionState.CLOSE
                conn.close()
        return self.state

    # =========================================================================
    # ONE REQUEST
    # =========================================================================

    def _serve_one(self) -> SessionState:
        conn = self.connection
        reused = conn.requests_handled > 0

        # Idle deadline between requests, full deadline for the first one
        conn.set_timeout(self.config.keep_alive_timeout if reused else self.config.timeout)
        started = time.time()

        # ─────────────────────────────────────────────────────────────────
        # READ AND DECODE
        # ─────────────────────────────────────────────────────────────────
        try:
            request = decode_request(
                conn,
                client_address=conn.address,
                server_port=conn.server_port,
                scheme=conn.scheme,
                max_body_size=self.config.max_request_size,
                max_header_count=self.config.max_header_count,
                max_line_length=self.config.max_line_length,
                on_phase=self._enter_phase,
            )
        except socket.timeout:
            if self.state == SessionState.AWAIT_REQUEST_LINE and reused and not conn.has_buffered_input:
                logger.debug(f"[{conn.id}] Keep-alive timeout")
                return SessionState.CLOSE
            logger.warning(f"[{conn.id}] Read timeout from {conn.client_ip} in {self.state.value}")
            self._send_error(HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
            return SessionState.CLOSE
        except (ProtocolError, PayloadError) as e:
            logger.warning(f"[{conn.id}] Rejected request from {conn.client_ip}: {e}")
            self._send_error(e.status_code, e.message)
            return SessionState.CLOSE

        if request is None:
            logger.debug(f"[{conn.id}] Client closed connection")
            return SessionState.CLOSE

        if request.version not in SUPPORTED_VERSIONS:
            logger.warning(f"[{conn.id}] Unsupported version {request.version!r}")
            self._send_error(HTTPStatus.HTTP_VERSION_NOT_SUPPORTED, f"{request.version} not supported")
            return SessionState.CLOSE

        # ─────────────────────────────────────────────────────────────────
        # DISPATCH
        # ─────────────────────────────────────────────────────────────────
        self.state = SessionState.DISPATCH
        conn.state = ConnectionState.PROCESSING

        location = None
        if self.redirector is not None:
            location = self.redirector.should_redirect(request.scheme, request.target, request.host or None)

        if location is not None:
            response = redirect(location, self.redirector.status)
            response.set_header("Connection", "close")
            logger.debug(f"[{conn.id}] Redirecting {request.target} to {location}")
        else:
            try:
                response = self._dispatch(request)
            except HandlerError as e:
                logger.error(f"[{conn.id}] {e.message}", exc_info=e.__cause__)
                response = internal_error()
                response.set_header("Connection", "close")

        if response.is_stream:
            return self._hand_off(request, response, started)

        return self._write(request, response, started)

    def _enter_phase(self, phase: Phase) -> None:
        self.state = _PHASE_STATES[phase]
        if phase is Phase.HEADERS:
            # A request has started: the client gets the full deadline
            self.connection.set_timeout(self.config.timeout)

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        """
        Run the handler for request.

        Raises:
            HandlerError: The handler raised something that is not an
                HTTPError.
        """
        if request.method not in SUPPORTED_METHODS:
            response = not_implemented(f"Method {request.method} not implemented")
            response.set_header("Allow", ", ".join(SUPPORTED_METHODS))
            return response

        try:
            match = self.router.resolve(request.path)
        except RoutingError as e:
            return not_found(e.message)

        if match.params:
            request = dataclasses.replace(request, path_params=match.params)

        handler = match.handler
        response = HTTPResponse()
        try:
            if request.method == "POST":
                result = handler.handle_post(request, response)
            else:
                result = handler.handle_get(request, response)
        except HTTPError as e:
            return error_response(e.status_code, e.message)
        except Exception as e:
            raise HandlerError(
                f"{type(handler).__name__} failed on {request.method} {request.target}: {e}"
            ) from e

        return result if result is not None else response

    # =========================================================================
    # WRITE
    # =========================================================================

    def _write(self, request: HTTPRequest, response: HTTPResponse, started: float) -> SessionState:
        conn = self.connection
        self.state = SessionState.WRITE_RESPONSE

        if response.body_kind is BodyKind.FILE:
            try:
                size = response.file.stat().st_size
            except OSError as e:
                logger.error(f"[{conn.id}] File body unavailable: {e}")
                response = internal_error()
                response.set_header("Connection", "close")
            else:
                response.headers.setdefault("Content-Length", str(size))

        keep_alive = (
            self.config.keep_alive
            and request.is_keep_alive
            and response.headers.get("Connection", "").lower() != "close"
        )
        if keep_alive:
            response.set_header("Connection", "keep-alive")
            response.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            response.set_header("Connection", "close")

        include_body = request.method != "HEAD"
        sent = conn.send_all(iter_response(response, self.config.server_name, include_body=include_body))
        conn.requests_handled += 1
        self._log_access(request, response.status, _body_length(response), started)

        if not sent or not keep_alive:
            return SessionState.CLOSE
        conn.set_keep_alive()
        return SessionState.LOOP

    def _hand_off(self, request: HTTPRequest, response: HTTPResponse, started: float) -> SessionState:
        """
        Write the event stream head and give the socket to the broadcaster.
        """
        conn = self.connection
        response.upgrade_to_stream()

        if request.method == "HEAD":
            response.set_header("Connection", "close")
            conn.send(encode_head(response, self.config.server_name))
            conn.requests_handled += 1
            self._log_access(request, response.status, -1, started)
            return SessionState.CLOSE

        self.state = SessionState.WRITE_RESPONSE
        if not conn.send(encode_head(response, self.config.server_name)):
            return SessionState.CLOSE
        conn.requests_handled += 1
        self._log_access(request, response.status, -1, started)

        # Bound how long a client that stops reading can stall a broadcast
        conn.set_timeout(self.config.stream_write_timeout)
        conn.hand_off()
        self.broadcaster.register_client(ConnectionSink(conn))
        logger.info(f"[{conn.id}] Event stream opened for {conn.client_ip}:{conn.client_port}")
        return SessionState.HANDOFF

    def _send_error(self, status: int, message: str) -> None:
        """Best-effort error response for requests that never reached a handler."""
        response = error_response(status, message)
        response.set_header("Connection", "close")
        self.connection.send_all(iter_response(response, self.config.server_name))

    def _log_access(self, request: HTTPRequest, status: int, length: int, started: float) -> None:
        log_request(
            request_id=self.connection.id,
            method=request.method,
            target=request.target,
            version=request.version,
            client_ip=request.client_ip,
            status_code=status,
            content_length=length,
            started=started,
            finished=time.time(),
            log_format=self.config.log_format,
        )


def _body_length(response: HTTPResponse) -> int:
    kind = response.body_kind
    if kind is BodyKind.FILE:
        try:
            return response.file.stat().st_size
        except OSError:
            return 0
    if kind is BodyKind.STREAM:
        return -1
    return len(response.body)

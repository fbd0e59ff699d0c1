"""
=============================================================================
SOCKET SERVER AND LISTENER
=============================================================================

SocketServer owns one listening socket and its accept loop. Listener runs
one SocketServer per port: the plaintext port always, the TLS port when a
certificate is configured.

=============================================================================
TWO LISTENERS, ONE CALLBACK
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   accept-http  thread       accept-https thread                      │
    │   ───────────────────       ────────────────────                     │
    │   :8080 accept()            :8443 accept()                           │
    │        │                         │                                   │
    │        │                    wrap_socket(server_side=True,            │
    │        │                        do_handshake_on_connect=False)       │
    │        ▼                         ▼                                   │
    │   Connection(scheme="http")  Connection(scheme="https")              │
    │        │                         │                                   │
    │        └────────────┬────────────┘                                   │
    │                     ▼                                                │
    │           on_connection(conn)    ← HTTPServer starts a thread        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The TLS handshake is NOT done in the accept loop. A client that connects
and never speaks TLS would otherwise block every other client of the
secure port. Connection.handshake() runs it in the connection's thread.

=============================================================================
SOCKET OPTIONS
=============================================================================

    SO_REUSEADDR   rebind immediately after a restart (TIME_WAIT)
    TCP_NODELAY    send small responses and event frames immediately
    settimeout(1)  accept() wakes up every second to check for shutdown

=============================================================================
"""

import logging
import socket
import ssl
import threading
from typing import Callable, List, Optional

from .connection import Connection


logger = logging.getLogger(__name__)

ConnectionCallback = Callable[[Connection], None]


def create_ssl_context(certfile: str, keyfile: Optional[str] = None) -> ssl.SSLContext:
    """
    Server-side TLS context loaded with a PEM certificate chain.

    Raises:
        OSError / ssl.SSLError: The certificate or key cannot be loaded.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile=certfile, keyfile=keyfile)
    return context


class SocketServer:
    """
    One listening TCP socket and its accept loop.

    Usage:
        server = SocketServer("127.0.0.1", 0)
        server.bind()                    # raises OSError if the port is taken
        server.serve_forever(callback)   # blocks until shutdown()
    """

    def __init__(
        self,
        host: str,
        port: int,
        scheme: str = "http",
        ssl_context: Optional[ssl.SSLContext] = None,
        backlog: int = 128,
        buffer_size: int = 8192,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.scheme = scheme
        self.ssl_context = ssl_context
        self.backlog = backlog
        self.buffer_size = buffer_size
        self.timeout = timeout

        self._socket: Optional[socket.socket] = None
        self._bound_port: Optional[int] = None
        self._running = False
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def bound_port(self) -> int:
        """Actual port, which differs from self.port when port was 0."""
        return self._bound_port if self._bound_port is not None else self.port

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def bind(self) -> None:
        """
        Bind and listen.

        Raises:
            OSError: The address is unavailable. The socket is closed first.
        """
        sock = self._create_socket()
        try:
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError as e:
            logger.error(f"Failed to bind {self.scheme} listener to {self.host}:{self.port}: {e}")
            sock.close()
            raise
        self._socket = sock
        self._bound_port = sock.getsockname()[1]
        self._running = True
        self._stopped.clear()
        logger.info(f"Listening for {self.scheme} on {self.host}:{self.bound_port}")

    def serve_forever(self, on_connection: ConnectionCallback) -> None:
        """
        Accept connections until shutdown(), passing each to on_connection.

        An exception from on_connection is logged and the loop goes on:
        one bad connection must never stop the listener.
        """
        if self._socket is None:
            self.bind()

        try:
            while self._running:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running:
                        logger.error(f"Accept error on {self.scheme} listener: {e}")
                    break

                logger.debug(f"Accepted {self.scheme} connection from {client_address[0]}:{client_address[1]}")
                try:
                    conn = self._wrap(client_socket, client_address)
                    on_connection(conn)
                except Exception:
                    logger.exception(f"Failed to start session for {client_address[0]}")
                    client_socket.close()
        finally:
            self.close()

    def _wrap(self, client_socket: socket.socket, client_address) -> Connection:
        if self.ssl_context is not None:
            client_socket = self.ssl_context.wrap_socket(
                client_socket,
                server_side=True,
                do_handshake_on_connect=False,
            )
        return Connection(
            socket=client_socket,
            address=client_address[:2],
            server_port=self.bound_port,
            scheme=self.scheme,
            buffer_size=self.buffer_size,
            timeout=self.timeout,
        )

    def shutdown(self) -> None:
        """Stop accepting. Safe to call more than once, from any thread."""
        self._running = False

    def close(self) -> None:
        self._running = False
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            logger.info(f"{self.scheme} listener on port {self.bound_port} stopped")
        self._stopped.set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)


class Listener:
    """
    Runs a group of SocketServers, each accept loop in its own thread.

    Binding is all or nothing: if any port fails to bind, the ones that
    did bind are closed again and the OSError propagates.
    """

    def __init__(self, servers: List[SocketServer]):
        self.servers = servers
        self._threads: List[threading.Thread] = []

    def start(self, on_connection: ConnectionCallback) -> None:
        self.bind()
        self.serve(on_connection)

    def bind(self) -> None:
        bound: List[SocketServer] = []
        try:
            for server in self.servers:
                server.bind()
                bound.append(server)
        except OSError:
            for server in bound:
                server.close()
            raise

    def serve(self, on_connection: ConnectionCallback) -> None:
        """Start one accept thread per bound server."""
        for server in self.servers:
            thread = threading.Thread(
                target=server.serve_forever,
                args=(on_connection,),
                name=f"accept-{server.scheme}-{server.bound_port}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        """Stop accepting on every port. Established connections are untouched."""
        for server in self.servers:
            server.shutdown()

    def wait(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def find(self, scheme: str) -> Optional[SocketServer]:
        for server in self.servers:
            if server.scheme == scheme:
                return server
        return None

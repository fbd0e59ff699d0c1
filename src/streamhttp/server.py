"""
=============================================================================
HTTP SERVER
=============================================================================

Ties the pieces together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        HTTPServer                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Listener ─── accept ──► Connection ──► thread "session-<id>"      │
    │   (plain + TLS)                              │                       │
    │                                              ▼                       │
    │                                     ConnectionSession.run()          │
    │                                       │        │         │           │
    │                               Redirector    Router    EventBroadcaster
    │                                                 │         ▲          │
    │                                              Handler ─────┘          │
    │                                          (upgrade_to_stream)         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THREAD PER CONNECTION
=============================================================================

Each accepted connection gets its own daemon thread. A bounded worker
pool would let a few slow clients (or a few open event streams waiting
on a socket) starve everybody else; a thread per connection never makes
one client wait for another.

Event streams do not keep a thread: once a session hands its socket to
the broadcaster the thread ends, and events are written by whichever
thread calls broadcast().

=============================================================================
SHUTDOWN
=============================================================================

stop() only stops accepting. Open event streams stay registered and keep
receiving events until the process exits or they are removed; the CLI
calls broadcaster.close_all() on its way out.

=============================================================================
"""

import logging
import signal
import threading
from typing import Optional

from .broadcast import EventBroadcaster
from .config import ServerConfig
from .core.connection import Connection
from .core.session import ConnectionSession
from .core.socket_server import Listener, SocketServer, create_ssl_context
from .http.router import Handler, Route, Router
from .logs import configure_logging
from .redirect import Redirector


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    HTTP/1.x server with Server-Sent-Events hand-off.

    Usage:
        server = HTTPServer(ServerConfig(port=8080))
        server.route("/events", EventStreamHandler())
        server.route("/api/events", PublishHandler(server.broadcaster))
        server.run()   # blocks until Ctrl+C

    Or, non-blocking (tests, embedding):
        server.start()
        ...
        server.stop()
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        router: Optional[Router] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self._router = router or Router()
        self._broadcaster = broadcaster or EventBroadcaster()
        self._redirector: Optional[Redirector] = None
        self._listener: Optional[Listener] = None

        self._sessions_lock = threading.Lock()
        self._active_sessions = 0
        self._stopped = threading.Event()

    # =========================================================================
    # COMPONENTS
    # =========================================================================

    @property
    def router(self) -> Router:
        return self._router

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    @property
    def redirector(self) -> Optional[Redirector]:
        return self._redirector

    def route(self, path: str, handler: Handler, name: Optional[str] = None) -> Route:
        """Register handler for path. See Router.add_route()."""
        return self._router.add_route(path, handler, name=name)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def port(self) -> int:
        """Bound plaintext port."""
        server = self._listener.find("http") if self._listener else None
        return server.bound_port if server else self.config.port

    @property
    def secure_port(self) -> Optional[int]:
        """Bound TLS port, or the configured one when TLS runs elsewhere."""
        server = self._listener.find("https") if self._listener else None
        return server.bound_port if server else self.config.secure_port

    @property
    def active_sessions(self) -> int:
        return self._active_sessions

    def start(self) -> None:
        """
        Bind all listeners and start accepting in background threads.

        Raises:
            OSError: A port could not be bound, or the certificate could
                not be loaded. Nothing is left listening.
        """
        cfg = self.config
        servers = [
            SocketServer(
                cfg.host, cfg.port, "http",
                backlog=cfg.backlog, buffer_size=cfg.buffer_size, timeout=cfg.timeout,
            )
        ]
        if cfg.tls_enabled:
            servers.append(SocketServer(
                cfg.host, cfg.secure_port, "https",
                ssl_context=create_ssl_context(cfg.certfile, cfg.keyfile),
                backlog=cfg.backlog, buffer_size=cfg.buffer_size, timeout=cfg.timeout,
            ))
        elif cfg.secure_port is not None:
            logger.warning(
                f"secure_port {cfg.secure_port} set without certfile: "
                "no TLS listener, redirects assume TLS is terminated elsewhere"
            )

        self._listener = Listener(servers)
        self._listener.bind()
        self._stopped.clear()

        # Redirects must name the bound secure port, so bind before building
        if cfg.redirect_enabled:
            self._redirector = Redirector(
                secure_port=self.secure_port,
                secure_paths=cfg.secure_paths,
                host=cfg.host,
                status=cfg.redirect_status,
            )
            logger.info(f"Redirecting {', '.join(cfg.secure_paths)} to port {self.secure_port}")

        self._router.log_routes()
        self._listener.serve(self._handle_connection)

    def run(self) -> None:
        """
        Start and block until SIGINT/SIGTERM (or stop() from another thread).

        Logging is configured here, not in start(), so embedding
        applications keep control of their own logging.
        """
        configure_logging(self.config.log_level)
        self.start()

        original_handlers = {}
        if threading.current_thread() is threading.main_thread():
            def shutdown_handler(signum, frame):
                logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
                self.stop()

            for sig in (signal.SIGINT, signal.SIGTERM):
                original_handlers[sig] = signal.signal(sig, shutdown_handler)

        logger.info(f"{self.config.server_name} running on http://{self.config.host}:{self.port}")
        try:
            while not self._stopped.wait(0.5):
                pass
        finally:
            for sig, handler in original_handlers.items():
                signal.signal(sig, handler)
            self.stop()
            if self._listener is not None:
                self._listener.wait(timeout=2.0)
            logger.info("Server stopped")

    def stop(self) -> None:
        """Stop accepting connections. Handed-off event streams stay open."""
        if self._listener is not None:
            self._listener.stop()
        self._stopped.set()

    shutdown = stop

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection) -> None:
        """Called by the accept loop: one new thread per connection."""
        thread = threading.Thread(
            target=self._run_session,
            args=(conn,),
            name=f"session-{conn.id}",
            daemon=True,
        )
        thread.start()

    def _run_session(self, conn: Connection) -> None:
        session = ConnectionSession(
            conn,
            self._router,
            self._broadcaster,
            redirector=self._redirector,
            config=self.config,
        )
        with self._sessions_lock:
            self._active_sessions += 1
        try:
            session.run()
        finally:
            with self._sessions_lock:
                self._active_sessions -= 1

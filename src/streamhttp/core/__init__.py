"""
Transport layer: listening sockets, client connections, and the session
state machine that serves requests on a connection.
"""

from .connection import Connection, ConnectionSink, ConnectionState
from .session import ConnectionSession, SessionState
from .socket_server import Listener, SocketServer, create_ssl_context

__all__ = [
    "Connection",         # Buffered wrapper around a client socket
    "ConnectionSink",     # Handed-off connection as a broadcaster sink
    "ConnectionState",
    "ConnectionSession",  # Per-connection request loop
    "SessionState",
    "Listener",           # Plain + TLS accept loops
    "SocketServer",
    "create_ssl_context",
]

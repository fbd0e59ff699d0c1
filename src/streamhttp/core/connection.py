"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket (plain or TLS) with buffered, line
oriented reading and all-or-nothing writing.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:                     Server might receive:
        "GET / HTTP/1.1\\r\\n"             recv() → "GET / HT"
        "Host: x\\r\\n\\r\\n"                recv() → "TP/1.1\\r\\nHost: x\\r\\n\\r\\nGET /next"

recv() returns whatever the kernel has, so the Connection keeps a buffer.
read_line() hands out one line at a time, read_exact() one body at a
time, and whatever is left over (the start of the next request on a
keep-alive connection) stays in the buffer for the next call.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──► READING ...
              │                           │
              │                           ├──────────────► HANDED_OFF
              ▼                           ▼                (owned by the
            CLOSING ◄─────────────────────┘                 broadcaster)
              │
              ▼
            CLOSED

A HANDED_OFF connection belongs to the broadcaster: the session that
served the upgrade request returns without closing it, and only the
broadcaster (through ConnectionSink) ever closes it.

=============================================================================
"""

import logging
import socket
import ssl
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..errors import ProtocolError
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    HANDED_OFF = "handed_off"  # Event stream, owned by the broadcaster
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. BUFFERED READING                                                 │
    │     └── read_line() / read_exact() on top of recv()                 │
    │     └── leftover bytes are kept for the next request                │
    │                                                                      │
    │  2. TIMEOUTS                                                         │
    │     └── set_timeout() is called by the session per phase            │
    │     └── socket.timeout propagates to the caller                     │
    │                                                                      │
    │  3. TLS                                                              │
    │     └── handshake() runs in the connection's own thread             │
    │                                                                      │
    │  4. GRACEFUL CLOSE                                                   │
    │     └── shutdown(SHUT_WR), drain, close                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket (ssl.SSLSocket on the secure listener).
        address: Client's (ip, port) tuple.
        server_port: Local port the connection was accepted on.
        scheme: "https" on the secure listener, "http" otherwise.
        id: Short identifier used in log lines.
        state: Current connection state.
        requests_handled: Responses written on this connection so far.
    """

    socket: socket.socket
    address: tuple[str, int]
    server_port: int = 0
    scheme: str = "http"

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def is_secure(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def has_buffered_input(self) -> bool:
        """True if bytes of a not yet complete request are buffered."""
        return bool(self._buffer)

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def set_timeout(self, seconds: Optional[float]) -> None:
        self.socket.settimeout(seconds)

    # =========================================================================
    # TLS
    # =========================================================================

    def handshake(self) -> bool:
        """
        Complete the TLS handshake of a secure connection.

        The listener wraps accepted sockets with do_handshake_on_connect=False
        so a slow or hostile client stalls only its own thread, never the
        accept loop.

        Returns:
            True on success (and always for plain sockets).
        """
        if not self.is_secure:
            return True
        try:
            self.socket.do_handshake()
            return True
        except (ssl.SSLError, socket.timeout, OSError) as e:
            logger.warning(f"[{self.id}] TLS handshake with {self.client_ip} failed: {e}")
            return False

    # =========================================================================
    # READING
    # =========================================================================

    def read_line(self, max_length: int = 8192) -> Optional[bytes]:
        """
        Read one line, without its CRLF (or bare LF) terminator.

        Returns:
            The line, b"" for an empty line, or None if the peer closed the
            connection before a complete line arrived.

        Raises:
            ProtocolError: The line is longer than max_length.
            socket.timeout: No complete line before the timeout.
        """
        self.state = ConnectionState.READING
        while True:
            end = self._buffer.find(b"\n")
            if end != -1:
                line = self._buffer[:end]
                self._buffer = self._buffer[end + 1:]
                if line.endswith(b"\r"):
                    line = line[:-1]
                if len(line) > max_length:
                    raise self._line_too_long(max_length)
                return line

            if len(self._buffer) > max_length:
                raise self._line_too_long(max_length)

            chunk = self._recv()
            if not chunk:
                return None
            self._buffer += chunk

    def read_exact(self, size: int) -> bytes:
        """
        Read exactly size bytes; fewer only if the peer closed first.

        Raises:
            socket.timeout: The bytes did not arrive in time.
        """
        while len(self._buffer) < size:
            chunk = self._recv(max(self.buffer_size, size - len(self._buffer)))
            if not chunk:
                break
            self._buffer += chunk

        data = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return data

    def _recv(self, size: Optional[int] = None) -> bytes:
        """recv() that maps an abrupt disconnect to end of stream."""
        try:
            data = self.socket.recv(size or self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError, ssl.SSLEOFError):
            return b""

    def _line_too_long(self, max_length: int) -> ProtocolError:
        return ProtocolError(
            f"Line exceeds {max_length} bytes",
            phase="line",
            status_code=HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE,
        )

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send all of data.

        Returns:
            True if sent, False if the connection was lost.
        """
        return self.send_all((data,))

    def send_all(self, chunks: Iterable[bytes]) -> bool:
        """
        Send every chunk in order, stopping at the first failure.

        Returns:
            True if everything was sent, False if the connection was lost.
        """
        self.state = ConnectionState.WRITING
        try:
            for chunk in chunks:
                self.socket.sendall(chunk)
            self.last_activity = time.time()
            return True
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def write_raw(self, data: bytes) -> None:
        """sendall() that lets socket errors propagate (used for streams)."""
        self.socket.sendall(data)
        self.last_activity = time.time()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def set_keep_alive(self) -> None:
        self.state = ConnectionState.KEEP_ALIVE

    def hand_off(self) -> None:
        """Transfer ownership of the socket to the broadcaster."""
        self.state = ConnectionState.HANDED_OFF

    def close(self) -> None:
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN, the client sees end of response
        2. drain whatever the client still sends, so the kernel does not
           answer it with RST and destroy the response in flight
        3. close() the descriptor
        """
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except (socket.timeout, OSError):
            pass

        self._release()
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def abort(self) -> None:
        """Close immediately, without draining."""
        if self.state == ConnectionState.CLOSED:
            return
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._release()
        logger.debug(f"[{self.id}] Connection aborted")

    def _release(self) -> None:
        try:
            self.socket.close()
        except OSError:
            pass
        self.state = ConnectionState.CLOSED

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.state != ConnectionState.HANDED_OFF:
            self.close()
        return False


class ConnectionSink:
    """
    Adapts a handed-off Connection to the broadcaster's Sink interface.

    Writes raise on failure so the broadcaster can evict the client.
    """

    def __init__(self, connection: Connection):
        self.connection = connection

    def write(self, data: bytes) -> None:
        if self.connection.is_closed:
            raise ConnectionError(f"[{self.connection.id}] stream already closed")
        self.connection.write_raw(data)

    def flush(self) -> None:
        # sendall() leaves nothing buffered in user space
        pass

    def close(self) -> None:
        self.connection.abort()

    def __repr__(self) -> str:
        return f"ConnectionSink({self.connection.id} {self.connection.client_ip})"

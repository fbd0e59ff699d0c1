"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, Optional

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from streamhttp import EventBroadcaster, HTTPServer, ServerConfig
from streamhttp.core.connection import Connection
from streamhttp.handlers import EventStreamHandler, PublishHandler
from streamhttp.http import HTTPRequest, HTTPResponse, ok


# =============================================================================
# RAW REQUESTS
# =============================================================================

@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/groups?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Cookie: session=abc123; theme=dark\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a form body."""
    body = b"name=Ops+Team&data=hello%20world"
    return (
        b"POST /api/events HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


# =============================================================================
# IN-MEMORY SOURCE FOR THE CODEC
# =============================================================================

class BytesSource:
    """read_line() / read_exact() over a fixed byte string."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def read_line(self, max_length: int = 8192) -> Optional[bytes]:
        end = self.data.find(b"\n", self.pos)
        if end == -1:
            return None
        line = self.data[self.pos:end]
        self.pos = end + 1
        return line[:-1] if line.endswith(b"\r") else line

    def read_exact(self, size: int) -> bytes:
        chunk = self.data[self.pos:self.pos + size]
        self.pos += len(chunk)
        return chunk

    @property
    def remaining(self) -> bytes:
        return self.data[self.pos:]


@pytest.fixture
def make_source():
    return BytesSource


# =============================================================================
# SINKS FOR THE BROADCASTER
# =============================================================================

class RecordingSink:
    """Sink that keeps every frame written to it."""

    def __init__(self, name: str = "sink"):
        self.name = name
        self.frames: list[bytes] = []
        self.closed = False
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        with self._lock:
            self.frames.append(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FailingSink(RecordingSink):
    """Sink whose writes always fail, like a client that went away."""

    def __init__(self, name: str = "failing"):
        super().__init__(name)
        self.attempts = 0

    def write(self, data: bytes) -> None:
        self.attempts += 1
        raise BrokenPipeError(32, "Broken pipe")


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


# =============================================================================
# SOCKETS
# =============================================================================

@pytest.fixture
def socket_pair() -> Generator[tuple[socket.socket, socket.socket], None, None]:
    """(server side, client side) of a connected socket pair."""
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for s in (server_side, client_side):
        try:
            s.close()
        except OSError:
            pass


@pytest.fixture
def connection(socket_pair) -> tuple[Connection, socket.socket]:
    """A Connection over the server side, plus the raw client socket."""
    server_side, client_side = socket_pair
    client_side.settimeout(5.0)
    conn = Connection(socket=server_side, address=("127.0.0.1", 50000), server_port=8080, timeout=5.0)
    return conn, client_side


def recv_until_closed(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read from sock until the peer closes it."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def recv_until(sock: socket.socket, marker: bytes, timeout: float = 5.0) -> bytes:
    """Read from sock until marker has been received."""
    sock.settimeout(timeout)
    data = b""
    while marker not in data:
        chunk = sock.recv(65536)
        if not chunk:
            break
        data += chunk
    return data


# =============================================================================
# RUNNING SERVER
# =============================================================================

class EchoHandler:
    """GET: echoes the path; POST: echoes the body."""

    def handle_get(self, request: HTTPRequest, response: HTTPResponse):
        return ok({"path": request.path, "params": request.path_params, "cookies": request.cookies})

    def handle_post(self, request: HTTPRequest, response: HTTPResponse):
        response.set_header("Content-Type", "application/octet-stream")
        response.set_body(request.body)


class CrashingHandler:
    def handle_get(self, request, response):
        raise RuntimeError("handler exploded")

    def handle_post(self, request, response):
        raise RuntimeError("handler exploded")


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        timeout=5.0,
        keep_alive_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def running_server(server_config: ServerConfig) -> Generator[HTTPServer, None, None]:
    """A started server with echo, crash, event and publish routes."""
    server = HTTPServer(server_config)
    server.route("/echo", EchoHandler())
    server.route("/items/:id", EchoHandler())
    server.route("/crash", CrashingHandler())
    server.route("/events", EventStreamHandler())
    server.route("/api/events", PublishHandler(server.broadcaster))
    server.start()

    yield server

    server.stop()
    server.broadcaster.close_all()


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# HELPER FIXTURES
# =============================================================================

@pytest.fixture
def sink_factory():
    return RecordingSink


@pytest.fixture
def failing_sink_factory():
    return FailingSink


@pytest.fixture
def read_until():
    return recv_until


@pytest.fixture
def read_until_closed():
    return recv_until_closed


@pytest.fixture
def eventually():
    return wait_for

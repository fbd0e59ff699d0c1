"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the streaming HTTP engine.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m streamhttp --port 3000 --secure-port 3443       │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 HTTPS_PORT=3443 python -m streamhttp       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TWO PORTS, ONE ENGINE
=============================================================================

The engine listens on a plaintext port and, optionally, on a TLS port.
Paths listed in secure_paths are only served over TLS: a plaintext request
for one of them is answered with a redirect to the secure port.

    plain  :8080  ── GET /admin ──►  301 Location: https://host:8443/admin
    secure :8443  ── GET /admin ──►  200 OK

If secure_port is set but no certificate is configured, no TLS listener is
started. Redirects still point at secure_port, which is what you want when
TLS is terminated by a proxy in front of the engine.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP engine.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, secure_port, certfile, keyfile, backlog, buffer_size

    TIMEOUTS
    - timeout, keep_alive, keep_alive_timeout, stream_write_timeout

    LIMITS
    - max_request_size, max_line_length, max_header_count

    REDIRECTION
    - secure_paths, redirect_status

    STATIC FILES
    - static_dir, home_file

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind both listeners to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces (production)
    """

    port: int = 8080
    """
    Plaintext port. 0 lets the OS pick a free port (used by tests).
    """

    secure_port: Optional[int] = None
    """
    TLS port. None disables both the TLS listener and redirection.
    """

    certfile: Optional[str] = None
    """
    PEM certificate chain for the TLS listener.
    """

    keyfile: Optional[str] = None
    """
    PEM private key. May be omitted when the key lives in certfile.
    """

    backlog: int = 128
    """
    Maximum number of queued connections per listening socket.
    """

    buffer_size: int = 8192
    """
    Size of a single recv() in bytes.
    """

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUTS
    # ─────────────────────────────────────────────────────────────────────

    timeout: float = 30.0
    """
    Read deadline for the first request on a connection, for any partially
    received request, and for the TLS handshake.
    """

    keep_alive: bool = True
    """
    Allow more than one request per TCP connection.
    """

    keep_alive_timeout: float = 5.0
    """
    Idle deadline while waiting for the next request on a reused connection.
    Expiry closes the connection silently.
    """

    stream_write_timeout: float = 10.0
    """
    Send deadline applied to an upgraded event stream socket. A client that
    stops reading for longer than this is evicted from the broadcaster.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LIMITS
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """
    Maximum accepted Content-Length. Larger bodies get 413.
    """

    max_line_length: int = 8192
    """
    Maximum length of the request line or of a single header line.
    """

    max_header_count: int = 100
    """
    Maximum number of header fields in one request. More gets 431.
    """

    # ─────────────────────────────────────────────────────────────────────
    # REDIRECTION
    # ─────────────────────────────────────────────────────────────────────

    secure_paths: tuple[str, ...] = ()
    """
    Path prefixes that must be served over TLS. "/" means every path.
    """

    redirect_status: int = 301
    """
    Status used for plain-to-secure redirects (301, 302, 307 or 308).
    """

    # ─────────────────────────────────────────────────────────────────────
    # STATIC FILES
    # ─────────────────────────────────────────────────────────────────────

    static_dir: Optional[str] = None
    """
    Directory served by the default route. None disables static files.
    """

    home_file: str = "index.html"
    """
    File served for "/".
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    log_format: str = "text"
    """
    Access log format: 'json' or 'text'.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SERVER IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "StreamHTTP/1.0"
    """
    Value of the Server response header.
    """

    @property
    def tls_enabled(self) -> bool:
        """True when a TLS listener should be started."""
        return self.secure_port is not None and self.certfile is not None

    @property
    def redirect_enabled(self) -> bool:
        """True when plaintext requests may be redirected to TLS."""
        return self.secure_port is not None and bool(self.secure_paths)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTP_HOST               Bind address (default: 127.0.0.1)
        HTTP_PORT               Plaintext port (default: 8080)
        HTTPS_PORT              TLS port (default: disabled)
        HTTP_CERTFILE           TLS certificate (PEM)
        HTTP_KEYFILE            TLS private key (PEM)
        HTTP_SECURE_PATHS       Comma separated secure-only prefixes
        HTTP_TIMEOUT            Request timeout in seconds (default: 30)
        HTTP_KEEP_ALIVE_TIMEOUT Idle keep-alive timeout (default: 5)
        HTTP_STATIC_DIR         Static files directory (default: None)
        HTTP_LOG_LEVEL          Logging level (default: INFO)
        HTTP_LOG_FORMAT         Access log format (default: text)

        =====================================================================
        """
        secure_port = os.getenv("HTTPS_PORT")
        secure_paths = os.getenv("HTTP_SECURE_PATHS", "")
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            secure_port=int(secure_port) if secure_port else None,
            certfile=os.getenv("HTTP_CERTFILE"),
            keyfile=os.getenv("HTTP_KEYFILE"),
            secure_paths=tuple(p.strip() for p in secure_paths.split(",") if p.strip()),
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            keep_alive_timeout=float(os.getenv("HTTP_KEEP_ALIVE_TIMEOUT", "5")),
            static_dir=os.getenv("HTTP_STATIC_DIR"),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by HTTPServer at construction so a bad value fails at
        startup rather than on the first connection.
        """
        for name in ("port", "secure_port"):
            value = getattr(self, name)
            if value is not None and not 0 <= value < 65536:
                raise ValueError(f"Invalid {name}: {value}. Must be 0-65535.")

        if self.secure_port and self.secure_port == self.port:
            raise ValueError("secure_port must differ from port")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        for name in ("timeout", "keep_alive_timeout", "stream_write_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

        for name in ("max_request_size", "max_line_length", "max_header_count"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")

        if not 300 <= self.redirect_status < 400:
            raise ValueError(f"redirect_status must be 3xx, got {self.redirect_status}")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")

        if self.keyfile and not self.certfile:
            raise ValueError("keyfile given without certfile")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. One dataclass holds every tunable of the engine
# 2. from_env() supports 12-factor style deployment
# 3. validate() fails fast at startup
#
# TLS can be switched on in two steps: secure_port alone enables
# redirection, secure_port plus certfile also starts the TLS listener.
# =============================================================================

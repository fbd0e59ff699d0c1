"""
=============================================================================
HTTP REQUEST
=============================================================================

The immutable result of decoding one request from a connection.

=============================================================================
WHAT IS STORED, WHAT IS DERIVED
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        HTTPRequest                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   STORED (set once by the codec)                                     │
    │     method, target, version      verbatim request-line tokens        │
    │     headers                      case-insensitive Headers            │
    │     body                         exactly Content-Length bytes        │
    │     client_address, server_port  where it came from                  │
    │     scheme                       "http" or "https"                   │
    │                                                                      │
    │   DERIVED (computed on first access, then cached)                    │
    │     path, query_params           from target                         │
    │     cookies                      from the Cookie header              │
    │     form                         from a urlencoded body              │
    │     json                         from a JSON body                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Derived values are pure functions of stored fields, so computing them
lazily is safe even though the request is frozen: two accesses always
return the same object.

=============================================================================
COOKIES
=============================================================================

    Cookie: session=abc123; theme=dark; broken; lang = en

    request.cookies → {"session": "abc123", "theme": "dark", "lang": "en"}

Pieces without "=" are skipped. Values may themselves contain "=" because
only the first one separates name from value.

=============================================================================
"""

import json
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlsplit

from ..errors import PayloadError
from .headers import Headers


@dataclass(frozen=True, eq=False)
class HTTPRequest:
    """
    A parsed HTTP request.

    Attributes:
        method: Request method token exactly as sent ("GET", "POST", ...).
        target: Request target exactly as sent ("/a/b?x=1").
        version: Protocol token exactly as sent ("HTTP/1.1").
        headers: Header fields.
        body: Raw body bytes.
        client_address: (ip, port) of the peer.
        server_port: Local port the request arrived on.
        scheme: "https" for the TLS listener, "http" otherwise.
        path_params: Values captured by the route pattern.
    """

    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    client_address: tuple[str, int] = ("", 0)
    server_port: int = 0
    scheme: str = "http"
    path_params: Dict[str, str] = field(default_factory=dict)

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @cached_property
    def path(self) -> str:
        """URL-decoded path without the query string, "/" if empty."""
        return unquote(urlsplit(self.target).path) or "/"

    @cached_property
    def query_params(self) -> Dict[str, list[str]]:
        """
        Parsed query string as a dict of lists.

            "?a=1&a=2&b=3" → {"a": ["1", "2"], "b": ["3"]}
        """
        return parse_qs(urlsplit(self.target).query, keep_blank_values=True)

    @cached_property
    def cookies(self) -> Dict[str, str]:
        """Cookies sent in the Cookie header."""
        jar: Dict[str, str] = {}
        raw = self.headers.get("Cookie")
        if not raw:
            return jar
        for piece in raw.split(";"):
            if "=" not in piece:
                continue
            name, value = piece.split("=", 1)
            name = name.strip()
            if name:
                jar[name] = value.strip()
        return jar

    @cached_property
    def form(self) -> Dict[str, list[str]]:
        """POST parameters of an application/x-www-form-urlencoded body."""
        if self.content_type != "application/x-www-form-urlencoded" or not self.body:
            return {}
        return parse_qs(self.body.decode("latin-1"), keep_blank_values=True)

    @cached_property
    def json(self) -> Any:
        """
        The body decoded as JSON, None for an empty body.

        Raises:
            PayloadError: If the body is not valid JSON.
        """
        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise PayloadError(f"Invalid JSON body: {e}")

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters, lowercased."""
        ct = self.headers.get("Content-Type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        """Declared Content-Length, 0 if absent."""
        try:
            return int(self.headers.get("Content-Length", "0"))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("Host", "")

    @property
    def client_ip(self) -> str:
        return self.client_address[0]

    @property
    def client_port(self) -> int:
        return self.client_address[1]

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client asked to keep the connection open.

            HTTP/1.1: keep alive unless "Connection: close"
            HTTP/1.0: close unless "Connection: keep-alive"
        """
        tokens = {
            t.strip().lower()
            for t in self.headers.get("Connection", "").split(",")
        }
        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    def get_header(self, name: str, default: str = "") -> str:
        """Header value by name, any case."""
        return self.headers.get(name, default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def get_form(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a form field."""
        values = self.form.get(name, [])
        return values[0] if values else default

    def __repr__(self) -> str:
        return f"HTTPRequest({self.method} {self.target} {self.version} from {self.client_ip})"

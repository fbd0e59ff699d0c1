"""
=============================================================================
HTTP RESPONSE
=============================================================================

The response a handler fills in, plus the fluent builder and one-line
constructors for the common cases.

=============================================================================
THREE KINDS OF BODY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        BODY SOURCES                                  │
    ├──────────┬──────────────────────────────────────────────────────────┤
    │  BUFFER  │ bytes in memory. Content-Length = len(body)              │
    │          │ JSON, HTML, error pages                                  │
    ├──────────┼──────────────────────────────────────────────────────────┤
    │  FILE    │ a path on disk. Content-Length = file size               │
    │          │ streamed in chunks, never loaded whole                   │
    ├──────────┼──────────────────────────────────────────────────────────┤
    │  STREAM  │ no body, no Content-Length, connection stays open        │
    │          │ the session hands the socket to the broadcaster          │
    │          │ and events are written to it as they happen              │
    └──────────┴──────────────────────────────────────────────────────────┘

=============================================================================
STREAM UPGRADE (SERVER-SENT EVENTS)
=============================================================================

    handler:   response.upgrade_to_stream()

    wire:      HTTP/1.1 200 OK\r\n
               Content-Type: text/event-stream\r\n
               Cache-Control: no-cache\r\n
               Connection: keep-alive\r\n
               \r\n
               data: first event\n\n        ← written later by the broadcaster
               data: second event\n\n

=============================================================================
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from .headers import Headers
from .status_codes import HTTPStatus, reason_phrase


class BodyKind(Enum):
    BUFFER = "buffer"
    FILE = "file"
    STREAM = "stream"


@dataclass
class HTTPResponse:
    """
    An HTTP response under construction.

    The session gives every handler a fresh HTTPResponse (200, empty
    body). The handler mutates it, or builds and returns a new one.

    Attributes:
        status: Status code.
        headers: Header fields, serialized in insertion order.
        body: Buffer body.
        version: Protocol version of the status line.
        reason: Reason phrase override; defaults to the standard phrase.
        file: Path of a file-backed body.
        streaming: True after upgrade_to_stream().
    """

    status: int = HTTPStatus.OK
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    version: str = "HTTP/1.1"
    reason: Optional[str] = None
    file: Optional[Path] = None
    streaming: bool = False

    def __post_init__(self):
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)

    @property
    def status_line(self) -> str:
        """
        HTTP-VERSION SP STATUS-CODE SP REASON-PHRASE

            "HTTP/1.1 200 OK"
        """
        return f"{self.version} {int(self.status)} {self.reason or reason_phrase(self.status)}"

    @property
    def body_kind(self) -> BodyKind:
        if self.streaming:
            return BodyKind.STREAM
        if self.file is not None:
            return BodyKind.FILE
        return BodyKind.BUFFER

    @property
    def is_stream(self) -> bool:
        return self.streaming

    def set_status(self, status: int, reason: Optional[str] = None) -> "HTTPResponse":
        self.status = status
        self.reason = reason
        return self

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header, replacing any previous value. Returns self."""
        self.headers[name] = value
        return self

    def set_content_type(self, content_type: str) -> "HTTPResponse":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Use an in-memory body. Strings are encoded as UTF-8."""
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.file = None
        return self

    def set_file(self, path: Union[str, Path]) -> "HTTPResponse":
        """Use a file on disk as the body. It is read while sending."""
        self.file = Path(path)
        self.body = b""
        return self

    def upgrade_to_stream(self) -> "HTTPResponse":
        """
        Turn this response into a Server-Sent-Events stream.

        The session writes the head only and hands the connection to the
        broadcaster. Nothing set as a body is sent.
        """
        self.status = HTTPStatus.OK
        self.reason = None
        self.streaming = True
        self.body = b""
        self.file = None
        self.headers["Content-Type"] = "text/event-stream"
        self.headers["Cache-Control"] = "no-cache"
        self.headers["Connection"] = "keep-alive"
        return self


class ResponseBuilder:
    """
    Fluent builder for HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.ACCEPTED)
            .json({"delivered": 3})
            .build())

    Every method except build() returns self.
    """

    def __init__(self):
        self._status: int = HTTPStatus.OK
        self._headers = Headers()
        self._body: bytes = b""
        self._file: Optional[Path] = None

    def status(self, status: int) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        return self.content_type(content_type).body(text)

    def html(self, html: str) -> "ResponseBuilder":
        return self.text(html, "text/html; charset=utf-8")

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        """Serialize data as the JSON body."""
        encoded = json.dumps(data, indent=2 if pretty else None)
        return self.text(encoded, "application/json")

    def file(self, path: Union[str, Path], content_type: Optional[str] = None) -> "ResponseBuilder":
        self._file = Path(path)
        if content_type:
            self.content_type(content_type)
        return self

    def redirect(self, location: str, status: int = HTTPStatus.FOUND) -> "ResponseBuilder":
        return self.status(status).header("Location", location)

    def no_cache(self) -> "ResponseBuilder":
        return self.header("Cache-Control", "no-cache, no-store, must-revalidate")

    def cache(self, max_age: int = 3600) -> "ResponseBuilder":
        return self.header("Cache-Control", f"public, max-age={max_age}")

    def close_connection(self) -> "ResponseBuilder":
        return self.header("Connection", "close")

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers.copy(),
            body=self._body,
            file=self._file,
        )


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always in GMT:

        Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================
#
#     return ok({"clients": 3})
#     return not_found()
#     return error_response(HTTPStatus.PAYLOAD_TOO_LARGE, "Body too large")
#
# =============================================================================

def ok(body: Union[str, bytes, dict, list] = "", content_type: Optional[str] = None) -> HTTPResponse:
    """
    200 OK. dict/list bodies become JSON, str becomes text/plain.
    """
    builder = ResponseBuilder().status(HTTPStatus.OK)
    if isinstance(body, (dict, list)):
        builder.json(body)
    elif isinstance(body, str):
        builder.text(body, content_type or "text/plain; charset=utf-8")
    else:
        builder.body(body)
        if content_type:
            builder.content_type(content_type)
    return builder.build()


def created(body: Union[dict, list, str] = "", location: Optional[str] = None) -> HTTPResponse:
    builder = ResponseBuilder().status(HTTPStatus.CREATED)
    if isinstance(body, (dict, list)):
        builder.json(body)
    elif body:
        builder.text(body)
    if location:
        builder.header("Location", location)
    return builder.build()


def accepted(body: Union[dict, list] = None) -> HTTPResponse:
    """202 Accepted with a JSON body."""
    return ResponseBuilder().status(HTTPStatus.ACCEPTED).json(body or {}).build()


def redirect(location: str, status: int = HTTPStatus.FOUND) -> HTTPResponse:
    return ResponseBuilder().redirect(location, status).build()


def error_response(status: int, message: Optional[str] = None) -> HTTPResponse:
    """
    An error with a small JSON body:

        {"error": "Not Found"}
    """
    return (ResponseBuilder()
        .status(status)
        .json({"error": message or reason_phrase(status)})
        .build())


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_response(HTTPStatus.BAD_REQUEST, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed_methods: list[str]) -> HTTPResponse:
    """405 with the Allow header required by RFC 7231."""
    response = error_response(HTTPStatus.METHOD_NOT_ALLOWED)
    response.set_header("Allow", ", ".join(allowed_methods))
    return response


def not_implemented(message: str = "Not Implemented") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_IMPLEMENTED, message)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    """500. Keep the message generic; details belong in the log."""
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)

"""
=============================================================================
HTTP/1.x WIRE CODEC
=============================================================================

decode_request() turns bytes from a connection into an HTTPRequest.
encode_head() / iter_response() turn an HTTPResponse back into bytes.

=============================================================================
DECODING IN THREE PHASES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   REQUEST_LINE   "POST /api/events HTTP/1.1"                         │
    │        │         exactly three whitespace separated tokens           │
    │        ▼                                                             │
    │   HEADERS        "Content-Length: 5"  ...  ""                        │
    │        │         name ":" value, until an empty line                 │
    │        ▼                                                             │
    │   BODY           exactly Content-Length bytes, no more, no less      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The source is anything with read_line() and read_exact(); Connection is
the production one. read_line() strips the line terminator and returns
None at end of stream. read_exact(n) returns fewer than n bytes only at
end of stream.

Tokens of the request line are kept verbatim. Deciding whether "HTTP/2.0"
or "FETCH" is acceptable is the session's job, not the codec's.

Text on the wire is ISO-8859-1: every byte maps to exactly one character,
so decoding never fails and encoding a decoded header gives back the same
bytes.

=============================================================================
WHAT IS REJECTED
=============================================================================

    Request line with != 3 tokens         ProtocolError  400
    Header line without ":"               ProtocolError  400
    Bare CR or LF inside a header line    ProtocolError  400
    More than max_header_count headers    ProtocolError  431
    Transfer-Encoding (chunked)           ProtocolError  501
    Content-Length not a number, or < 0   ProtocolError  400
    Content-Length > max_body_size        PayloadError   413
    Fewer body bytes than declared        PayloadError   400
    End of stream inside the headers      PayloadError   400

=============================================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, Optional

from ..errors import PayloadError, ProtocolError
from .headers import Headers
from .request import HTTPRequest
from .response import BodyKind, HTTPResponse, format_http_date
from .status_codes import HTTPStatus


class Phase(Enum):
    REQUEST_LINE = "request-line"
    HEADERS = "headers"
    BODY = "body"


ENCODING = "iso-8859-1"
CRLF = "\r\n"
FILE_CHUNK_SIZE = 64 * 1024


# =============================================================================
# DECODING
# =============================================================================

def decode_request(
    source,
    client_address: tuple[str, int] = ("", 0),
    server_port: int = 0,
    scheme: str = "http",
    max_body_size: int = 10 * 1024 * 1024,
    max_header_count: int = 100,
    max_line_length: int = 8192,
    on_phase: Optional[Callable[[Phase], None]] = None,
) -> Optional[HTTPRequest]:
    """
    Read exactly one request from source.

    Args:
        source: Object with read_line(max_length) and read_exact(n).
        client_address: (ip, port) of the peer, copied into the request.
        server_port: Local port, copied into the request.
        scheme: "http" or "https".
        max_body_size: Largest Content-Length accepted.
        max_header_count: Largest number of header fields accepted.
        max_line_length: Passed through to source.read_line().
        on_phase: Called with each Phase as decoding enters it.

    Returns:
        The decoded request, or None if the stream ended cleanly before a
        request line arrived (the client closed an idle connection).

    Raises:
        ProtocolError: Malformed request line, headers or framing.
        PayloadError: Body too large or shorter than declared.
    """
    def enter(phase: Phase) -> None:
        if on_phase is not None:
            on_phase(phase)

    # ─────────────────────────────────────────────────────────────────────
    # PHASE 1: REQUEST LINE
    # ─────────────────────────────────────────────────────────────────────
    # Tolerate empty lines before the request line (RFC 7230 §3.5).

    enter(Phase.REQUEST_LINE)
    while True:
        raw = source.read_line(max_line_length)
        if raw is None:
            return None
        if raw.strip():
            break

    tokens = raw.decode(ENCODING).split()
    if len(tokens) != 3:
        raise ProtocolError(
            f"Malformed request line: expected 3 tokens, got {len(tokens)}",
            phase=Phase.REQUEST_LINE.value,
        )
    method, target, version = tokens

    # ─────────────────────────────────────────────────────────────────────
    # PHASE 2: HEADERS
    # ─────────────────────────────────────────────────────────────────────

    enter(Phase.HEADERS)
    headers = _read_headers(source, max_header_count, max_line_length)

    # ─────────────────────────────────────────────────────────────────────
    # PHASE 3: BODY
    # ─────────────────────────────────────────────────────────────────────

    enter(Phase.BODY)
    body = _read_body(source, headers, max_body_size)

    return HTTPRequest(
        method=method,
        target=target,
        version=version,
        headers=headers,
        body=body,
        client_address=client_address,
        server_port=server_port,
        scheme=scheme,
    )


def _read_headers(source, max_header_count: int, max_line_length: int) -> Headers:
    headers = Headers()
    last_name: Optional[str] = None
    count = 0

    while True:
        raw = source.read_line(max_line_length)
        if raw is None:
            raise PayloadError("Premature end of stream in headers")
        if not raw:
            return headers

        line = raw.decode(ENCODING)
        # read_line() strips the terminator: any CR or LF left is a bare one
        if "\r" in line or "\n" in line:
            raise ProtocolError(f"Bare line break in header line: {line[:64]!r}", phase=Phase.HEADERS.value)

        # Obsolete line folding: continuation of the previous value
        if line[0] in " \t":
            if last_name is None:
                raise ProtocolError("Continuation line before any header", phase=Phase.HEADERS.value)
            headers[last_name] = f"{headers[last_name]} {line.strip()}"
            continue

        name, sep, value = line.partition(":")
        name = name.strip()
        if not sep or not name:
            raise ProtocolError(f"Malformed header line: {line[:64]!r}", phase=Phase.HEADERS.value)

        count += 1
        if count > max_header_count:
            raise ProtocolError(
                f"Too many headers (limit {max_header_count})",
                phase=Phase.HEADERS.value,
                status_code=HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE,
            )

        headers[name] = value.strip()
        last_name = name


def _read_body(source, headers: Headers, max_body_size: int) -> bytes:
    if "Transfer-Encoding" in headers:
        raise ProtocolError(
            f"Transfer-Encoding not supported: {headers['Transfer-Encoding']}",
            phase=Phase.BODY.value,
            status_code=HTTPStatus.NOT_IMPLEMENTED,
        )

    declared = headers.get("Content-Length")
    if declared is None:
        return b""

    try:
        length = int(declared.strip())
    except ValueError:
        raise ProtocolError(f"Invalid Content-Length: {declared!r}", phase=Phase.BODY.value)
    if length < 0:
        raise ProtocolError(f"Negative Content-Length: {length}", phase=Phase.BODY.value)

    if length > max_body_size:
        raise PayloadError(
            f"Body of {length} bytes exceeds limit of {max_body_size}",
            status_code=HTTPStatus.PAYLOAD_TOO_LARGE,
        )
    if length == 0:
        return b""

    body = source.read_exact(length)
    if len(body) != length:
        raise PayloadError(
            f"Premature end of stream: got {len(body)} of {length} body bytes"
        )
    return body


# =============================================================================
# ENCODING
# =============================================================================

def encode_head(response: HTTPResponse, server_name: str = "StreamHTTP/1.0") -> bytes:
    """
    Serialize the status line and headers, including the blank line.

        HTTP/1.1 200 OK\\r\\n
        Content-Type: text/plain\\r\\n
        Content-Length: 5\\r\\n        ← computed unless already set
        Date: Wed, 01 Jan 2026 ...\\r\\n ← added if absent
        Server: StreamHTTP/1.0\\r\\n    ← added if absent
        \\r\\n

    Stream responses never get a Content-Length: their body has no end.
    """
    headers = response.headers.copy()
    kind = response.body_kind

    if kind is BodyKind.STREAM:
        headers.pop("Content-Length", None)
    elif "Content-Length" not in headers:
        if kind is BodyKind.FILE:
            headers["Content-Length"] = str(response.file.stat().st_size)
        else:
            headers["Content-Length"] = str(len(response.body))

    if "Date" not in headers:
        headers["Date"] = format_http_date(datetime.now(timezone.utc))
    if "Server" not in headers:
        headers["Server"] = server_name

    lines = [response.status_line]
    lines.extend(f"{name}: {value}" for name, value in headers.items())
    return (CRLF.join(lines) + CRLF + CRLF).encode(ENCODING, errors="replace")


def iter_response(
    response: HTTPResponse,
    server_name: str = "StreamHTTP/1.0",
    include_body: bool = True,
    chunk_size: int = FILE_CHUNK_SIZE,
) -> Iterator[bytes]:
    """
    Yield the response as a sequence of byte chunks: the head, then the body.

    A file body is read chunk_size bytes at a time so large files never
    sit in memory. include_body=False gives a HEAD response: same headers,
    same Content-Length, no body.
    """
    yield encode_head(response, server_name)

    if not include_body:
        return

    kind = response.body_kind
    if kind is BodyKind.BUFFER:
        if response.body:
            yield response.body
    elif kind is BodyKind.FILE:
        with open(response.file, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk


def encode_response(response: HTTPResponse, server_name: str = "StreamHTTP/1.0") -> bytes:
    """The complete response as one bytes object."""
    return b"".join(iter_response(response, server_name))

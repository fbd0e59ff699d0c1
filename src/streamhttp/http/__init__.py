"""
HTTP protocol layer: headers, request, response, wire codec, routing.

Nothing in this package touches a socket. The codec reads from anything
with read_line() / read_exact(), which keeps it testable with in-memory
sources.
"""

from .codec import Phase, decode_request, encode_head, encode_response, iter_response
from .headers import Headers
from .mime_types import get_content_type, get_mime_type
from .request import HTTPRequest
from .response import (
    BodyKind,
    HTTPResponse,
    ResponseBuilder,
    accepted,
    bad_request,
    created,
    error_response,
    forbidden,
    internal_error,
    method_not_allowed,
    not_found,
    not_implemented,
    ok,
    redirect,
)
from .router import Handler, Route, RouteMatch, Router
from .status_codes import HTTPStatus

__all__ = [
    # Codec
    "Phase",
    "decode_request",
    "encode_head",
    "encode_response",
    "iter_response",

    # Messages
    "Headers",
    "HTTPRequest",
    "HTTPResponse",
    "BodyKind",
    "ResponseBuilder",

    # Response convenience functions
    "ok",
    "created",
    "accepted",
    "redirect",
    "error_response",
    "bad_request",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "not_implemented",
    "internal_error",

    # Routing
    "Handler",
    "Route",
    "RouteMatch",
    "Router",

    "HTTPStatus",
    "get_mime_type",
    "get_content_type",
]

"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the engine handles has a class here, and every class knows
the HTTP status it maps to. The session turns these into responses; none
of them ever escapes a connection thread.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHO RAISES, WHO HANDLES                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ProtocolError     codec          → session writes 4xx/5xx, close  │
    │   PayloadError      codec (body)   → session writes 400/413, close  │
    │   RoutingError      router         → default 404, keep going        │
    │   HandlerError      session        → 500, close                     │
    │   BroadcastDelivery broadcaster    → evict that sink only           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from typing import Any, Optional


class HTTPError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 400

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ProtocolError(HTTPError):
    """
    The bytes on the wire are not an HTTP request we accept.

    Attributes:
        phase: Parsing phase that failed ("request-line", "headers", "body").
    """

    def __init__(self, message: str, phase: str, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.phase = phase

    def __str__(self) -> str:
        return f"{self.phase}: {self.message}"


class PayloadError(HTTPError):
    """The body does not match its declared length, or is too large."""


class RoutingError(HTTPError):
    """No route matched and the router has no default handler."""

    status_code = 404


class HandlerError(HTTPError):
    """A handler raised while producing a response."""

    status_code = 500


class BroadcastDeliveryError(Exception):
    """Writing an event frame to one sink failed."""

    def __init__(self, sink: Any, cause: BaseException):
        super().__init__(f"delivery to {sink!r} failed: {cause}")
        self.sink = sink
        self.cause = cause

"""
=============================================================================
EVENT HANDLERS
=============================================================================

Two handlers around the broadcaster:

    EventStreamHandler    GET  /events      subscribe (SSE upgrade)
    PublishHandler        POST /api/events  publish one event to everyone
                          GET  /api/events  broadcaster statistics

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   browser:  new EventSource("/events")                               │
    │               │                                                      │
    │               ▼                                                      │
    │   EventStreamHandler.handle_get → response.upgrade_to_stream()       │
    │               │                                                      │
    │               ▼                                                      │
    │   session writes head, registers socket with the broadcaster         │
    │                                                                      │
    │   curl -d 'hello' /api/events                                        │
    │               │                                                      │
    │               ▼                                                      │
    │   PublishHandler.handle_post → broadcaster.broadcast("hello")        │
    │               │                                                      │
    │               ▼                                                      │
    │   every browser receives:  data: hello\\n\\n                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
from typing import Optional

from ..broadcast import EventBroadcaster
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, accepted, bad_request, method_not_allowed, ok


logger = logging.getLogger(__name__)


class EventStreamHandler:
    """Upgrades GET requests to a Server-Sent-Events stream."""

    def handle_get(self, request: HTTPRequest, response: HTTPResponse) -> Optional[HTTPResponse]:
        response.upgrade_to_stream()
        return response

    def handle_post(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        return method_not_allowed(["GET"])


class PublishHandler:
    """
    Publishes request bodies as events.

    The event is the UTF-8 request body, or the "data" field of a
    urlencoded form.
    """

    def __init__(self, broadcaster: EventBroadcaster):
        self.broadcaster = broadcaster

    def handle_get(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        return ok(self.broadcaster.stats())

    def handle_post(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        if request.content_type == "application/x-www-form-urlencoded":
            payload = request.get_form("data", "")
        else:
            try:
                payload = request.body.decode("utf-8")
            except UnicodeDecodeError:
                return bad_request("Event payload must be UTF-8")

        if not payload:
            return bad_request("Empty event payload")

        delivered = self.broadcaster.broadcast(payload)
        logger.debug(f"Published event from {request.client_ip} to {delivered} clients")
        return accepted({"delivered": delivered})

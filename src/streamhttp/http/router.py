"""
=============================================================================
URL ROUTER
=============================================================================

Maps a request path to the Handler object that serves it.

=============================================================================
HANDLERS ARE OBJECTS, NOT FUNCTIONS
=============================================================================

A handler serves every method on its path, one method per verb:

    class EventStreamHandler:
        def handle_get(self, request, response):
            response.upgrade_to_stream()

        def handle_post(self, request, response):
            response.set_status(405)

The session picks the method (GET/HEAD → handle_get, POST → handle_post)
and passes a fresh HTTPResponse to fill in. A handler may also return a
new HTTPResponse, which replaces the one it was given.

=============================================================================
ROUTE PATTERNS
=============================================================================

    /events                  exact (case-insensitive, trailing "/" ignored)
    /api/groups/:id          one segment      → {"id": "42"}
    /files/*path             the remainder    → {"path": "css/site.css"}

Patterns compile to anchored regexes:

    /api/groups/:id  →  ^/api/groups/(?P<id>[^/]+)$

First registered route wins. When nothing matches, the default handler
(if any) serves the request; otherwise route() raises RoutingError and
the session answers 404.

=============================================================================
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, runtime_checkable

from ..errors import RoutingError
from .request import HTTPRequest
from .response import HTTPResponse


logger = logging.getLogger(__name__)


@runtime_checkable
class Handler(Protocol):
    """Serves GET (and HEAD) and POST for the paths routed to it."""

    def handle_get(self, request: HTTPRequest, response: HTTPResponse) -> Optional[HTTPResponse]:
        ...

    def handle_post(self, request: HTTPRequest, response: HTTPResponse) -> Optional[HTTPResponse]:
        ...


@dataclass
class Route:
    """A URL pattern bound to a handler."""

    path: str
    handler: Handler
    name: Optional[str] = None
    _pattern: Optional[re.Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)


@dataclass
class RouteMatch:
    """
    Result of routing a path.

        Pattern: /api/groups/:id
        Path:    /api/groups/42
        Result:  RouteMatch(route=<Route>, handler=<...>, params={"id": "42"})

    route is None when the default handler was chosen.
    """

    route: Optional[Route]
    handler: Handler
    params: Dict[str, str] = field(default_factory=dict)


class Router:
    """
    Path router with a fallback handler.

        router = Router(default=StaticFileHandler("./public"))
        router.add_route("/events", EventStreamHandler())
        router.add_route("/api/events", PublishHandler(broadcaster))

        router.route("/events")        # → EventStreamHandler
        router.route("/index.html")    # → StaticFileHandler (default)
    """

    def __init__(self, default: Optional[Handler] = None):
        self.default = default
        self._routes: List[Route] = []
        self._named_routes: Dict[str, Route] = {}

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def add_route(self, path: str, handler: Handler, name: Optional[str] = None) -> Route:
        """
        Register handler for the paths matching pattern.

        Raises:
            TypeError: If handler does not have handle_get and handle_post.
        """
        if not isinstance(handler, Handler):
            raise TypeError(f"{handler!r} must define handle_get and handle_post")

        pattern, param_names = self._compile_pattern(path)
        route = Route(
            path=path,
            handler=handler,
            name=name,
            _pattern=pattern,
            _param_names=param_names,
        )
        self._routes.append(route)
        if name:
            self._named_routes[name] = route
        return route

    def set_default(self, handler: Optional[Handler]) -> None:
        """Handler for paths no route matches. None restores 404s."""
        self.default = handler

    def _compile_pattern(self, path: str) -> tuple[re.Pattern, List[str]]:
        """
        Compile a route pattern into an anchored, case-insensitive regex.

            "/api/groups/:id"  →  ^/api/groups/(?P<id>[^/]+)$
            "/files/*path"     →  ^/files/(?P<path>.*)$
        """
        param_names: List[str] = []
        regex_parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue
            regex_parts.append("/")

            if segment.startswith(":"):
                param_name = segment[1:]
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>[^/]+)")
            elif segment.startswith("*"):
                param_name = segment[1:] or "wildcard"
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>.*)")
                break
            else:
                regex_parts.append(re.escape(segment))

        if len(regex_parts) == 1:
            regex_parts.append("/")
        regex_parts.append("$")
        return re.compile("".join(regex_parts), re.IGNORECASE), param_names

    # =========================================================================
    # ROUTE MATCHING
    # =========================================================================

    @staticmethod
    def normalize(path: str) -> str:
        """Leading slash, no trailing slash, "/" for the root."""
        stripped = path.strip("/")
        return "/" + stripped if stripped else "/"

    def match(self, path: str) -> Optional[RouteMatch]:
        """First registered route matching path, or None."""
        path = self.normalize(path)
        for route in self._routes:
            found = route._pattern.match(path)
            if found:
                return RouteMatch(route=route, handler=route.handler, params=found.groupdict())
        return None

    def resolve(self, path: str) -> RouteMatch:
        """
        Like match(), but falls back to the default handler.

        Raises:
            RoutingError: No route matches and there is no default.
        """
        found = self.match(path)
        if found is not None:
            return found
        if self.default is not None:
            return RouteMatch(route=None, handler=self.default)
        raise RoutingError(f"No route matches {path}")

    def route(self, path: str) -> Handler:
        """The handler serving path."""
        return self.resolve(path).handler

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def routes(self) -> List[Route]:
        return list(self._routes)

    def get_route(self, name: str) -> Optional[Route]:
        return self._named_routes.get(name)

    def log_routes(self) -> None:
        """Log the routing table, one line per route."""
        for route in self._routes:
            logger.info(f"Route {route.path:30} → {type(route.handler).__name__}")
        if self.default is not None:
            logger.info(f"Route {'(default)':30} → {type(self.default).__name__}")

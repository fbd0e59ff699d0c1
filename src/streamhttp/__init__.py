"""
=============================================================================
STREAMHTTP - HTTP/1.x ENGINE WITH SERVER-SENT EVENTS
=============================================================================

A raw-socket HTTP/1.0 and HTTP/1.1 server:

    - byte-exact request decoding and response encoding
    - keep-alive connections, one thread per connection
    - plaintext and TLS listeners, with redirection of secure-only paths
    - handlers that upgrade a request into a Server-Sent-Events stream
    - ordered, fault-isolated broadcast to every open stream

=============================================================================
PACKAGE LAYOUT
=============================================================================

    streamhttp/
    ├── config.py          ServerConfig
    ├── errors.py          error taxonomy
    ├── logs.py            logging setup, access log
    ├── server.py          HTTPServer
    ├── broadcast.py       EventBroadcaster
    ├── redirect.py        Redirector
    ├── core/              sockets, connections, sessions
    ├── http/              headers, request, response, codec, router
    └── handlers/          event stream, publish, static files

=============================================================================
QUICK START
=============================================================================

    from streamhttp import HTTPServer, ServerConfig
    from streamhttp.handlers import EventStreamHandler, PublishHandler

    server = HTTPServer(ServerConfig(port=8080))
    server.route("/events", EventStreamHandler())
    server.route("/api/events", PublishHandler(server.broadcaster))
    server.run()

    # elsewhere in the process:
    server.broadcaster.broadcast('{"type": "group.created", "id": 7}')

=============================================================================
"""

__version__ = "1.0.0"

from .broadcast import EventBroadcaster
from .config import ServerConfig
from .http.router import Router
from .server import HTTPServer

__all__ = ["HTTPServer", "ServerConfig", "EventBroadcaster", "Router", "__version__"]

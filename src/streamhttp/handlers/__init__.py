"""
Built-in handlers.

A handler is any object with handle_get(request, response) and
handle_post(request, response):

    EventStreamHandler   subscribe to the event stream
    PublishHandler       publish an event, read broadcaster stats
    StaticFileHandler    serve a directory (typically the default route)
"""

from .events import EventStreamHandler, PublishHandler
from .static import StaticFileHandler

__all__ = [
    "EventStreamHandler",
    "PublishHandler",
    "StaticFileHandler",
]

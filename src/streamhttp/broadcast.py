"""
=============================================================================
EVENT BROADCASTER (SERVER-SENT EVENTS FAN-OUT)
=============================================================================

Holds the set of open event streams and writes every published event to
all of them.

=============================================================================
SSE FRAMING
=============================================================================

An event is one or more "data:" lines followed by a blank line:

    broadcast("group created")      →   data: group created\\n
                                        \\n

    broadcast("line one\\nline two")  →   data: line one\\n
                                        data: line two\\n
                                        \\n

The browser's EventSource joins the data lines back together with "\\n".

=============================================================================
COPY-ON-WRITE REGISTRY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   register / remove                     broadcast                    │
    │   ─────────────────                     ─────────                    │
    │   with _registry_lock:                  view = self._view            │
    │       build a NEW tuple                 for sink in view.sinks:      │
    │       self._view = new  ◄── atomic ──►      write frame              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The registry is never mutated in place. A broadcast iterates over the
snapshot it read when it started, so registration and removal never wait
for a slow client and a broadcast never sees a half-updated list.

Before writing to a sink the broadcast checks that the sink is still a
member of the *current* view: a client removed mid-broadcast gets no
further frames.

=============================================================================
ORDERING AND FAULT ISOLATION
=============================================================================

Broadcasts are serialized by _delivery_lock, so if broadcast(A) returns
before broadcast(B) starts, every client sees A before B; frames from two
producers never interleave on one socket.

A write that fails (peer gone, send timeout) evicts that one sink. The
error is logged, the sink closed, and delivery continues with the next
sink. broadcast() itself never raises for a delivery failure.

=============================================================================
"""

import logging
import re
import threading
from typing import NamedTuple, Protocol

from .errors import BroadcastDeliveryError


logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class Sink(Protocol):
    """Byte sink an event stream is written to."""

    def write(self, data: bytes) -> None:
        ...

    def flush(self) -> None:
        ...

    def close(self) -> None:
        ...


class _View(NamedTuple):
    sinks: tuple
    members: frozenset  # id() of every sink in `sinks`


_EMPTY = _View((), frozenset())


def format_event(payload: str) -> bytes:
    """Frame payload as one SSE event, UTF-8 encoded."""
    lines = _LINE_BREAK.split(payload)
    return ("".join(f"data: {line}\n" for line in lines) + "\n").encode("utf-8")


class EventBroadcaster:
    """
    Registry of open event streams with ordered, fault-isolated fan-out.

    Sinks are compared by identity. Every method is safe to call from any
    thread at any time.
    """

    def __init__(self):
        self._view = _EMPTY
        self._registry_lock = threading.Lock()
        self._delivery_lock = threading.Lock()

        self._events_broadcast = 0
        self._frames_delivered = 0
        self._evictions = 0

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def register_client(self, sink: Sink) -> bool:
        """
        Add sink to the registry.

        Returns:
            False if it was already registered.
        """
        with self._registry_lock:
            view = self._view
            if id(sink) in view.members:
                return False
            self._view = _View(view.sinks + (sink,), view.members | {id(sink)})
            count = len(self._view.sinks)
        logger.info(f"Event client registered ({count} connected)")
        return True

    def remove_client(self, sink: Sink) -> bool:
        """
        Remove sink from the registry and close it.

        Returns:
            False if it was not registered; nothing is closed then.
        """
        if not self._detach(sink):
            return False
        _close_quietly(sink)
        logger.info(f"Event client removed ({self.get_client_count()} connected)")
        return True

    def _detach(self, sink: Sink) -> bool:
        with self._registry_lock:
            view = self._view
            if id(sink) not in view.members:
                return False
            self._view = _View(
                tuple(s for s in view.sinks if s is not sink),
                view.members - {id(sink)},
            )
            return True

    def get_client_count(self) -> int:
        return len(self._view.sinks)

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    def broadcast(self, payload: str) -> int:
        """
        Write payload as one event to every registered client.

        Returns:
            Number of clients the event was delivered to.
        """
        frame = format_event(payload)
        delivered = 0

        with self._delivery_lock:
            for sink in self._view.sinks:
                if id(sink) not in self._view.members:
                    continue  # removed since this broadcast started
                try:
                    self._deliver(sink, frame)
                except BroadcastDeliveryError as e:
                    self._evict(e)
                else:
                    delivered += 1

            self._events_broadcast += 1
            self._frames_delivered += delivered

        logger.debug(f"Broadcast {len(frame)} bytes to {delivered} clients")
        return delivered

    def _deliver(self, sink: Sink, frame: bytes) -> None:
        try:
            sink.write(frame)
            sink.flush()
        except Exception as e:
            raise BroadcastDeliveryError(sink, e) from e

    def _evict(self, error: BroadcastDeliveryError) -> None:
        if not self._detach(error.sink):
            return
        self._evictions += 1
        _close_quietly(error.sink)
        logger.info(
            f"Evicted event client after failed write: {error.cause!r} "
            f"({self.get_client_count()} connected)"
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close_all(self) -> int:
        """Close and forget every client. Returns how many were closed."""
        with self._registry_lock:
            sinks = self._view.sinks
            self._view = _EMPTY
        for sink in sinks:
            _close_quietly(sink)
        if sinks:
            logger.info(f"Closed {len(sinks)} event clients")
        return len(sinks)

    def stats(self) -> dict:
        return {
            "clients": self.get_client_count(),
            "events_broadcast": self._events_broadcast,
            "frames_delivered": self._frames_delivered,
            "evictions": self._evictions,
        }


def _close_quietly(sink: Sink) -> None:
    try:
        sink.close()
    except Exception as e:
        logger.debug(f"Error closing event client: {e!r}")

"""
=============================================================================
LOGGING
=============================================================================

Two kinds of log output:

    streamhttp.*          operational messages (startup, errors, evictions)
    streamhttp.access     one line per response written

=============================================================================
ACCESS LOG FORMATS
=============================================================================

TEXT (Apache-like, default):
    127.0.0.1 - - [2026-01-01T12:00:00+00:00] "GET /events HTTP/1.1" 200 - 0.41ms

JSON (for log aggregators):
    {"request_id": "1f2e3d4c", "method": "GET", "target": "/events", ...}

An upgraded event stream has no length; it is logged as "-".

=============================================================================
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional


access_logger = logging.getLogger("streamhttp.access")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger and the streamhttp logger level."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    logging.getLogger("streamhttp").setLevel(numeric)


@dataclass
class RequestLog:
    """One access log entry."""

    request_id: str
    method: str
    target: str
    version: str
    client_ip: str
    status_code: int
    content_length: int  # -1 for an event stream
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    def to_text(self) -> str:
        length = "-" if self.content_length < 0 else str(self.content_length)
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.target} {self.version}" {self.status_code} '
            f'{length} {self.duration_ms:.2f}ms'
        )


def log_request(
    request_id: str,
    method: str,
    target: str,
    version: str,
    client_ip: str,
    status_code: int,
    content_length: int,
    started: float,
    finished: float,
    log_format: str = "text",
    timestamp: Optional[datetime] = None,
) -> RequestLog:
    """Build a RequestLog and emit it on the access logger."""
    entry = RequestLog(
        request_id=request_id,
        method=method,
        target=target,
        version=version,
        client_ip=client_ip,
        status_code=int(status_code),
        content_length=content_length,
        duration_ms=(finished - started) * 1000,
        timestamp=(timestamp or datetime.now(timezone.utc)).isoformat(timespec="seconds"),
    )
    if log_format == "json":
        access_logger.info(json.dumps(entry.to_dict()))
    else:
        access_logger.info(entry.to_text())
    return entry

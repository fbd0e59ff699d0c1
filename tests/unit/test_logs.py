"""
Unit tests for the access log.
"""

import json
import logging
from datetime import datetime, timezone

from streamhttp.logs import RequestLog, log_request


def make_entry(**overrides) -> RequestLog:
    values = dict(
        request_id="abc12345",
        method="GET",
        target="/events",
        version="HTTP/1.1",
        client_ip="127.0.0.1",
        status_code=200,
        content_length=12,
        duration_ms=1.234,
        timestamp="2026-01-01T12:00:00+00:00",
    )
    values.update(overrides)
    return RequestLog(**values)


class TestRequestLog:
    """Tests for RequestLog formatting."""

    def test_to_text(self):
        """Test the common-log-like text line."""
        assert make_entry().to_text() == (
            '127.0.0.1 - - [2026-01-01T12:00:00+00:00] "GET /events HTTP/1.1" 200 12 1.23ms'
        )

    def test_stream_length_dash(self):
        """Test that an event stream logs its length as "-"."""
        assert ' 200 - ' in make_entry(content_length=-1).to_text()

    def test_to_dict(self):
        """Test the JSON form."""
        entry = make_entry().to_dict()

        assert entry["method"] == "GET"
        assert entry["duration_ms"] == 1.23


class TestLogRequest:
    """Tests for log_request()."""

    def test_text_format(self, caplog):
        """Test that a text line reaches the access logger."""
        with caplog.at_level(logging.INFO, logger="streamhttp.access"):
            entry = log_request(
                "id1", "POST", "/api/events", "HTTP/1.1", "10.0.0.2",
                202, 15, started=100.0, finished=100.5,
                timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
            )

        assert entry.duration_ms == 500.0
        assert '"POST /api/events HTTP/1.1" 202 15' in caplog.text

    def test_json_format(self, caplog):
        """Test JSON access lines."""
        with caplog.at_level(logging.INFO, logger="streamhttp.access"):
            log_request(
                "id1", "GET", "/", "HTTP/1.0", "10.0.0.2",
                404, 20, started=1.0, finished=1.0, log_format="json",
            )

        record = json.loads(caplog.records[-1].getMessage())
        assert record["status_code"] == 404
        assert record["version"] == "HTTP/1.0"

"""
Unit tests for the built-in handlers.
"""

import json
import os

import pytest

from streamhttp.handlers import EventStreamHandler, PublishHandler, StaticFileHandler
from streamhttp.http import HTTPRequest, HTTPResponse
from streamhttp.http.headers import Headers
from streamhttp.http.response import BodyKind


def make_request(method="GET", target="/", headers=None, body=b"", **kwargs) -> HTTPRequest:
    return HTTPRequest(method, target, headers=Headers(headers or {}), body=body, **kwargs)


class TestEventStreamHandler:
    """Tests for EventStreamHandler."""

    def test_get_upgrades(self):
        """Test that GET turns the response into a stream."""
        response = EventStreamHandler().handle_get(make_request(target="/events"), HTTPResponse())

        assert response.is_stream
        assert response.headers["Content-Type"] == "text/event-stream"

    def test_post_not_allowed(self):
        """Test that POST gets 405."""
        response = EventStreamHandler().handle_post(make_request("POST"), HTTPResponse())

        assert response.status == 405
        assert response.headers["Allow"] == "GET"


class TestPublishHandler:
    """Tests for PublishHandler."""

    def test_publish_raw_body(self, broadcaster, sink_factory):
        """Test publishing a plain body."""
        sink = sink_factory()
        broadcaster.register_client(sink)

        response = PublishHandler(broadcaster).handle_post(
            make_request("POST", body=b'{"type": "ping"}'), HTTPResponse(),
        )

        assert response.status == 202
        assert json.loads(response.body) == {"delivered": 1}
        assert sink.frames == [b'data: {"type": "ping"}\n\n']

    def test_publish_form_field(self, broadcaster, sink_factory):
        """Test publishing the data field of a form."""
        sink = sink_factory()
        broadcaster.register_client(sink)
        request = make_request(
            "POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            body=b"data=hello+there&other=1",
        )

        PublishHandler(broadcaster).handle_post(request, HTTPResponse())

        assert sink.frames == [b"data: hello there\n\n"]

    def test_empty_payload(self, broadcaster):
        """Test that an empty event is refused."""
        response = PublishHandler(broadcaster).handle_post(make_request("POST"), HTTPResponse())

        assert response.status == 400
        assert broadcaster.stats()["events_broadcast"] == 0

    def test_invalid_utf8(self, broadcaster):
        """Test that a non-UTF-8 body is refused."""
        response = PublishHandler(broadcaster).handle_post(
            make_request("POST", body=b"\xff\xfe"), HTTPResponse(),
        )

        assert response.status == 400

    def test_get_returns_stats(self, broadcaster, sink_factory):
        """Test that GET reports broadcaster statistics."""
        broadcaster.register_client(sink_factory())

        response = PublishHandler(broadcaster).handle_get(make_request(), HTTPResponse())

        assert json.loads(response.body)["clients"] == 1


class TestStaticFileHandler:
    """Tests for StaticFileHandler."""

    @pytest.fixture
    def site(self, tmp_path):
        (tmp_path / "index.html").write_text("<h1>home</h1>")
        (tmp_path / "css").mkdir()
        (tmp_path / "css" / "site.css").write_text("body {}")
        return tmp_path

    def test_home_file(self, site):
        """Test that "/" serves the home file."""
        response = StaticFileHandler(str(site)).handle_get(make_request(target="/"), HTTPResponse())

        assert response.status == 200
        assert response.body_kind is BodyKind.FILE
        assert response.file.name == "index.html"
        assert response.headers["Content-Type"] == "text/html; charset=utf-8"

    def test_nested_file(self, site):
        """Test serving a file in a subdirectory."""
        response = StaticFileHandler(str(site)).handle_get(
            make_request(target="/css/site.css"), HTTPResponse(),
        )

        assert response.file == (site / "css" / "site.css").resolve()
        assert response.headers["Content-Type"] == "text/css; charset=utf-8"
        assert "ETag" in response.headers
        assert response.headers["Cache-Control"] == "public, max-age=3600"

    def test_missing_file(self, site):
        """Test 404 for a file that does not exist."""
        response = StaticFileHandler(str(site)).handle_get(
            make_request(target="/nope.png"), HTTPResponse(),
        )

        assert response.status == 404

    def test_traversal_blocked(self, site):
        """Test that paths escaping the root are refused."""
        response = StaticFileHandler(str(site / "css")).handle_get(
            make_request(target="/../index.html"), HTTPResponse(),
        )

        assert response.status == 403

    def test_not_modified(self, site):
        """Test 304 when the client's ETag is current."""
        handler = StaticFileHandler(str(site))
        first = handler.handle_get(make_request(target="/"), HTTPResponse())

        second = handler.handle_get(
            make_request(target="/", headers={"If-None-Match": first.headers["ETag"]}),
            HTTPResponse(),
        )

        assert second.status == 304
        assert second.body_kind is BodyKind.BUFFER

    def test_post_not_implemented(self, site):
        """Test that POST to a static file gets 501."""
        response = StaticFileHandler(str(site)).handle_post(make_request("POST"), HTTPResponse())

        assert response.status == 501

    def test_missing_root(self, tmp_path):
        """Test that a missing root directory fails at construction."""
        with pytest.raises(ValueError):
            StaticFileHandler(os.path.join(str(tmp_path), "absent"))

"""
Unit tests for HTTP request decoding.
"""

import pytest

from streamhttp.errors import PayloadError, ProtocolError
from streamhttp.http.codec import Phase, decode_request
from streamhttp.http.headers import Headers
from streamhttp.http.request import HTTPRequest


class TestDecodeRequest:
    """Tests for decode_request()."""

    def test_decode_simple_get(self, make_source, sample_get_request: bytes):
        """Test decoding a simple GET request."""
        request = decode_request(
            make_source(sample_get_request),
            client_address=("127.0.0.1", 12345),
            server_port=8080,
        )

        assert request.method == "GET"
        assert request.target == "/api/groups?page=1&limit=10"
        assert request.path == "/api/groups"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)
        assert request.server_port == 8080
        assert request.scheme == "http"
        assert request.body == b""

    def test_decode_headers(self, make_source, sample_get_request: bytes):
        """Test that headers are decoded."""
        request = decode_request(make_source(sample_get_request))

        assert request.host == "localhost:8080"
        assert request.headers["user-agent"] == "pytest"
        assert request.is_keep_alive is True

    def test_decode_post_with_body(self, make_source, sample_post_request: bytes):
        """Test that exactly Content-Length body bytes are read."""
        request = decode_request(make_source(sample_post_request))

        assert request.method == "POST"
        assert request.body == b"name=Ops+Team&data=hello%20world"
        assert request.content_length == len(request.body)

    def test_body_does_not_consume_next_request(self, make_source):
        """Test that bytes after the body stay in the source."""
        raw = (
            b"POST /a HTTP/1.1\r\nContent-Length: 3\r\n\r\nabc"
            b"GET /b HTTP/1.1\r\n\r\n"
        )
        source = make_source(raw)

        first = decode_request(source)
        second = decode_request(source)

        assert first.body == b"abc"
        assert second.method == "GET"
        assert second.target == "/b"

    def test_leading_blank_lines_ignored(self, make_source):
        """Test that empty lines before the request line are skipped."""
        request = decode_request(make_source(b"\r\n\r\nGET / HTTP/1.1\r\n\r\n"))

        assert request.target == "/"

    def test_end_of_stream_before_request(self, make_source):
        """Test that a clean close yields None."""
        assert decode_request(make_source(b"")) is None
        assert decode_request(make_source(b"\r\n")) is None

    def test_bare_lf_line_endings(self, make_source):
        """Test that LF-only terminators are accepted."""
        request = decode_request(make_source(b"GET /x HTTP/1.0\nHost: a\n\n"))

        assert request.version == "HTTP/1.0"
        assert request.host == "a"

    def test_tokens_kept_verbatim(self, make_source):
        """Test that unknown methods and versions are left to the caller."""
        request = decode_request(make_source(b"FETCH /x HTTP/2.0\r\n\r\n"))

        assert request.method == "FETCH"
        assert request.version == "HTTP/2.0"

    @pytest.mark.parametrize("line", [
        b"GET\r\n",
        b"GET /path\r\n",
        b"GET /path HTTP/1.1 extra\r\n",
    ])
    def test_request_line_needs_three_tokens(self, make_source, line):
        """Test handling of malformed request lines."""
        with pytest.raises(ProtocolError) as exc_info:
            decode_request(make_source(line + b"\r\n"))

        assert exc_info.value.status_code == 400
        assert exc_info.value.phase == "request-line"

    def test_header_without_colon(self, make_source):
        """Test that a header line without ':' is rejected."""
        with pytest.raises(ProtocolError) as exc_info:
            decode_request(make_source(b"GET / HTTP/1.1\r\nNoColonHere\r\n\r\n"))

        assert exc_info.value.phase == "headers"
        assert exc_info.value.status_code == 400

    def test_header_with_empty_name(self, make_source):
        """Test that ': value' is rejected."""
        with pytest.raises(ProtocolError):
            decode_request(make_source(b"GET / HTTP/1.1\r\n: value\r\n\r\n"))

    @pytest.mark.parametrize("line", [
        b"X-Foo: a\rb",
        b"X\rFoo: a",
        b"X-Foo: a\r",
    ])
    def test_bare_cr_in_header(self, make_source, line):
        """Test that a bare CR inside a header line is a 400, not a crash."""
        with pytest.raises(ProtocolError) as exc_info:
            decode_request(make_source(b"GET / HTTP/1.1\r\n" + line + b"\r\n\r\n"))

        assert exc_info.value.phase == "headers"
        assert exc_info.value.status_code == 400

    def test_bare_cr_in_folded_header(self, make_source):
        """Test that a continuation line with a bare CR is rejected."""
        raw = b"GET / HTTP/1.1\r\nX-Long: first\r\n  sec\rond\r\n\r\n"

        with pytest.raises(ProtocolError):
            decode_request(make_source(raw))

    def test_header_value_may_contain_colon(self, make_source):
        """Test that only the first ':' separates name and value."""
        request = decode_request(make_source(b"GET / HTTP/1.1\r\nHost: example.com:8080\r\n\r\n"))

        assert request.host == "example.com:8080"

    def test_folded_header(self, make_source):
        """Test obsolete line folding joins continuation lines."""
        raw = b"GET / HTTP/1.1\r\nX-Long: first\r\n  second\r\n\r\n"
        request = decode_request(make_source(raw))

        assert request.headers["X-Long"] == "first second"

    def test_too_many_headers(self, make_source):
        """Test the header count limit."""
        raw = b"GET / HTTP/1.1\r\n" + b"".join(
            f"X-H{i}: v\r\n".encode() for i in range(5)
        ) + b"\r\n"

        with pytest.raises(ProtocolError) as exc_info:
            decode_request(make_source(raw), max_header_count=4)

        assert exc_info.value.status_code == 431

    def test_end_of_stream_in_headers(self, make_source):
        """Test that a request cut off inside the headers is an error."""
        with pytest.raises(PayloadError):
            decode_request(make_source(b"GET / HTTP/1.1\r\nHost: a\r\n"))

    def test_body_shorter_than_declared(self, make_source):
        """Test Content-Length larger than the bytes actually sent."""
        raw = b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\nabc"

        with pytest.raises(PayloadError) as exc_info:
            decode_request(make_source(raw))

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("value", [b"abc", b"-1", b"1.5"])
    def test_invalid_content_length(self, make_source, value):
        """Test non-numeric and negative Content-Length."""
        raw = b"POST / HTTP/1.1\r\nContent-Length: " + value + b"\r\n\r\n"

        with pytest.raises(ProtocolError) as exc_info:
            decode_request(make_source(raw))

        assert exc_info.value.phase == "body"

    def test_body_too_large(self, make_source):
        """Test that an oversized body is rejected before reading it."""
        raw = b"POST / HTTP/1.1\r\nContent-Length: 100\r\n\r\n" + b"x" * 100

        with pytest.raises(PayloadError) as exc_info:
            decode_request(make_source(raw), max_body_size=10)

        assert exc_info.value.status_code == 413

    def test_chunked_not_implemented(self, make_source):
        """Test that Transfer-Encoding is refused with 501."""
        raw = b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n0\r\n\r\n"

        with pytest.raises(ProtocolError) as exc_info:
            decode_request(make_source(raw))

        assert exc_info.value.status_code == 501

    def test_phase_callback(self, make_source, sample_post_request: bytes):
        """Test that on_phase sees every phase in order."""
        phases = []
        decode_request(make_source(sample_post_request), on_phase=phases.append)

        assert phases == [Phase.REQUEST_LINE, Phase.HEADERS, Phase.BODY]

    def test_latin1_header_bytes(self, make_source):
        """Test that non-ASCII header bytes decode as ISO-8859-1."""
        request = decode_request(make_source(b"GET / HTTP/1.1\r\nX-Name: caf\xe9\r\n\r\n"))

        assert request.headers["X-Name"] == "café"


class TestHTTPRequest:
    """Tests for HTTPRequest derived values."""

    def test_query_params(self):
        """Test query parameter parsing."""
        request = HTTPRequest("GET", "/search?q=hello%20world&tag=a&tag=b&empty=")

        assert request.path == "/search"
        assert request.get_query("q") == "hello world"
        assert request.query_params["tag"] == ["a", "b"]
        assert request.get_query("empty") == ""
        assert request.get_query("missing", "default") == "default"

    def test_path_is_unquoted(self):
        """Test percent-decoding of the path."""
        request = HTTPRequest("GET", "/files/my%20file.txt")

        assert request.path == "/files/my file.txt"

    def test_cookies(self):
        """Test cookie parsing."""
        headers = Headers({"Cookie": "session=abc123; theme=dark; broken; lang = en; token=a=b"})
        request = HTTPRequest("GET", "/", headers=headers)

        assert request.cookies == {
            "session": "abc123",
            "theme": "dark",
            "lang": "en",
            "token": "a=b",
        }

    def test_no_cookies(self):
        """Test that a missing Cookie header gives an empty dict."""
        assert HTTPRequest("GET", "/").cookies == {}

    def test_form(self, make_source, sample_post_request: bytes):
        """Test urlencoded form parsing."""
        request = decode_request(make_source(sample_post_request))

        assert request.get_form("name") == "Ops Team"
        assert request.get_form("data") == "hello world"

    def test_form_ignores_other_content_types(self):
        """Test that a JSON body is not parsed as a form."""
        headers = Headers({"Content-Type": "application/json"})
        request = HTTPRequest("POST", "/", headers=headers, body=b"a=1")

        assert request.form == {}

    def test_json_body(self):
        """Test JSON parsing."""
        headers = Headers({"Content-Type": "application/json; charset=utf-8"})
        request = HTTPRequest("POST", "/", headers=headers, body=b'{"name": "ops"}')

        assert request.content_type == "application/json"
        assert request.json == {"name": "ops"}

    def test_invalid_json_body(self):
        """Test that invalid JSON raises PayloadError."""
        request = HTTPRequest("POST", "/", body=b"{not json")

        with pytest.raises(PayloadError):
            request.json

    def test_empty_json_body(self):
        """Test that an empty body gives None."""
        assert HTTPRequest("POST", "/").json is None

    @pytest.mark.parametrize("version,connection,expected", [
        ("HTTP/1.1", None, True),
        ("HTTP/1.1", "close", False),
        ("HTTP/1.1", "Keep-Alive, Upgrade", True),
        ("HTTP/1.0", None, False),
        ("HTTP/1.0", "keep-alive", True),
        ("HTTP/1.0", "Close", False),
    ])
    def test_keep_alive(self, version, connection, expected):
        """Test keep-alive negotiation per protocol version."""
        headers = Headers({"Connection": connection} if connection else {})
        request = HTTPRequest("GET", "/", version=version, headers=headers)

        assert request.is_keep_alive is expected

    def test_client_and_scheme(self):
        """Test address and scheme accessors."""
        request = HTTPRequest("GET", "/", client_address=("10.0.0.1", 4000), scheme="https")

        assert request.client_ip == "10.0.0.1"
        assert request.client_port == 4000
        assert request.is_secure is True

    def test_request_is_immutable(self):
        """Test that stored fields cannot be reassigned."""
        request = HTTPRequest("GET", "/")

        with pytest.raises(Exception):
            request.method = "POST"

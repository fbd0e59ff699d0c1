"""
Unit tests for the header collection.
"""

import pytest

from streamhttp.http.headers import Headers


class TestHeaders:
    """Tests for Headers."""

    def test_lookup_is_case_insensitive(self):
        """Test that any spelling finds the field."""
        headers = Headers({"Content-Type": "text/plain"})

        assert headers["content-type"] == "text/plain"
        assert headers["CONTENT-TYPE"] == "text/plain"
        assert "content-TYPE" in headers

    def test_last_write_wins_and_keeps_position(self):
        """Test that replacing a field keeps its original position."""
        headers = Headers()
        headers["Content-Type"] = "text/plain"
        headers["X-Id"] = "1"
        headers["content-type"] = "text/html"

        assert headers.items() == [("content-type", "text/html"), ("X-Id", "1")]
        assert len(headers) == 2

    def test_iteration_uses_original_spelling(self):
        """Test that iteration yields names as they were set."""
        headers = Headers([("X-Request-ID", "a"), ("Host", "b")])

        assert list(headers) == ["X-Request-ID", "Host"]

    def test_get_default(self):
        """Test get() with a missing field."""
        headers = Headers()

        assert headers.get("Missing") is None
        assert headers.get("Missing", "x") == "x"

    def test_delete(self):
        """Test deleting in a different case."""
        headers = Headers({"Connection": "close"})
        del headers["connection"]

        assert "Connection" not in headers

    def test_values_are_strings(self):
        """Test that non-string values are converted."""
        headers = Headers()
        headers["Content-Length"] = 42

        assert headers["Content-Length"] == "42"

    @pytest.mark.parametrize("name,value", [
        ("X-Evil", "a\r\nSet-Cookie: x=1"),
        ("X-Evil", "a\nb"),
        ("X-\rEvil", "a"),
    ])
    def test_rejects_line_breaks(self, name, value):
        """Test that CR and LF cannot be smuggled into a header."""
        headers = Headers()
        with pytest.raises(ValueError):
            headers[name] = value

    def test_copy_is_independent(self):
        """Test that copy() does not share storage."""
        headers = Headers({"A": "1"})
        clone = headers.copy()
        clone["A"] = "2"

        assert headers["A"] == "1"
        assert clone["a"] == "2"

    def test_equality(self):
        """Test comparison ignores name case."""
        assert Headers({"Host": "x"}) == Headers({"host": "x"})
        assert Headers({"Host": "x"}) == {"HOST": "x"}
        assert Headers({"Host": "x"}) != Headers({"Host": "y"})

    def test_kwargs_constructor(self):
        """Test building from keyword arguments."""
        headers = Headers(Host="example.com")

        assert headers["host"] == "example.com"

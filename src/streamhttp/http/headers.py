"""
HTTP header collection.

Header names are case-insensitive ("Content-Type" and "content-type" are
the same field) but the spelling the client or handler used is kept for
output. Order of first insertion is preserved so responses serialize
their headers in the order handlers set them.
"""

from collections.abc import MutableMapping
from typing import Iterator, Optional


class Headers(MutableMapping):
    """
    Case-insensitive, insertion-ordered mapping of header fields.

    Setting an existing field replaces its value (last write wins) and
    keeps the field in its original position:

        >>> h = Headers()
        >>> h["Content-Type"] = "text/plain"
        >>> h["X-Id"] = "1"
        >>> h["content-type"] = "text/html"
        >>> list(h.items())
        [('content-type', 'text/html'), ('X-Id', '1')]

    CR and LF are rejected in names and values, which rules out response
    splitting through handler supplied header values.
    """

    def __init__(self, initial=None, **kwargs):
        # lowercase name -> (original name, value)
        self._store: dict[str, tuple[str, str]] = {}
        if initial is not None:
            self.update(initial)
        if kwargs:
            self.update(kwargs)

    def __setitem__(self, name: str, value) -> None:
        name = str(name)
        value = str(value)
        if "\r" in name or "\n" in name or "\r" in value or "\n" in value:
            raise ValueError(f"Illegal line break in header {name!r}")
        self._store[name.lower()] = (name, value)

    def __getitem__(self, name: str) -> str:
        return self._store[name.lower()][1]

    def __delitem__(self, name: str) -> None:
        del self._store[name.lower()]

    def __contains__(self, name) -> bool:
        return isinstance(name, str) and name.lower() in self._store

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def items(self):
        """(name, value) pairs in insertion order, original spelling."""
        return list(self._store.values())

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        entry = self._store.get(name.lower())
        return entry[1] if entry is not None else default

    def copy(self) -> "Headers":
        return Headers(self.items())

    def __eq__(self, other) -> bool:
        if isinstance(other, Headers):
            return {k: v for k, (_, v) in self._store.items()} == {
                k: v for k, (_, v) in other._store.items()
            }
        if isinstance(other, dict):
            return self == Headers(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({self.items()!r})"

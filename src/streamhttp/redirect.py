"""
=============================================================================
PLAIN → SECURE REDIRECTION
=============================================================================

Some paths must only be served over TLS. A request for one of them that
arrives on the plaintext listener is answered with a redirect to the same
target on the secure port; the handler never runs.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   GET /admin/users?page=2 HTTP/1.1        (plain, port 8080)         │
    │   Host: example.com:8080                                             │
    │                                                                      │
    │   HTTP/1.1 301 Moved Permanently                                     │
    │   Location: https://example.com:8443/admin/users?page=2              │
    │   Connection: close                                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The Location always names the secure port explicitly, even 443, so the
URL stays correct whatever port the listener really uses.

Prefix matching is segment aware: "/admin" covers "/admin" and
"/admin/x" but not "/administrator". The prefix "/" covers every path.

=============================================================================
"""

from typing import Iterable, Optional
from urllib.parse import unquote, urlsplit


class Redirector:
    """
    Decides whether a request must be redirected to the secure port.

    Args:
        secure_port: Port of the TLS listener.
        secure_paths: Path prefixes that are TLS-only.
        host: Hostname used when the request carries no Host header.
        status: Redirect status code (301 by default).
    """

    def __init__(
        self,
        secure_port: int,
        secure_paths: Iterable[str] = (),
        host: str = "localhost",
        status: int = 301,
    ):
        self.secure_port = secure_port
        self.secure_paths = tuple(self._normalize(p) for p in secure_paths)
        self.host = host
        self.status = status

    @staticmethod
    def _normalize(path: str) -> str:
        stripped = path.strip().strip("/").lower()
        return "/" + stripped if stripped else "/"

    def is_secure_only(self, path: str) -> bool:
        """True when path falls under one of the secure prefixes."""
        path = self._normalize(unquote(urlsplit(path).path))
        for prefix in self.secure_paths:
            if prefix == "/" or path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    def secure_url(self, target: str, host_header: Optional[str] = None) -> str:
        """
        The https URL for target on the secure port.

            secure_url("/a?b=1", "example.com:8080")
            → "https://example.com:8443/a?b=1"
        """
        hostname = _strip_port(host_header) if host_header else ""
        if not target.startswith("/"):
            target = "/" + target
        return f"https://{hostname or self.host}:{self.secure_port}{target}"

    def should_redirect(
        self,
        scheme: str,
        target: str,
        host_header: Optional[str] = None,
    ) -> Optional[str]:
        """
        The secure URL to redirect to, or None to serve the request as is.
        """
        if scheme == "https":
            return None
        if not self.is_secure_only(target):
            return None
        return self.secure_url(target, host_header)


def _strip_port(host: str) -> str:
    """
    Host header without its port.

        "example.com:8080"  → "example.com"
        "[::1]:8080"        → "[::1]"
        "[::1]"             → "[::1]"
    """
    host = host.strip()
    if host.startswith("["):
        end = host.find("]")
        return host[:end + 1] if end != -1 else host
    return host.split(":", 1)[0]

"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves files from a directory. Usually installed as the router's default
handler, so every path without an explicit route maps onto the directory:

    GET /                →  <root>/index.html
    GET /css/site.css    →  <root>/css/site.css
    GET /../etc/passwd   →  403 (outside the root)
    GET /missing.png     →  404

Files are sent as file-backed bodies: the response carries a path, and
the codec streams the file in chunks while writing. A large file is
never read into memory.

=============================================================================
CONDITIONAL REQUESTS
=============================================================================

Each file gets an ETag built from its mtime and size. A client that
sends the same value back in If-None-Match gets 304 Not Modified and no
body.

=============================================================================
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..http.mime_types import get_content_type
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, format_http_date, forbidden, not_found, not_implemented
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class StaticFileHandler:
    """
    Serve files below root_dir.

    Args:
        root_dir: Directory to serve. Must exist.
        home_file: File served for "/" and for directories.
        cache_max_age: Cache-Control max-age in seconds.
    """

    def __init__(self, root_dir: str, home_file: str = "index.html", cache_max_age: int = 3600):
        self.root_dir = Path(root_dir).resolve()
        self.home_file = home_file
        self.cache_max_age = cache_max_age

        if not self.root_dir.is_dir():
            raise ValueError(f"Static root directory does not exist: {root_dir}")

    def handle_get(self, request: HTTPRequest, response: HTTPResponse) -> Optional[HTTPResponse]:
        file_path = request.path_params.get("path") or request.path
        file_path = file_path.lstrip("/")

        # resolve() follows symlinks and collapses "..", so the check below
        # sees where the request really points
        full_path = (self.root_dir / file_path).resolve()
        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            logger.warning(f"Path traversal attempt from {request.client_ip}: {request.target}")
            return forbidden("Access denied")

        if full_path.is_dir():
            full_path = full_path / self.home_file

        if not full_path.is_file():
            return not_found(f"File not found: {request.path}")

        return self._serve_file(full_path, request, response)

    def handle_post(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        return not_implemented("POST is not supported for static files")

    def _serve_file(self, path: Path, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        try:
            stat = path.stat()
        except PermissionError:
            return forbidden("Permission denied")

        etag = f'"{int(stat.st_mtime)}-{stat.st_size}"'
        response.set_header("ETag", etag)

        if request.get_header("If-None-Match") == etag:
            return response.set_status(HTTPStatus.NOT_MODIFIED)

        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        response.set_header("Content-Type", get_content_type(path))
        response.set_header("Last-Modified", format_http_date(mtime))
        response.set_header("Cache-Control", f"public, max-age={self.cache_max_age}")
        return response.set_file(path)

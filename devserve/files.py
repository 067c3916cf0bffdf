"""
File streaming with first-serve cache defeat.
"""
import logging
import os
import threading
import time
from email.utils import parsedate
from typing import Callable, Dict, Optional

from starlette.datastructures import Headers
from starlette.responses import FileResponse, PlainTextResponse, Response
from starlette.staticfiles import NotModifiedResponse

from .resolve import canonical

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class ServedSet:
    """Remembers which files have been served at least once."""

    def __init__(self):
        self._lock = threading.Lock()
        self._served: Dict[str, bool] = {}

    def first_serve(self, path: str) -> bool:
        """Mark ``path`` served. True only for the very first call per path."""
        key = canonical(path)
        with self._lock:
            if self._served.get(key):
                return False
            self._served[key] = True
            return True

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return self._served.get(canonical(path), False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._served)


def with_mtime(st: os.stat_result, mtime: float) -> os.stat_result:
    """Copy of a stat result reporting a different modification time."""
    fields = list(st[:10])
    fields[8] = int(mtime)
    # The float times live outside the tuple part and keep sub-second precision
    times = {"st_atime": st.st_atime, "st_mtime": mtime, "st_ctime": st.st_ctime}
    return os.stat_result(fields, times)


def is_not_modified(response_headers: Headers, request_headers: Headers) -> bool:
    """Conditional GET check, ETag first, then If-Modified-Since."""
    if_none_match = request_headers.get("if-none-match")
    etag = response_headers.get("etag")
    if if_none_match and etag:
        tags = [tag.strip(" W/") for tag in if_none_match.split(",")]
        return etag.strip(" W/") in tags or "*" in tags

    try:
        if_modified_since = parsedate(request_headers["if-modified-since"])
        last_modified = parsedate(response_headers["last-modified"])
    except KeyError:
        return False
    if if_modified_since is None or last_modified is None:
        return False
    return if_modified_since >= last_modified


class FileStreamer:
    """
    Builds file responses.

    Range requests are answered by Starlette's FileResponse. The modification
    time it reports comes from here: "now" on the first serve of a file (or
    always, in no-cache mode), the real one afterwards.
    """

    def __init__(self, no_cache: bool = False, on_serve: Optional[Callable[[str], None]] = None):
        self.no_cache = no_cache
        self.served = ServedSet()
        self.on_serve = on_serve

    def reported_stat(self, path: str, st: os.stat_result) -> os.stat_result:
        first = self.served.first_serve(path)
        if first or self.no_cache:
            return with_mtime(st, time.time())
        return st

    def respond(self, path: str, request_headers: Headers, method: str = "GET") -> Response:
        # Re-check: the file may have gone since classification
        try:
            st = os.stat(path)
        except (OSError, ValueError):
            return PlainTextResponse("Not found", status_code=404)
        try:
            with open(path, "rb"):
                pass
        except OSError as e:
            logger.warning(f"Cannot open {path}: {e}")
            return PlainTextResponse(str(e), status_code=500)

        if self.on_serve is not None:
            self.on_serve(path)

        headers = dict(NO_CACHE_HEADERS) if self.no_cache else None
        response = FileResponse(
            path,
            headers=headers,
            stat_result=self.reported_stat(path, st),
            method=method,
        )
        if method in ("GET", "HEAD") and is_not_modified(response.headers, request_headers):
            return NotModifiedResponse(response.headers)
        return response

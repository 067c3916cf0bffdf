"""
Request pipeline: decides how each request path is answered.
"""
import logging
import os
from typing import Optional
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

from .archive import archive_response, match_archive
from .config import ServerConfig
from .files import FileStreamer
from .listing import listing_response
from .livereload import DirectoryWatcher
from .proxy import FallbackProxy
from .resolve import PathClassifier, ResolvedTarget

logger = logging.getLogger(__name__)


def forwarded_path(request: Request) -> str:
    """The request path exactly as the client sent it, percent-encoding intact."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1")
    return request.url.path


class RequestPipeline:
    """
    Owns the per-process serving state and answers requests in a fixed order:

    1. classify the path (pushstate may stand the root index in for it)
    2. missing or directory with a fallback configured -> proxy upstream
    3. missing and archiving on -> stream an archive of a matching directory
    4. missing -> 404
    5. directory without trailing slash -> 302 to add it
    6. directory -> its index.html, else a listing (or 403 without listings)
    7. file -> stream it

    The first step that produces a response ends the request.
    """

    def __init__(self, config: ServerConfig, watcher: Optional[DirectoryWatcher] = None):
        self.config = config
        self.classifier = PathClassifier(config)
        self.fallback = FallbackProxy(config.fallback) if config.fallback else None
        self.watcher = watcher
        self.files = FileStreamer(
            no_cache=config.no_cache,
            on_serve=self.watch_parent if watcher is not None else None,
        )

    def watch_parent(self, path: str) -> None:
        self.watcher.watch(os.path.dirname(path))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        # Mounted at the root: every HTTP method reaches the pipeline
        if scope["type"] != "http":
            await send({"type": "websocket.close", "code": 1000})
            return
        response = await self.handle(Request(scope, receive))
        await response(scope, receive, send)

    async def handle(self, request: Request) -> Response:
        url_path = request.url.path
        target = await run_in_threadpool(self.classifier.classify, url_path)

        if self.fallback is not None and (target.is_missing or target.is_dir):
            body = await request.body()
            client = request.client.host if request.client else None
            return await run_in_threadpool(
                self.fallback.forward,
                request.method,
                forwarded_path(request),
                request.url.query,
                request.headers.items(),
                body,
                client,
            )

        return await run_in_threadpool(self.respond_local, request, target)

    def respond_local(self, request: Request, target: ResolvedTarget) -> Response:
        url_path = request.url.path

        if target.is_missing and not self.config.no_archive:
            match = match_archive(target.path)
            if match is not None:
                directory, ext = match
                logger.debug(f"Archiving {directory} as {ext}")
                return archive_response(directory, ext)

        if target.is_missing:
            return PlainTextResponse("Not found", status_code=404)

        if target.is_dir and not self.config.no_slash and not url_path.endswith("/"):
            return PlainTextResponse(
                "Redirecting (must use slash for directories)",
                status_code=302,
                headers={"Location": quote(url_path) + "/"},
            )

        target = self.classifier.substitute_index(target)

        if target.is_dir:
            if self.config.no_list:
                return PlainTextResponse("Listing not allowed", status_code=403)
            return listing_response(
                target.path,
                self.classifier.relative(target.path),
                request.headers.get("accept"),
                archive=not self.config.no_archive,
                case_insensitive=self.config.case_insensitive,
                directories_first=self.config.list_directories_first,
            )

        return self.files.respond(target.path, request.headers, request.method)

"""
devserve application
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.responses import Response

from . import __version__
from .auth import BasicAuthMiddleware, parse_credentials
from .config import ServerConfig
from .livereload import LIVERELOAD_PATH, LIVERELOAD_SCRIPT_PATH, DirectoryWatcher, LiveReloadHub
from .pipeline import RequestPipeline
from .requestlog import RequestLogMiddleware


def create_app(config: ServerConfig, hub: Optional[LiveReloadHub] = None,
               watcher: Optional[DirectoryWatcher] = None) -> FastAPI:
    """
    Build the ASGI app for ``config``.

    Every configuration problem raises ConfigurationError here, before any
    socket is bound.
    """
    if config.auth:
        parse_credentials(config.auth)

    if config.live_reload:
        hub = hub or LiveReloadHub()
        watcher = watcher or DirectoryWatcher(hub.notify)
    else:
        hub = None
        watcher = None

    pipeline = RequestPipeline(config, watcher=watcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if hub is not None:
            hub.bind(asyncio.get_running_loop())
        yield
        if watcher is not None:
            watcher.stop()

    app = FastAPI(
        title="devserve",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.pipeline = pipeline
    app.state.hub = hub
    app.state.watcher = watcher

    # ============================================
    # Live reload
    # ============================================

    if hub is not None:
        @app.websocket(LIVERELOAD_PATH)
        async def livereload(websocket: WebSocket):
            await hub.serve(websocket)

        @app.get(LIVERELOAD_SCRIPT_PATH)
        async def livereload_script():
            return Response(hub.script, media_type="application/javascript")

    # ============================================
    # Everything else is the served tree
    # ============================================

    app.mount("/", pipeline)

    if config.auth:
        app.add_middleware(BasicAuthMiddleware, credentials=config.auth)
    if not config.quiet:
        app.add_middleware(RequestLogMiddleware)

    return app

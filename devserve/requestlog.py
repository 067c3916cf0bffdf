"""
Request instrumentation: status, duration and bytes sent for every request.
"""
import logging
import os
import time
from typing import Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .listing import format_size

logger = logging.getLogger("devserve.access")


def format_duration(seconds: float) -> str:
    """Whole units only, e.g. 3ms or 2s."""
    if seconds < 0.001:
        return f"{int(seconds * 1_000_000)}µs"
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    return f"{int(seconds)}s"


def shorten_path(path: str) -> str:
    """Replace the home directory prefix with ~ and drop a trailing separator."""
    home = os.path.expanduser("~")
    if home and home != "~" and path.startswith(home):
        path = "~" + path[len(home):]
    if len(path) > 1:
        path = path.rstrip(os.sep)
    return path


class CountingSend:
    """
    Wraps an ASGI ``send`` and records what actually goes out.

    Only body bytes handed to the server are counted, so partial range
    responses report their real size, not the file size.
    """

    def __init__(self, send: Send):
        self.send = send
        self.status: Optional[int] = None
        self.size = 0

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
        elif message["type"] == "http.response.body":
            self.size += len(message.get("body", b""))
        await self.send(message)


class RequestLogMiddleware:
    """Logs one line per HTTP request once its response has been sent."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        counting = CountingSend(send)
        t0 = time.perf_counter()
        try:
            await self.app(scope, receive, counting)
        finally:
            elapsed = time.perf_counter() - t0
            line = (
                f"{scope['method']} {scope['path']} {counting.status or 500} "
                f"{format_duration(elapsed)}"
            )
            if counting.size:
                line += f" {format_size(counting.size)}"
            logger.info(line)

"""
Live reload: watch the directories of served files and tell browsers to refresh.
"""
import asyncio
import json
import logging
import threading
from typing import Callable, Dict, Optional, Set

from starlette.websockets import WebSocket, WebSocketDisconnect
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from .resolve import canonical

logger = logging.getLogger(__name__)

LIVERELOAD_PATH = "/livereload"
LIVERELOAD_SCRIPT_PATH = "/livereload.js"

CLIENT_SCRIPT = """(function () {
  if (window.__devserveLiveReload) return;
  window.__devserveLiveReload = true;
  var scheme = location.protocol === "https:" ? "wss://" : "ws://";
  var ws = new WebSocket(scheme + location.host + "%s");
  ws.onopen = function () {
    ws.send(JSON.stringify({command: "hello", protocols: ["%s"]}));
  };
  ws.onmessage = function (event) {
    var msg = JSON.parse(event.data);
    if (msg.command === "reload") location.reload();
  };
})();
"""


class LiveReloadHub:
    """
    Browser push channel speaking the LiveReload protocol.

    ``notify`` may be called from any thread; delivery is fire-and-forget and
    a client that is slow or gone simply misses the reload.
    """

    PROTOCOL = "http://livereload.com/protocols/official-7"

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    @property
    def script(self) -> str:
        return CLIENT_SCRIPT % (LIVERELOAD_PATH, self.PROTOCOL)

    def hello(self) -> dict:
        return {"command": "hello", "protocols": [self.PROTOCOL], "serverName": "devserve"}

    async def serve(self, websocket: WebSocket) -> None:
        """Handle one browser connection until it closes."""
        await websocket.accept()
        if self.loop is None:
            self.bind(asyncio.get_running_loop())
        self.clients.add(websocket)
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = json.loads(text)
                except ValueError:
                    continue
                if isinstance(message, dict) and message.get("command") == "hello":
                    await websocket.send_json(self.hello())
        except WebSocketDisconnect:
            pass
        finally:
            self.clients.discard(websocket)

    async def broadcast(self, path: str) -> None:
        message = {"command": "reload", "path": path, "liveCSS": True}
        for websocket in list(self.clients):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping live reload client: {e}")
                self.clients.discard(websocket)

    def notify(self, path: str) -> None:
        if self.loop is None or self.loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(path), self.loop)


class DirectoryWatcher(FileSystemEventHandler):
    """
    Watches every directory that ever held a served file.

    Watches are per directory (never recursive, never per file) to keep the
    number of OS watch handles small. The observer thread starts with the
    first registered directory and runs for the life of the process.
    """

    def __init__(self, notify: Callable[[str], None], observer: Optional[BaseObserver] = None):
        self.notify = notify
        self.observer = observer if observer is not None else Observer()
        self._lock = threading.Lock()
        self.watching: Dict[str, ObservedWatch] = {}
        self.started = False

    def watch(self, directory: str) -> bool:
        """Register ``directory``; False when it was already registered or cannot be watched."""
        key = canonical(directory)
        with self._lock:
            if key in self.watching:
                return False
            try:
                handle = self.observer.schedule(self, key, recursive=False)
            except OSError as e:
                logger.warning(f"Cannot watch {key}: {e}")
                return False
            self.watching[key] = handle
            if not self.started:
                self.observer.start()
                self.started = True
        logger.debug(f"Watching {key}")
        return True

    def forget(self, path: str) -> bool:
        key = canonical(path)
        with self._lock:
            handle = self.watching.pop(key, None)
            if handle is None:
                return False
            try:
                self.observer.unschedule(handle)
            except (KeyError, OSError) as e:
                logger.debug(f"Watch on {key} already gone: {e}")
        return True

    def is_watching(self, directory: str) -> bool:
        with self._lock:
            return canonical(directory) in self.watching

    def stop(self) -> None:
        with self._lock:
            if not self.started:
                return
            self.started = False
        self.observer.stop()
        self.observer.join()

    # Event callbacks run on the observer thread

    def on_created(self, event: FileSystemEvent) -> None:
        self.notify(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.notify(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self.notify(event.dest_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self.forget(event.src_path)

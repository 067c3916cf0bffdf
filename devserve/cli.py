"""
Command line entry point.
"""
import argparse
import logging
import os
import sys
import threading
import webbrowser
from typing import List, Optional

import uvicorn

from .config import DEFAULT_HOST, DEFAULT_PORT, ConfigurationError, ServerConfig
from .main import create_app
from .requestlog import shorten_path

logger = logging.getLogger("devserve")

OPEN_DELAY = 0.5

FLAGS = [
    ("--live-reload", "Enable LiveReload, a websocket server which triggers browser refresh after each file change"),
    ("--pushstate", "Enable PushState mode, causes missing extensionless paths to return the root index.html file, "
                    "instead of a 404. Allows for sane usage of the HTML5 History API."),
    ("--no-index", "Disable automatic loading of index.html"),
    ("--no-slash", "Disable automatic slash insertion when loading an index.html or directory"),
    ("--no-list", "Disable directory listing"),
    ("--no-archive", "Disable directory archiving (download directories by appending .zip .tar .tar.gz)"),
    ("--no-cache", "Disable caching (file modified time is always now)"),
    ("--quiet", "Disable all output"),
    ("--list-directories-first", "List directories before files in the listing"),
    ("--case-insensitive", "Sort listing entries case insensitively"),
    ("--open", "Open the served page in the default browser"),
]


def parse_args(argv: Optional[List[str]] = None) -> ServerConfig:
    parser = argparse.ArgumentParser(
        prog="devserve",
        description="Serve a directory over HTTP for front-end development",
    )
    parser.add_argument("directory", nargs="?", default=os.getcwd(),
                        help="Directory from which files will be served (default: current directory)")
    parser.add_argument("--host", default=DEFAULT_HOST,
                        help=f"Host interface (default: {DEFAULT_HOST})")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT,
                        help=f"Listening port (default: {DEFAULT_PORT})")
    parser.add_argument("--auth", default="",
                        help="Enable HTTP basic auth with the chosen username and password ('user:pass')")
    parser.add_argument("--fallback", default="",
                        help="Requests that would 404 are proxied to this origin (the Host header is swapped in)")
    parser.add_argument("--time-fmt", default=None,
                        help="Timestamp format for log lines (strftime syntax)")
    for flag, help_text in FLAGS:
        parser.add_argument(flag, action="store_true", help=help_text)
    args = parser.parse_args(argv)
    return ServerConfig(**vars(args))


def configure_logging(config: ServerConfig) -> None:
    level = logging.WARNING if config.quiet else logging.INFO
    fmt = "%(asctime)s %(message)s" if config.time_fmt else "%(message)s"
    logging.basicConfig(level=level, format=fmt, datefmt=config.time_fmt)


def open_browser(port: int) -> threading.Timer:
    timer = threading.Timer(OPEN_DELAY, webbrowser.open, args=(f"http://localhost:{port}/",))
    timer.daemon = True
    timer.start()
    return timer


def main(argv: Optional[List[str]] = None) -> int:
    config = parse_args(argv)
    configure_logging(config)

    try:
        app = create_app(config)
    except ConfigurationError as e:
        print(f"devserve: {e}", file=sys.stderr)
        return 1

    logger.info(f"serving {shorten_path(config.root)} on port {config.port}")
    if config.open:
        open_browser(config.port)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="warning",
        access_log=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

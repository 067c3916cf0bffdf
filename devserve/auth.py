"""
HTTP basic auth for the whole server.
"""
import base64
import binascii
import threading
from typing import Optional, Set, Tuple

import bcrypt
from starlette.concurrency import run_in_threadpool
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .config import ConfigurationError

REALM = "devserve"


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return bcrypt.checkpw(
        password.encode("utf-8"),
        hashed_password.encode("utf-8")
    )


def parse_credentials(value: str) -> Tuple[str, str]:
    """Split a 'user:pass' setting."""
    user, sep, password = value.partition(":")
    if not sep:
        raise ConfigurationError("should be in the form 'user:pass'")
    return user, password


def decode_basic(header: Optional[str]) -> Optional[Tuple[str, str]]:
    """Decode an 'Authorization: Basic ...' header into (user, password)."""
    if not header:
        return None
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(parts[1], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, password = decoded.partition(":")
    if not sep:
        return None
    return user, password


class BasicAuthMiddleware:
    """
    Demands the configured credentials on every HTTP and WebSocket request.

    Headers that verified once are remembered, so bcrypt runs once per
    distinct credential rather than once per request.
    """

    def __init__(self, app: ASGIApp, credentials: str):
        self.app = app
        self.user, password = parse_credentials(credentials)
        self.password_hash = hash_password(password)
        self._lock = threading.Lock()
        self._accepted: Set[str] = set()

    def authorized(self, header: Optional[str]) -> bool:
        if header is None:
            return False
        with self._lock:
            if header in self._accepted:
                return True
        decoded = decode_basic(header)
        if decoded is None:
            return False
        user, password = decoded
        if user != self.user or not verify_password(password, self.password_hash):
            return False
        with self._lock:
            self._accepted.add(header)
        return True

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        header = None
        for name, value in scope.get("headers", []):
            if name == b"authorization":
                header = value.decode("latin-1")
                break

        if await run_in_threadpool(self.authorized, header):
            await self.app(scope, receive, send)
            return

        if scope["type"] == "websocket":
            await send({"type": "websocket.close", "code": 1008})
            return
        response = PlainTextResponse(
            "Not authorized",
            status_code=401,
            headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
        )
        await response(scope, receive, send)

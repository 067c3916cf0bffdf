"""
Single-origin fallback proxy for requests the local tree cannot answer.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

import requests
from starlette.background import BackgroundTask
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from .config import ConfigurationError

logger = logging.getLogger(__name__)

# Connection-scoped headers that must not be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

CHUNK_SIZE = 64 * 1024


class FallbackProxy:
    """Forwards requests to one upstream origin, rewriting the Host header."""

    def __init__(self, url: str):
        """
        Initialize the proxy.

        Args:
            url: Upstream origin, e.g. http://localhost:8080/api
        """
        try:
            parts = urlsplit(url)
        except ValueError as e:
            raise ConfigurationError(f"Invalid fallback URL: {e}")
        if not parts.scheme.startswith("http"):
            raise ConfigurationError("Invalid fallback protocol scheme")
        if not parts.netloc:
            raise ConfigurationError(f"Invalid fallback URL: {url}")

        self.scheme = parts.scheme
        self.host = parts.netloc
        self.base_path = parts.path.rstrip("/")
        self.session = requests.Session()
        self.session.headers.clear()

    def target_url(self, path: str, query: str = "") -> str:
        url = f"{self.scheme}://{self.host}{self.base_path}{path}"
        if query:
            url += "?" + query
        return url

    def forward_headers(self, headers: Iterable[Tuple[str, str]],
                        client: Optional[str] = None) -> Dict[str, str]:
        forwarded: Dict[str, str] = {}
        for name, value in headers:
            lower = name.lower()
            if lower in HOP_BY_HOP or lower in ("host", "content-length"):
                continue
            if lower in forwarded:
                separator = "; " if lower == "cookie" else ", "
                forwarded[lower] += separator + value
            else:
                forwarded[lower] = value
        forwarded["host"] = self.host
        if client:
            prior = forwarded.get("x-forwarded-for")
            forwarded["x-forwarded-for"] = f"{prior}, {client}" if prior else client
        return forwarded

    @staticmethod
    def response_headers(upstream: requests.Response) -> List[Tuple[bytes, bytes]]:
        # urllib3 keeps repeated headers (Set-Cookie) apart, requests folds them
        raw = getattr(upstream.raw, "headers", None)
        items = raw.iteritems() if hasattr(raw, "iteritems") else upstream.headers.items()
        headers = []
        for name, value in items:
            if name.lower() in HOP_BY_HOP:
                continue
            headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
        return headers

    def forward(self, method: str, path: str, query: str, headers: Iterable[Tuple[str, str]],
                body: bytes = b"", client: Optional[str] = None) -> Response:
        """
        Send the request upstream and stream its answer back unmodified.

        A transport failure (no upstream response at all) becomes a 502.
        """
        url = self.target_url(path, query)
        try:
            upstream = self.session.request(
                method,
                url,
                headers=self.forward_headers(headers, client),
                data=body or None,
                stream=True,
                allow_redirects=False,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Fallback request to {url} failed: {str(e)}")
            return PlainTextResponse(f"Bad Gateway: {e}", status_code=502)

        response = StreamingResponse(
            upstream.raw.stream(CHUNK_SIZE, decode_content=False),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.close),
        )
        response.raw_headers = self.response_headers(upstream)
        return response

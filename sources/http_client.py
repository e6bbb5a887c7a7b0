"""
Async HTTP transport shared by every platform adapter.

A transport is any awaitable callable ``transport(url, options) -> payload``
that raises on failure. Options understood here:

    method   GET (default) / POST / ...
    headers  extra request headers
    params   query parameters (dict or list of pairs for repeated keys)
    json     JSON request body
    data     form body
    files    multipart fields
    cookies  cookies for this request

The payload is decoded JSON when the body parses as JSON, otherwise text.
"""

import os
import json
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_PASSTHROUGH = ("headers", "params", "json", "data", "files", "cookies")


class TransportError(Exception):
    """Request reached the server but the answer is unusable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HttpxTransport:
    """httpx.AsyncClient behind the transport call signature."""

    def __init__(self, user_agent: Optional[str] = None, proxy: Optional[str] = None):
        self._user_agent = user_agent or os.environ.get("MANGALINK_USER_AGENT", DEFAULT_USER_AGENT)
        self._proxy = proxy or os.environ.get("MANGALINK_PROXY") or None
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            kwargs: Dict[str, Any] = {
                "headers": {"User-Agent": self._user_agent},
                "follow_redirects": True,
                # Per-attempt deadlines are enforced by the caller
                "timeout": None,
            }
            if self._proxy:
                kwargs["proxy"] = self._proxy
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def __call__(self, url: str, options: Optional[Dict[str, Any]] = None) -> Any:
        options = dict(options or {})
        method = options.pop("method", "GET").upper()
        kwargs = {key: options[key] for key in _PASSTHROUGH if options.get(key) is not None}

        response = await self._get_client().request(method, url, **kwargs)
        if response.status_code >= 400:
            raise TransportError(f"HTTP {response.status_code} for {url}", response.status_code)

        text = response.text
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

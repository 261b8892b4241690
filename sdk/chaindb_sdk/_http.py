"""
Internal HTTP client for ChainDB SDK.

This module provides the low-level HTTP and WebSocket communication layer.
It is internal to the SDK and should not be used directly by users.

Users should use MirrorSession instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .errors import ConnectionError, RequestError

logger = logging.getLogger(__name__)


class HttpTransport:
    """JSON-over-HTTP transport bound to one server.

    The aiohttp ClientSession is created lazily on first use, so the
    transport can be built outside a running event loop.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def url(self, path: str) -> str:
        return self.base_url + path

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Send a request and decode the response.

        Args:
            method: HTTP method
            path: Path below the base URL
            body: JSON body (None sends no body)
            allow_not_found: Return None on 404 instead of raising

        Returns:
            Decoded JSON, response text for non-JSON bodies, or None for 204

        Raises:
            RequestError: On an error status
            ConnectionError: If the server cannot be reached
        """
        url = self.url(path)
        try:
            request = self._client().request(method, url, json=body, timeout=self._timeout)
            async with request as resp:
                if resp.status == 404 and allow_not_found:
                    return None
                if resp.status >= 400:
                    raise await self._request_error(resp, method, path)
                if resp.status == 204:
                    return None
                if resp.content_type == "application/json":
                    return await resp.json()
                return await resp.text()
        except aiohttp.ClientError as e:
            raise ConnectionError(f"{method} {path} failed: {e}", address=self.base_url) from e
        except asyncio.TimeoutError as e:
            raise ConnectionError(f"{method} {path} timed out", address=self.base_url) from e

    async def _request_error(
        self, resp: aiohttp.ClientResponse, method: str, path: str
    ) -> RequestError:
        message = resp.reason or f"HTTP {resp.status}"
        server_code = None
        if resp.content_type == "application/json":
            try:
                data = await resp.json()
            except (aiohttp.ContentTypeError, ValueError):
                data = None
            if isinstance(data, dict):
                message = data.get("error", message)
                server_code = data.get("error_code")
        logger.debug(
            f"Request failed: {method} {path} -> {resp.status}",
            extra={"status": resp.status, "server_code": server_code},
        )
        return RequestError(
            message, status=resp.status, method=method, path=path, server_code=server_code
        )

    async def ws_connect(self, path: str) -> aiohttp.ClientWebSocketResponse:
        """Open a WebSocket below the base URL.

        Raises:
            ConnectionError: If the handshake fails
        """
        try:
            return await self._client().ws_connect(self.url(path))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ConnectionError(f"WebSocket connect failed: {e}", address=self.base_url) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

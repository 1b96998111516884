"""
WebSocket acquisition.

A :class:`StreamChannel` is an async iterator of text messages with an
explicit :meth:`StreamChannel.close`. Iteration ends when the server closes
the socket, when the channel is closed locally, or when the request deadline
passes. :meth:`StreamFetcher.fetch` drains a channel into a single result.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional

import aiohttp
import structlog

from prospect.errors import ErrorKind, FetchError
from prospect.protocols import FetchMethod, FetchRequest, FetchResult, PerformanceRecord, ProxyDescriptor

from .auth import resolve_auth
from .http_client import HttpClient

logger = structlog.get_logger(__name__)

_CLOSING_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


class StreamChannel:
    def __init__(self, url: str, ws: aiohttp.ClientWebSocketResponse, deadline: float):
        self.url = url
        self._ws = ws
        self._deadline = deadline
        self._closed = False
        self.messages_received = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "StreamChannel":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration

        remaining = self._deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            await self.close()
            raise StopAsyncIteration

        try:
            message = await self._ws.receive(timeout=remaining)
        except asyncio.TimeoutError:
            # Deadline reached while waiting for the next message
            await self.close()
            raise StopAsyncIteration

        if message.type is aiohttp.WSMsgType.TEXT:
            self.messages_received += 1
            return message.data
        if message.type is aiohttp.WSMsgType.BINARY:
            self.messages_received += 1
            return message.data.decode("utf-8", errors="replace")
        if message.type is aiohttp.WSMsgType.ERROR:
            await self.close()
            raise FetchError(ErrorKind.NETWORK, self.url, f"stream error: {self._ws.exception()}")
        if message.type in _CLOSING_TYPES:
            await self.close()
            raise StopAsyncIteration
        # Control frames carry no content
        return await self.__anext__()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._ws.close()

    async def __aenter__(self) -> "StreamChannel":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class StreamFetcher:
    method = FetchMethod.STREAM

    def __init__(self, client: HttpClient, max_messages: Optional[int] = None):
        self.client = client
        self.max_messages = max_messages

    async def open(self, request: FetchRequest, proxy: Optional[ProxyDescriptor] = None) -> StreamChannel:
        """Connect to ``request.url`` and return a channel bounded by the request timeout."""
        if not self.client.is_initialized:
            raise RuntimeError("HTTP client not initialized. Call initialize() first.")
        assert self.client.session is not None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + request.timeout
        headers = dict(request.headers)
        headers.update(resolve_auth(request.auth).request_headers())

        try:
            async with asyncio.timeout(request.timeout):
                ws = await self.client.session.ws_connect(
                    request.url,
                    headers=headers,
                    proxy=proxy.as_url() if proxy else None,
                )
        except aiohttp.WSServerHandshakeError as e:
            raise FetchError(
                ErrorKind.HTTP,
                request.url,
                f"handshake rejected: {e.message}",
                status_code=e.status,
                attempted_methods=[self.method.value],
            ) from e
        except asyncio.TimeoutError as e:
            raise FetchError(
                ErrorKind.TIMEOUT,
                request.url,
                f"connect timed out after {request.timeout}s",
                attempted_methods=[self.method.value],
            ) from e
        except aiohttp.ClientError as e:
            raise FetchError(
                ErrorKind.NETWORK, request.url, str(e) or type(e).__name__, attempted_methods=[self.method.value]
            ) from e

        logger.debug("Stream opened", url=request.url)
        return StreamChannel(request.url, ws, deadline)

    async def fetch(self, request: FetchRequest, proxy: Optional[ProxyDescriptor] = None) -> FetchResult:
        start = time.perf_counter()
        messages: List[str] = []
        async with await self.open(request, proxy) as channel:
            async for message in channel:
                messages.append(message)
                if self.max_messages is not None and len(messages) >= self.max_messages:
                    break

        logger.debug("Stream drained", url=request.url, messages=len(messages))
        content = "\n".join(messages)
        return FetchResult(
            url=request.url,
            method=self.method,
            status_code=101,
            content_type="text/plain",
            content=content,
            text=content,
            markdown=content,
            performance=PerformanceRecord(
                load_time_ms=(time.perf_counter() - start) * 1000,
                method=self.method,
                proxy=proxy.url if proxy else None,
            ),
        )

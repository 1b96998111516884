"""Tests for WebSocket acquisition against a local aiohttp server."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from prospect.config import FetcherConfig
from prospect.errors import ErrorKind, FetchError
from prospect.fetcher import HttpClient, StreamFetcher
from prospect.protocols import AuthDescriptor, FetchMethod, FetchRequest


async def ticker(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    for i in range(3):
        await ws.send_str(f"tick {i}")
    await ws.send_bytes(b"binary frame")
    await ws.close()
    return ws


async def firehose(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    for i in range(10):
        await ws.send_str(f"event {i}")
    async for _ in ws:
        pass
    return ws


async def trickle(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.send_str("hello")
    # Hold the socket open until the client hangs up
    async for _ in ws:
        pass
    return ws


async def echo_auth(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.send_str(request.headers.get("Authorization", "anonymous"))
    await ws.close()
    return ws


async def denied(request: web.Request) -> web.Response:
    return web.Response(status=403, text="forbidden")


@pytest_asyncio.fixture
async def ws_server():
    app = web.Application()
    app.router.add_get("/ticker", ticker)
    app.router.add_get("/firehose", firehose)
    app.router.add_get("/trickle", trickle)
    app.router.add_get("/auth", echo_auth)
    app.router.add_get("/denied", denied)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


def ws_url(server: test_utils.TestServer, path: str) -> str:
    return f"ws://{server.host}:{server.port}{path}"


@pytest.mark.unit
class TestStreamFetcher:
    @pytest.mark.asyncio
    async def test_drains_until_server_close(self, http_client, ws_server):
        fetcher = StreamFetcher(http_client)
        result = await fetcher.fetch(FetchRequest(url=ws_url(ws_server, "/ticker"), timeout=5))

        assert result.method is FetchMethod.STREAM
        assert result.status_code == 101
        assert result.content == "tick 0\ntick 1\ntick 2\nbinary frame"
        assert result.text == result.content
        assert result.performance.method is FetchMethod.STREAM

    @pytest.mark.asyncio
    async def test_max_messages_bounds_collection(self, http_client, ws_server):
        fetcher = StreamFetcher(http_client, max_messages=2)
        result = await fetcher.fetch(FetchRequest(url=ws_url(ws_server, "/firehose"), timeout=5))
        assert result.content == "event 0\nevent 1"

    @pytest.mark.asyncio
    async def test_deadline_ends_iteration(self, http_client, ws_server):
        fetcher = StreamFetcher(http_client)
        result = await fetcher.fetch(FetchRequest(url=ws_url(ws_server, "/trickle"), timeout=0.3))
        assert result.content == "hello"

    @pytest.mark.asyncio
    async def test_auth_headers_sent_on_handshake(self, http_client, ws_server):
        fetcher = StreamFetcher(http_client)
        request = FetchRequest(url=ws_url(ws_server, "/auth"), auth=AuthDescriptor.create("bearer", {"token": "t"}))
        result = await fetcher.fetch(request)
        assert result.content == "Bearer t"

    @pytest.mark.asyncio
    async def test_channel_iteration_and_close(self, http_client, ws_server):
        fetcher = StreamFetcher(http_client)
        channel = await fetcher.open(FetchRequest(url=ws_url(ws_server, "/firehose"), timeout=5))
        received = []
        async for message in channel:
            received.append(message)
            if len(received) == 3:
                await channel.close()

        assert received == ["event 0", "event 1", "event 2"]
        assert channel.closed
        assert channel.messages_received == 3
        await channel.close()

    @pytest.mark.asyncio
    async def test_rejected_handshake_is_http_kind(self, http_client, ws_server):
        fetcher = StreamFetcher(http_client)
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(FetchRequest(url=ws_url(ws_server, "/denied")))
        assert exc_info.value.kind is ErrorKind.HTTP
        assert exc_info.value.status_code == 403
        assert exc_info.value.attempted_methods == ["stream"]

    @pytest.mark.asyncio
    async def test_refused_connection_is_network_kind(self, http_client):
        fetcher = StreamFetcher(http_client)
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(FetchRequest(url="ws://127.0.0.1:1/feed", timeout=2))
        assert exc_info.value.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT)

    @pytest.mark.asyncio
    async def test_requires_initialized_client(self):
        fetcher = StreamFetcher(HttpClient(FetcherConfig()))
        with pytest.raises(RuntimeError):
            await asyncio.wait_for(fetcher.open(FetchRequest(url="ws://127.0.0.1:1/feed")), 1)

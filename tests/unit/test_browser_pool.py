"""
Tests for the browser pool lifecycle and the rendered fetcher, driven by the
in-memory Playwright stand-in.
"""

import asyncio
from pathlib import Path

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from prospect.config import BrowserConfig
from prospect.errors import ErrorKind, FetchError, RenderError
from prospect.fetcher import BrowserPool, RenderedFetcher
from prospect.fetcher.rendered_fetcher import screenshot_name
from prospect.protocols import AuthDescriptor, FetchMethod, FetchRequest, ProxyDescriptor

from tests.helpers import FakeBrowserEnvironment, FakeRoute, crash_error, net_error

URL = "https://example.test/app"

APP_HTML = """
<html lang="en"><head><title>Inbox</title></head>
<body>
  <div id="app">
    <h1>Inbox</h1>
    <p>Three unread messages</p>
    <a href="/messages/1">first</a>
    <a href="https://example.test/messages/2#top">second</a>
    <a href="mailto:help@example.test">help</a>
    <img src="/avatar.png">
  </div>
</body></html>
"""


def make_pool(env: FakeBrowserEnvironment, **overrides) -> BrowserPool:
    config = BrowserConfig(**{"pool_size": 2, "recycle_after": 100, **overrides})
    return BrowserPool(config, "ProspectTest/1.0", playwright_factory=env.start)


@pytest.mark.unit
class TestBrowserPool:
    @pytest.mark.asyncio
    async def test_starts_lazily_and_closes_on_last_release(self):
        env = FakeBrowserEnvironment()
        pool = make_pool(env)
        pool.acquire()
        pool.acquire()
        assert env.started == 0
        assert not pool.started

        async with pool.page(URL) as page:
            await page.goto(URL)
        assert env.started == 1
        assert env.launch_kwargs[0]["headless"] is True

        await pool.release()
        assert env.stopped == 0
        await pool.release()
        assert env.stopped == 1
        assert env.browsers_closed == 1

    @pytest.mark.asyncio
    async def test_context_closed_when_page_user_raises(self):
        env = FakeBrowserEnvironment()
        async with make_pool(env) as pool:
            with pytest.raises(RuntimeError):
                async with pool.page(URL):
                    raise RuntimeError("caller failed")
            assert env.active_contexts == 0
            assert env.contexts_closed == 1
            assert pool.get_stats()["active_pages"] == 0

    @pytest.mark.asyncio
    async def test_open_contexts_bounded_by_pool_size(self):
        env = FakeBrowserEnvironment()
        async with make_pool(env, pool_size=2) as pool:

            async def borrow():
                async with pool.page(URL):
                    await asyncio.sleep(0.01)

            await asyncio.gather(*(borrow() for _ in range(6)))

        assert env.max_active_contexts == 2
        assert env.contexts_closed == 6

    @pytest.mark.asyncio
    async def test_recycles_after_page_budget(self):
        env = FakeBrowserEnvironment()
        async with make_pool(env, recycle_after=2) as pool:
            for _ in range(3):
                async with pool.page(URL):
                    pass
            assert pool.get_stats()["launches"] == 2
        assert env.browsers[0].closed

    @pytest.mark.asyncio
    async def test_relaunches_disconnected_browser(self):
        env = FakeBrowserEnvironment()
        async with make_pool(env) as pool:
            async with pool.page(URL):
                pass
            env.browsers[0].connected = False
            async with pool.page(URL):
                pass
        assert len(env.browsers) == 2

    @pytest.mark.asyncio
    async def test_remote_endpoint_uses_connect(self):
        env = FakeBrowserEnvironment()
        async with make_pool(env, ws_endpoint="ws://browserless.test:3000") as pool:
            async with pool.page(URL):
                pass
        assert env.browsers[0].endpoint == "ws://browserless.test:3000"
        assert env.launch_kwargs == []

    @pytest.mark.asyncio
    async def test_context_options_carry_headers_auth_and_proxy(self):
        env = FakeBrowserEnvironment()
        auth = AuthDescriptor.create("basic", {"username": "u", "password": "p"})
        proxy = ProxyDescriptor("http://proxy.test:3128", "pu", "pp")
        async with make_pool(env) as pool:
            async with pool.page(URL, headers={"X-Trace": "1"}, proxy=proxy, auth=auth):
                pass

        options = env.contexts[0].options
        assert options["user_agent"] == "ProspectTest/1.0"
        assert options["extra_http_headers"] == {"X-Trace": "1"}
        assert options["http_credentials"] == {"username": "u", "password": "p"}
        assert options["proxy"] == {"server": "http://proxy.test:3128", "username": "pu", "password": "pp"}

    @pytest.mark.asyncio
    async def test_cookie_auth_installs_cookies_for_url(self):
        env = FakeBrowserEnvironment()
        auth = AuthDescriptor.create("cookies", {"session": "abc"})
        async with make_pool(env) as pool:
            async with pool.page(URL, auth=auth):
                pass
        assert env.contexts[0].cookies == [{"name": "session", "value": "abc", "url": URL}]


@pytest.mark.unit
class TestRenderedFetcher:
    @pytest.mark.asyncio
    async def test_renders_dom(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(html=APP_HTML)
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        result = await fetcher.fetch(FetchRequest(url=URL, timeout=5))

        assert result.method is FetchMethod.RENDERED
        assert result.status_code == 200
        assert result.content_type.startswith("text/html")
        assert result.metadata.title == "Inbox"
        assert "Three unread messages" in result.text
        assert result.links == ["https://example.test/messages/1", "https://example.test/messages/2"]
        assert result.images == ["https://example.test/avatar.png"]
        assert "# Inbox" in result.markdown
        assert result.performance.method is FetchMethod.RENDERED
        assert fake_browser.goto_calls[0]["timeout"] == 5000
        assert fake_browser.goto_calls[0]["wait_until"] == test_config.browser.wait_until
        assert fake_browser.active_contexts == 0

    @pytest.mark.asyncio
    async def test_navigation_timeout_is_timeout_kind(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(goto_error=PlaywrightTimeoutError("Timeout 5000ms exceeded"))
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(FetchRequest(url=URL, timeout=5))
        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert exc_info.value.attempted_methods == ["rendered"]
        assert fake_browser.active_contexts == 0

    @pytest.mark.asyncio
    async def test_browser_network_error_is_network_kind(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(goto_error=net_error())
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(FetchRequest(url=URL))
        assert exc_info.value.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_crash_is_render_crash(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(content_error=crash_error())
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        with pytest.raises(RenderError) as exc_info:
            await fetcher.fetch(FetchRequest(url=URL))
        assert exc_info.value.reason == RenderError.RENDER_CRASH
        assert fake_browser.active_contexts == 0

    @pytest.mark.asyncio
    async def test_error_status_is_http_kind(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(status=404)
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(FetchRequest(url=URL))
        assert exc_info.value.kind is ErrorKind.HTTP
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_selector_is_render_timeout(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(html=APP_HTML)
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        with pytest.raises(RenderError) as exc_info:
            await fetcher.fetch(FetchRequest(url=URL, wait_for_selector="#never"))
        assert exc_info.value.reason == RenderError.RENDER_TIMEOUT

        result = await fetcher.fetch(FetchRequest(url=URL, wait_for_selector="#app"))
        assert result.status_code == 200

    @pytest.mark.asyncio
    async def test_screenshot_written(self, test_config, browser_pool, fake_browser):
        fake_browser.routes[URL] = FakeRoute(html=APP_HTML)
        fetcher = RenderedFetcher(browser_pool, test_config.browser)

        result = await fetcher.fetch(FetchRequest(url=URL, screenshot=True))

        assert result.screenshot_path is not None
        path = Path(result.screenshot_path)
        assert path.exists()
        assert path.parent == Path(test_config.browser.screenshot_dir)
        assert path.suffix == ".png"

    def test_screenshot_name_is_stable_per_url(self):
        first, second = screenshot_name(URL), screenshot_name(URL)
        assert first.split("-")[0] == second.split("-")[0]
        assert screenshot_name("https://example.test/other").split("-")[0] != first.split("-")[0]

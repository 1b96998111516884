"""
Reference-counted headless browser pool.

The pool owns one Playwright driver and one browser. It starts lazily on the
first page acquisition, bounds the number of concurrently open contexts,
recycles the browser after a configurable number of pages and relaunches it
when it disconnects. Every page lives in its own browser context, which is
closed on every exit path of :meth:`BrowserPool.page`.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional

import structlog
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from prospect.config import BrowserConfig
from prospect.observability.metrics import METRICS
from prospect.protocols import AuthDescriptor, ProxyDescriptor

from .auth import resolve_auth

logger = structlog.get_logger(__name__)

PlaywrightFactory = Callable[[], Awaitable[Playwright]]


async def _start_playwright() -> Playwright:
    return await async_playwright().start()


class BrowserPool:
    """Scoped access to isolated browser pages.

    Owners call :meth:`acquire` once and :meth:`release` once; the browser is
    shut down when the last owner releases it. Pages are borrowed with
    ``async with pool.page(...) as page``.
    """

    def __init__(
        self,
        config: BrowserConfig,
        user_agent: Optional[str] = None,
        *,
        playwright_factory: PlaywrightFactory = _start_playwright,
    ):
        self.config = config
        self.user_agent = user_agent
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(config.pool_size)
        self._refs = 0
        self._active = 0
        self._pages_since_launch = 0
        self._pages_total = 0
        self._launches = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def acquire(self) -> None:
        self._refs += 1

    async def release(self) -> None:
        if self._refs == 0:
            return
        self._refs -= 1
        if self._refs == 0:
            await self.close()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Browser disconnected, relaunching")
                self._browser = None

            if self._browser is None:
                if self._playwright is None:
                    self._playwright = await self._playwright_factory()
                browser_type = getattr(self._playwright, self.config.browser_type)
                if self.config.ws_endpoint:
                    self._browser = await browser_type.connect(self.config.ws_endpoint)
                    logger.info("Connected to remote browser", endpoint=self.config.ws_endpoint)
                else:
                    self._browser = await browser_type.launch(
                        headless=self.config.headless, args=list(self.config.launch_args)
                    )
                    logger.info("Browser launched", browser_type=self.config.browser_type)
                self._pages_since_launch = 0
                self._launches += 1
            return self._browser

    async def _close_browser(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning("Error closing browser", error=str(e))

    async def _maybe_recycle(self) -> None:
        if self._active == 0 and self._pages_since_launch >= self.config.recycle_after:
            async with self._launch_lock:
                if self._active == 0 and self._browser is not None:
                    logger.info("Recycling browser", pages=self._pages_since_launch)
                    await self._close_browser()

    async def close(self) -> None:
        async with self._launch_lock:
            await self._close_browser()
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("Browser pool closed", pages_total=self._pages_total)

    async def __aenter__(self) -> "BrowserPool":
        self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def _context_options(
        self,
        headers: Optional[Mapping[str, str]],
        proxy: Optional[ProxyDescriptor],
        auth: Optional[AuthDescriptor],
    ) -> Dict[str, Any]:
        material = resolve_auth(auth)
        extra_headers = dict(headers or {})
        extra_headers.update(material.headers)

        options: Dict[str, Any] = {
            "viewport": {"width": self.config.viewport_width, "height": self.config.viewport_height},
        }
        if self.user_agent:
            options["user_agent"] = self.user_agent
        if extra_headers:
            options["extra_http_headers"] = extra_headers
        if material.basic is not None:
            options["http_credentials"] = {"username": material.basic[0], "password": material.basic[1]}
        if proxy is not None:
            proxy_options = {"server": proxy.url}
            if proxy.username:
                proxy_options["username"] = proxy.username
            if proxy.password:
                proxy_options["password"] = proxy.password
            options["proxy"] = proxy_options
        return options

    @asynccontextmanager
    async def page(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        proxy: Optional[ProxyDescriptor] = None,
        auth: Optional[AuthDescriptor] = None,
    ) -> AsyncIterator[Page]:
        """Borrow a fresh page in an isolated context configured for ``url``."""
        async with self._slots:
            browser = await self._ensure_browser()
            self._active += 1
            context = None
            try:
                context = await browser.new_context(**self._context_options(headers, proxy, auth))
                cookies = resolve_auth(auth).cookies
                if cookies:
                    cookie_list: List[Dict[str, str]] = [
                        {"name": name, "value": value, "url": url} for name, value in cookies.items()
                    ]
                    await context.add_cookies(cookie_list)
                page = await context.new_page()
                self._pages_since_launch += 1
                self._pages_total += 1
                METRICS["browser_pages_total"].inc()
                yield page
            finally:
                if context is not None:
                    try:
                        await context.close()
                    except PlaywrightError as e:
                        logger.warning("Error closing browser context", url=url, error=str(e))
                self._active -= 1
                await self._maybe_recycle()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "started": self.started,
            "refs": self._refs,
            "active_pages": self._active,
            "pages_total": self._pages_total,
            "pages_since_launch": self._pages_since_launch,
            "launches": self._launches,
            "pool_size": self.config.pool_size,
        }

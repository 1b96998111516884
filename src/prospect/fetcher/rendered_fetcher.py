"""
Rendered acquisition through a headless browser page.
"""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import List, Optional

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from prospect.config import BrowserConfig
from prospect.errors import ErrorKind, FetchError, RenderError
from prospect.protocols import FetchMethod, FetchRequest, FetchResult, PerformanceRecord, ProxyDescriptor
from prospect.utils.urls import resolve_link

from .browser_pool import BrowserPool
from .normalizer import collapse_whitespace, dedupe, normalize_html

logger = structlog.get_logger(__name__)


_BODY_TEXT_JS = "() => document.body ? document.body.innerText : ''"
_HREFS_JS = "els => els.map(e => e.href)"
_SRCS_JS = "els => els.map(e => e.src)"


def screenshot_name(url: str) -> str:
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]
    return f"{digest}-{int(time.time() * 1000)}.png"


class RenderedFetcher:
    method = FetchMethod.RENDERED

    def __init__(self, pool: BrowserPool, config: BrowserConfig):
        self.pool = pool
        self.config = config

    def _classify(self, request: FetchRequest, error: PlaywrightError) -> FetchError:
        message = str(error)
        if "net::" in message:
            return FetchError(ErrorKind.NETWORK, request.url, message, attempted_methods=[self.method.value])
        # Closed targets, crashed pages and lost browser connections
        return RenderError(request.url, RenderError.RENDER_CRASH, message, attempted_methods=[self.method.value])

    async def fetch(self, request: FetchRequest, proxy: Optional[ProxyDescriptor] = None) -> FetchResult:
        """Render ``request.url`` and read the post-script DOM.

        Raises:
            FetchError: ``timeout`` when navigation misses its deadline,
                ``network`` for browser network errors, ``http`` for a
                non-2xx main document.
            RenderError: ``render-timeout`` when ``wait_for_selector`` never
                matches, ``render-crash`` when the page or browser dies.
        """
        start = time.perf_counter()
        timeout_ms = request.timeout * 1000
        try:
            async with self.pool.page(
                request.url, headers=request.headers, proxy=proxy, auth=request.auth
            ) as page:
                result = await self._render(page, request, timeout_ms)
        except FetchError:
            raise
        except PlaywrightError as e:
            raise self._classify(request, e) from e

        return result.with_performance(
            load_time_ms=(time.perf_counter() - start) * 1000,
            method=self.method,
            proxy=proxy.url if proxy else None,
        )

    async def _render(self, page: Page, request: FetchRequest, timeout_ms: float) -> FetchResult:
        try:
            response = await page.goto(request.url, wait_until=self.config.wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise FetchError(
                ErrorKind.TIMEOUT,
                request.url,
                f"navigation timed out after {request.timeout}s",
                attempted_methods=[self.method.value],
            ) from e

        status = response.status if response is not None else 200
        if not 200 <= status < 300:
            raise FetchError(
                ErrorKind.HTTP,
                request.url,
                f"HTTP {status}",
                status_code=status,
                attempted_methods=[self.method.value],
            )

        if request.wait_for_selector:
            try:
                await page.wait_for_selector(request.wait_for_selector, timeout=timeout_ms)
            except PlaywrightTimeoutError as e:
                raise RenderError(
                    request.url,
                    RenderError.RENDER_TIMEOUT,
                    f"selector {request.wait_for_selector!r} not present after {request.timeout}s",
                    attempted_methods=[self.method.value],
                ) from e

        html = await page.content()
        final_url = page.url or request.url
        body_text = await page.evaluate(_BODY_TEXT_JS)
        hrefs: List[str] = await page.eval_on_selector_all("a[href]", _HREFS_JS)
        srcs: List[str] = await page.eval_on_selector_all("img[src]", _SRCS_JS)

        screenshot_path = None
        if request.screenshot:
            screenshot_path = await self._screenshot(page, request.url)

        normalized = normalize_html(html, final_url)
        content_type = "text/html"
        if response is not None:
            content_type = response.headers.get("content-type", content_type)

        return FetchResult(
            url=request.url,
            final_url=final_url,
            method=self.method,
            status_code=status,
            content_type=content_type,
            content=html,
            text=collapse_whitespace(body_text or "") or normalized.text,
            markdown=normalized.markdown,
            links=dedupe(resolve_link(href, final_url) for href in hrefs),
            images=dedupe(resolve_link(src, final_url) for src in srcs),
            metadata=normalized.metadata,
            screenshot_path=screenshot_path,
            performance=PerformanceRecord(method=self.method),
        )

    async def _screenshot(self, page: Page, url: str) -> str:
        directory = Path(self.config.screenshot_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / screenshot_name(url)
        await page.screenshot(path=str(path), full_page=True)
        logger.debug("Screenshot saved", url=url, path=str(path))
        return str(path)

"""
The acquisition pipeline: one entry point wiring every component together.

A request flows through validation, the result cache, single-flight
de-duplication, scheduler admission, strategy selection and the fallback
policy. Per-request finalisation (extraction rules, link and image flags)
always runs against the raw cached content, so two requests for the same
URL with different rules share one network operation but get their own
fields.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from prospect.cache import ResultCache, SingleFlight
from prospect.config import Config
from prospect.errors import FetchError
from prospect.extractor import ExtractionEngine
from prospect.fetcher import (
    BrowserPool,
    FallbackPolicy,
    Fetcher,
    HttpClient,
    RenderedFetcher,
    StaticFetcher,
    StrategySelector,
    StreamFetcher,
)
from prospect.protocols import CrawlConfig, FetchMethod, FetchRequest, FetchResult, ProxyDescriptor, ResultSink
from prospect.scheduler import Scheduler
from prospect.utils.urls import canonicalize_url

if TYPE_CHECKING:
    from prospect.crawler import Crawler

logger = structlog.get_logger(__name__)


class Pipeline:
    """Adaptive content acquisition.

    Use as an async context manager::

        async with Pipeline(config) as pipeline:
            result = await pipeline.fetch(FetchRequest(url="https://example.com/"))

    Components can be injected for testing; anything not injected is built
    from ``config``.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        sink: Optional[ResultSink] = None,
        http_client: Optional[HttpClient] = None,
        browser_pool: Optional[BrowserPool] = None,
        scheduler: Optional[Scheduler] = None,
        cache: Optional[ResultCache] = None,
        fetchers: Optional[Mapping[FetchMethod, Fetcher]] = None,
        selector: Optional[StrategySelector] = None,
    ):
        self.config = config or Config()
        self.sink = sink
        self.http_client = http_client if http_client is not None else HttpClient(self.config.fetcher)
        self.browser_pool = (
            browser_pool if browser_pool is not None else BrowserPool(self.config.browser, self.config.fetcher.user_agent)
        )
        self.scheduler = scheduler if scheduler is not None else Scheduler.from_config(self.config)
        self.cache = cache if cache is not None else ResultCache(self.config.cache.ttl_seconds)
        self.cache_enabled = self.config.cache.enabled
        self.selector = selector if selector is not None else StrategySelector(self.http_client)
        self.fetchers: Dict[FetchMethod, Fetcher] = dict(
            fetchers
            or {
                FetchMethod.STATIC: StaticFetcher(self.http_client),
                FetchMethod.RENDERED: RenderedFetcher(self.browser_pool, self.config.browser),
                FetchMethod.STREAM: StreamFetcher(self.http_client),
            }
        )
        self.fallback = FallbackPolicy(self.fetchers, self.config.fetcher)
        self.extractor = ExtractionEngine()
        self._flights: SingleFlight[FetchResult] = SingleFlight()
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        await self.http_client.initialize()
        self.browser_pool.acquire()
        self.scheduler.start()
        self._started = True
        logger.info(
            "Pipeline started",
            max_concurrency=self.scheduler.max_concurrency,
            cache_enabled=self.cache_enabled,
        )

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.scheduler.close()
        await self.browser_pool.release()
        await self.http_client.close()
        logger.info("Pipeline closed")

    async def __aenter__(self) -> "Pipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def fetch(self, request: FetchRequest) -> FetchResult:
        """Acquire one request.

        Raises:
            InvalidRequestError: before any network activity, for a malformed request.
            FetchError: when every acquisition round failed.
        """
        request.validate()
        if not self._started:
            await self.start()

        log = logger.bind(url=request.url, request_id=request.request_id)
        key = canonicalize_url(request.url)

        if self.cache_enabled:
            cached = self.cache.get(key)
            if cached is not None:
                log.debug("Cache hit")
                return self._finalize(cached, request, from_cache=True)

        joined = self._flights.in_flight(key)
        raw = await self._flights.do(key, lambda: self._acquire(request, key))
        result = self._finalize(raw, request, from_cache=False)
        if not joined:
            await self._hand_off(result)
        log.info(
            "Fetched",
            method=result.method.value,
            status=result.status_code,
            attempts=result.performance.attempts,
            joined=joined,
        )
        return result

    async def _acquire(self, request: FetchRequest, key: str) -> FetchResult:
        async def operation(rotated: Optional[ProxyDescriptor]) -> FetchResult:
            # Runs on a scheduler worker, so the id is bound there
            with structlog.contextvars.bound_contextvars(request_id=request.request_id):
                proxy = request.proxy or rotated
                method = await self.selector.select(
                    request.url, request.method, request.headers, proxy=proxy, auth=request.auth
                )
                return await self.fallback.execute(request, method, proxy)

        raw: FetchResult = await self.scheduler.submit(operation, request.url, self.config.scheduler.task_timeout)
        raw = replace(raw, fields={}, warnings=list(raw.warnings))
        if self.cache_enabled:
            self.cache.put(key, raw)
        return raw

    def _finalize(self, raw: FetchResult, request: FetchRequest, *, from_cache: bool) -> FetchResult:
        outcome = self.extractor.extract(raw.content, request.rules)
        result = replace(
            raw,
            url=request.url,
            links=list(raw.links) if request.extract_links else [],
            images=list(raw.images) if request.extract_images else [],
            fields=outcome.fields,
            warnings=list(raw.warnings) + outcome.warning_messages,
        )
        if from_cache:
            result = result.with_performance(from_cache=True)
        return result

    async def _hand_off(self, result: FetchResult) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.store(result)
        except Exception as e:
            logger.error("Result sink failed", url=result.url, error=str(e), exc_info=True)

    async def fetch_many(self, requests: Sequence[FetchRequest]) -> List[Union[FetchResult, FetchError]]:
        """Acquire many requests concurrently; outcomes keep submission order."""
        outcomes = await asyncio.gather(*(self.fetch(request) for request in requests), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, FetchError):
                raise outcome
        return list(outcomes)  # type: ignore[arg-type]

    def crawler(self, config: CrawlConfig) -> "Crawler":
        from prospect.crawler import Crawler

        return Crawler(self, config)

    async def crawl(self, config: CrawlConfig) -> List[FetchResult]:
        """Breadth-first crawl from ``config.seed_url``."""
        return await self.crawler(config).run()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "in_flight": len(self._flights),
            "scheduler": self.scheduler.get_stats(),
            "browser_pool": self.browser_pool.get_stats(),
            "http_client": self.http_client.get_stats(),
        }

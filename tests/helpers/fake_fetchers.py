"""
Scripted fetchers and sinks for pipeline-level tests.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from prospect.errors import ErrorKind, FetchError
from prospect.fetcher import normalize_html
from prospect.protocols import FetchMethod, FetchRequest, FetchResult, PerformanceRecord, ProxyDescriptor

DEFAULT_PAGE = "<html><head><title>Default</title></head><body><p>default page</p></body></html>"


class RecordingFetcher:
    """Serves HTML from a URL table and records every call.

    URLs listed in ``fail`` raise a retryable ``network`` error. When ``gate``
    is set, every fetch waits for it first.
    """

    def __init__(
        self,
        method: FetchMethod,
        pages: Optional[Dict[str, str]] = None,
        fail: Iterable[str] = (),
        gate: Optional[asyncio.Event] = None,
    ):
        self.method = method
        self.pages = dict(pages or {})
        self.fail = set(fail)
        self.gate = gate
        self.calls: List[Tuple[str, Optional[ProxyDescriptor]]] = []

    @property
    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]

    async def fetch(self, request: FetchRequest, proxy: Optional[ProxyDescriptor] = None) -> FetchResult:
        self.calls.append((request.url, proxy))
        if self.gate is not None:
            await self.gate.wait()
        if request.url in self.fail:
            raise FetchError(ErrorKind.NETWORK, request.url, "connection refused", attempted_methods=[self.method.value])

        html = self.pages.get(request.url, DEFAULT_PAGE)
        page = normalize_html(html, request.url)
        return FetchResult(
            url=request.url,
            method=self.method,
            status_code=200,
            content_type="text/html",
            content=html,
            text=page.text,
            markdown=page.markdown,
            links=page.links,
            images=page.images,
            metadata=page.metadata,
            performance=PerformanceRecord(load_time_ms=1.0, method=self.method, proxy=proxy.url if proxy else None),
        )


class MemorySink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.results: List[FetchResult] = []

    async def store(self, result: FetchResult) -> None:
        if self.fail:
            raise RuntimeError("storage offline")
        self.results.append(result)

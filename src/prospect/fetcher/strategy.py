"""
Strategy selection: decide per URL whether a static fetch suffices or a
rendered fetch is required.

Selection runs in three stages, stopping at the first that decides:

1. A caller-forced method is honoured as-is.
2. Cheap URL heuristics (scheme, extension, host and path shapes).
3. A network probe: HEAD, then a truncated GET whose markup is sniffed for
   client-side framework root markers.

When nothing decides, or the probe itself fails, the selector answers
``static``; the fallback policy still covers a wrong guess.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional
from urllib.parse import urlparse

import structlog
from selectolax.parser import HTMLParser

from prospect.errors import FetchError
from prospect.protocols import AuthDescriptor, FetchMethod, ProxyDescriptor

from .http_client import HttpClient, HttpResponse
from .normalizer import is_html

logger = structlog.get_logger(__name__)

STATIC_EXTENSIONS = (".html", ".htm", ".txt", ".md", ".pdf", ".xml", ".json", ".csv")
STATIC_HOST_PREFIXES = ("docs.", "documentation.", "blog.", "wiki.")
SPA_PATH_PREFIXES = ("/app", "/dashboard", "/portal", "/spa")
SPA_PATH_MARKERS = ("/_next/", "/_nuxt/")

# main.3f9a1c2b.js, app-4e5d6f7a8b.css, chunk.a1b2c3d4e5.js
_BUNDLE_HASH = re.compile(r"[.\-_][0-9a-f]{8,}\.(?:js|css|mjs)$", re.IGNORECASE)

FRAMEWORK_MARKERS = (
    "#root",
    "#app",
    "#__next",
    "#__nuxt",
    "[data-reactroot]",
    "[ng-app]",
    "[data-ng-app]",
    "[ng-version]",
    "[data-v-app]",
    "[data-server-rendered]",
)

REFUSED_HEAD_STATUSES = frozenset({403, 404, 405, 501})


def classify_url(url: str) -> Optional[FetchMethod]:
    """Heuristic classification from the URL alone; None when undecided."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in ("ws", "wss"):
        return FetchMethod.STREAM

    host = (parsed.hostname or "").lower()
    path = parsed.path or "/"
    lowered_path = path.lower()

    if parsed.fragment.startswith("!"):
        return FetchMethod.RENDERED
    if any(marker in lowered_path for marker in SPA_PATH_MARKERS) or _BUNDLE_HASH.search(lowered_path):
        return FetchMethod.RENDERED

    if lowered_path.endswith(STATIC_EXTENSIONS):
        return FetchMethod.STATIC
    if any(host.startswith(prefix) or f".{prefix}" in host for prefix in STATIC_HOST_PREFIXES):
        return FetchMethod.STATIC

    for prefix in SPA_PATH_PREFIXES:
        if lowered_path == prefix or lowered_path.startswith(prefix + "/"):
            return FetchMethod.RENDERED
    return None


def sniff_framework(html: str) -> Optional[str]:
    """Return the first client-side framework root marker present in ``html``."""
    parser = HTMLParser(html)
    for selector in FRAMEWORK_MARKERS:
        if parser.css_first(selector) is not None:
            return selector
    return None


class StrategySelector:
    """Chooses the fetch method for a URL."""

    def __init__(self, client: HttpClient):
        self.client = client

    async def select(
        self,
        url: str,
        preferred: FetchMethod = FetchMethod.AUTO,
        headers: Optional[Mapping[str, str]] = None,
        *,
        proxy: Optional[ProxyDescriptor] = None,
        auth: Optional[AuthDescriptor] = None,
    ) -> FetchMethod:
        """Choose the method for ``url``.

        Probe requests go out through ``proxy`` with ``auth`` applied, like the
        fetch that follows.
        """
        if preferred is not FetchMethod.AUTO:
            return preferred

        heuristic = classify_url(url)
        if heuristic is not None:
            logger.debug("Strategy chosen by heuristics", url=url, method=heuristic.value)
            return heuristic

        try:
            method = await self._probe(url, headers, proxy, auth)
        except FetchError as e:
            logger.debug("Strategy probe failed, defaulting to static", url=url, error=str(e))
            return FetchMethod.STATIC

        logger.debug("Strategy chosen by probe", url=url, method=method.value)
        return method

    async def _probe(
        self,
        url: str,
        headers: Optional[Mapping[str, str]],
        proxy: Optional[ProxyDescriptor],
        auth: Optional[AuthDescriptor],
    ) -> FetchMethod:
        proxy_url = proxy.as_url() if proxy else None
        head: Optional[HttpResponse] = None
        try:
            head = await self.client.head(
                url, headers=headers, proxy=proxy_url, auth=auth, timeout=self.client.config.probe_timeout
            )
        except FetchError as e:
            logger.debug("HEAD probe refused", url=url, error=str(e))

        if head is not None and head.status not in REFUSED_HEAD_STATUSES:
            if head.content_type and not is_html(head.content_type):
                return FetchMethod.STATIC

        response = await self.client.probe(url, headers=headers, proxy=proxy_url, auth=auth)
        if response.content_type and not is_html(response.content_type):
            return FetchMethod.STATIC

        marker = sniff_framework(response.text())
        if marker is not None:
            logger.debug("Framework marker found", url=url, marker=marker)
            return FetchMethod.RENDERED
        return FetchMethod.STATIC

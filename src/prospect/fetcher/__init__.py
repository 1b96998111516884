"""
Acquisition layer: strategy selection, the three fetchers, the browser pool
and the fallback policy.
"""

from .auth import AuthMaterial, resolve_auth
from .browser_pool import BrowserPool
from .fallback import FALLBACK_PARTNERS, FallbackPolicy, Fetcher
from .http_client import HttpClient, HttpResponse
from .normalizer import NormalizedPage, normalize_document, normalize_html, normalize_pdf
from .rendered_fetcher import RenderedFetcher
from .static_fetcher import StaticFetcher
from .strategy import StrategySelector, classify_url, sniff_framework
from .stream_fetcher import StreamChannel, StreamFetcher

__all__ = [
    "FALLBACK_PARTNERS",
    "AuthMaterial",
    "BrowserPool",
    "FallbackPolicy",
    "Fetcher",
    "HttpClient",
    "HttpResponse",
    "NormalizedPage",
    "RenderedFetcher",
    "StaticFetcher",
    "StrategySelector",
    "StreamChannel",
    "StreamFetcher",
    "classify_url",
    "normalize_document",
    "normalize_html",
    "normalize_pdf",
    "resolve_auth",
    "sniff_framework",
]

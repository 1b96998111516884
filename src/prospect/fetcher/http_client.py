"""
Shared aiohttp client used by the static fetcher and the strategy probe.

The client owns a single :class:`aiohttp.ClientSession` for its lifetime and
maps every transport failure onto the :class:`FetchError` taxonomy. It does
not retry; retries and fallback belong to the fallback policy.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import aiohttp
import structlog

from prospect.config import FetcherConfig
from prospect.errors import ErrorKind, FetchError
from prospect.protocols import AuthDescriptor

from .auth import resolve_auth

logger = structlog.get_logger(__name__)


@dataclass
class HttpResponse:
    """A fully read (or truncated) HTTP response."""

    url: str
    final_url: str
    status: int
    headers: Dict[str, str]
    body: bytes
    charset: Optional[str]
    elapsed_ms: float
    truncated: bool = False

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", self.headers.get("content-type", ""))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode(self.charset or "utf-8", errors="replace")

    def retry_after(self) -> Optional[float]:
        """Seconds from a numeric ``Retry-After`` header, if present."""
        value = self.headers.get("Retry-After") or self.headers.get("retry-after")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None


class HttpClient:
    """HTTP client with connection pooling and typed error mapping."""

    def __init__(self, config: FetcherConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self._in_flight_requests = 0
        self._requests_total = 0

    @property
    def is_initialized(self) -> bool:
        return self.session is not None and not self.session.closed

    async def initialize(self) -> None:
        if self.session is None or self.session.closed:
            connector = aiohttp.TCPConnector(
                limit=0,
                ttl_dns_cache=30,
                use_dns_cache=True,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
                ssl=None if self.config.verify_ssl else False,
            )
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                headers={"User-Agent": self.config.user_agent},
            )
            logger.info("HTTP client session initialized", user_agent=self.config.user_agent)

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
            logger.info("HTTP client closed")

    async def __aenter__(self) -> "HttpClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _build_headers(self, headers: Optional[Mapping[str, str]], auth: Optional[AuthDescriptor]) -> Dict[str, str]:
        merged = dict(self.config.default_headers)
        merged.update(headers or {})
        merged.update(resolve_auth(auth).request_headers())
        return merged

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        proxy: Optional[str] = None,
        auth: Optional[AuthDescriptor] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ) -> HttpResponse:
        """Issue one request and read its body.

        Args:
            method: HTTP verb.
            url: Absolute URL.
            headers: Per-request headers layered over the configured defaults.
            proxy: Proxy URL, credentials embedded.
            auth: Authentication descriptor for this request.
            timeout: Total deadline in seconds; the configured timeout when None.
            max_bytes: Read at most this many body bytes.

        Raises:
            FetchError: ``timeout`` when the deadline passes, ``http`` when
                the redirect budget is exceeded, ``network`` for any other
                transport failure. HTTP status codes are not errors here.
        """
        if not self.is_initialized:
            raise RuntimeError("HTTP client not initialized. Call initialize() first.")
        assert self.session is not None

        deadline = timeout if timeout is not None else self.config.timeout
        kwargs: Dict[str, Any] = {
            "headers": self._build_headers(headers, auth),
            "timeout": aiohttp.ClientTimeout(total=deadline),
            "allow_redirects": self.config.max_redirects > 0,
            "max_redirects": max(self.config.max_redirects, 1),
        }
        if proxy:
            kwargs["proxy"] = proxy

        start = time.perf_counter()
        self._in_flight_requests += 1
        self._requests_total += 1
        try:
            async with self.session.request(method, url, **kwargs) as response:
                if max_bytes is not None:
                    body = await response.content.read(max_bytes)
                    truncated = not response.content.at_eof()
                else:
                    body = await response.read()
                    truncated = False
                return HttpResponse(
                    url=url,
                    final_url=str(response.url),
                    status=response.status,
                    headers=dict(response.headers),
                    body=body,
                    charset=response.charset,
                    elapsed_ms=(time.perf_counter() - start) * 1000,
                    truncated=truncated,
                )
        except aiohttp.TooManyRedirects as e:
            raise FetchError(
                ErrorKind.HTTP, url, f"redirect budget of {self.config.max_redirects} exceeded", status_code=e.status
            ) from e
        except asyncio.TimeoutError as e:
            raise FetchError(ErrorKind.TIMEOUT, url, f"request timed out after {deadline}s") from e
        except aiohttp.ClientError as e:
            raise FetchError(ErrorKind.NETWORK, url, str(e) or type(e).__name__) from e
        finally:
            self._in_flight_requests -= 1

    async def get(self, url: str, **kwargs: Any) -> HttpResponse:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> HttpResponse:
        return await self.request("HEAD", url, **kwargs)

    async def probe(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
        proxy: Optional[str] = None,
        auth: Optional[AuthDescriptor] = None,
    ) -> HttpResponse:
        """Truncated GET reading at most ``probe_bytes`` of the body."""
        return await self.get(
            url,
            headers=headers,
            proxy=proxy,
            auth=auth,
            timeout=timeout or self.config.probe_timeout,
            max_bytes=self.config.probe_bytes,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "in_flight_requests": self._in_flight_requests,
            "requests_total": self._requests_total,
            "initialized": self.is_initialized,
        }

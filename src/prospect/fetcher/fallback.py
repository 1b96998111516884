"""
Fallback policy: retry with the alternate method, then whole rounds.

One *round* tries the chosen method and, when it fails with a retryable
error, the alternate of static/rendered once. A request with ``retries = n``
gets ``1 + n`` rounds separated by exponential backoff. The terminal error
reports the last failure kind together with every attempted method, the
attempt count and the per-attempt history.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import structlog

from prospect.config import FetcherConfig
from prospect.errors import FetchError, RenderError
from prospect.observability.metrics import METRICS
from prospect.protocols import FetchMethod, FetchRequest, FetchResult, ProxyDescriptor

logger = structlog.get_logger(__name__)

FALLBACK_PARTNERS = {
    FetchMethod.STATIC: FetchMethod.RENDERED,
    FetchMethod.RENDERED: FetchMethod.STATIC,
}


class Fetcher(Protocol):
    method: FetchMethod

    async def fetch(self, request: FetchRequest, proxy: Optional[ProxyDescriptor] = None) -> FetchResult:
        ...


class FallbackPolicy:
    def __init__(
        self,
        fetchers: Dict[FetchMethod, Fetcher],
        config: FetcherConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetchers = fetchers
        self.config = config
        self._sleep = sleep

    def backoff_delay(self, round_index: int) -> float:
        """Delay before round ``round_index + 1``: ``base * 2**round_index``, capped."""
        delay = min(self.config.retry_base_delay * (2**round_index), self.config.retry_max_delay)
        if self.config.retry_jitter and delay > 0:
            delay = min(delay * random.uniform(0.8, 1.2), self.config.retry_max_delay)
        return delay

    def round_for(self, method: FetchMethod) -> List[FetchMethod]:
        if method not in self.fetchers:
            raise ValueError(f"no fetcher registered for {method.value}")
        methods = [method]
        partner = FALLBACK_PARTNERS.get(method)
        if partner is not None and partner in self.fetchers:
            methods.append(partner)
        return methods

    async def execute(
        self, request: FetchRequest, method: FetchMethod, proxy: Optional[ProxyDescriptor] = None
    ) -> FetchResult:
        """Acquire ``request`` starting with ``method``.

        Returns the first successful result, with its performance record
        stamped with the total attempt count and the method that produced it.

        Raises:
            FetchError: after every round failed, or immediately for a
                non-retryable failure.
        """
        start = time.perf_counter()
        candidates = self.round_for(method)
        history: List[FetchError] = []
        attempted: List[str] = []

        for round_index in range(request.retries + 1):
            if round_index:
                delay = self.backoff_delay(round_index - 1)
                logger.info(
                    "Retrying acquisition",
                    url=request.url,
                    round=round_index + 1,
                    rounds=request.retries + 1,
                    delay=round(delay, 3),
                )
                await self._sleep(delay)

            for position, candidate in enumerate(candidates):
                attempted.append(candidate.value)
                try:
                    result = await self.fetchers[candidate].fetch(request, proxy)
                except FetchError as e:
                    METRICS["fetch_attempts_total"].labels(method=candidate.value, outcome="failure").inc()
                    history.append(e)
                    logger.warning(
                        "Fetch attempt failed",
                        url=request.url,
                        method=candidate.value,
                        kind=e.kind.value,
                        error=e.message,
                        attempt=len(attempted),
                    )
                    if not e.retryable:
                        raise self._terminal(request, history, attempted)
                    if position + 1 < len(candidates):
                        METRICS["fallbacks_total"].labels(
                            from_method=candidate.value, to_method=candidates[position + 1].value
                        ).inc()
                    continue

                METRICS["fetch_attempts_total"].labels(method=candidate.value, outcome="success").inc()
                METRICS["fetch_latency_seconds"].labels(method=candidate.value).observe(time.perf_counter() - start)
                if candidate is not method:
                    logger.info("Fallback succeeded", url=request.url, chosen=method.value, used=candidate.value)
                return result.with_performance(attempts=len(attempted), method=candidate)

        raise self._terminal(request, history, attempted)

    def _terminal(self, request: FetchRequest, history: List[FetchError], attempted: List[str]) -> FetchError:
        last = history[-1]
        kwargs: Dict[str, Any] = {
            "status_code": last.status_code,
            "attempted_methods": list(dict.fromkeys(attempted)),
            "attempts": len(attempted),
            "history": history,
            "retry_after": last.retry_after,
        }
        if isinstance(last, RenderError):
            return RenderError(request.url, last.reason, last.message, **kwargs)
        return FetchError(last.kind, request.url, last.message, **kwargs)

"""
Breadth-first crawl driven through the acquisition pipeline.

The crawler owns its :class:`CrawlState` for the whole session. Frontier
entries are admitted in FIFO order; an entry is marked visited when it is
admitted, before its fetch starts, so no URL is fetched twice even when a
batch is in flight. Rejected entries (already visited, too deep, foreign
host, excluded, not included) never consume page budget.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, List, Optional, Tuple

import structlog

from prospect.errors import FetchError
from prospect.observability.metrics import METRICS
from prospect.protocols import CrawlConfig, CrawlState, FetchResult
from prospect.utils.urls import canonicalize_url, host_of, path_matches

if TYPE_CHECKING:
    from prospect.pipeline import Pipeline

logger = structlog.get_logger(__name__)


class Crawler:
    def __init__(self, pipeline: "Pipeline", config: CrawlConfig, *, batch_size: Optional[int] = None):
        config.validate()
        self.pipeline = pipeline
        self.config = config
        self.batch_size = batch_size or pipeline.scheduler.max_concurrency
        self.state = CrawlState()
        self.seed_url = canonicalize_url(config.seed_url)
        self.seed_host = host_of(self.seed_url)

    def stop(self) -> None:
        """Stop admitting frontier entries; fetches already in flight finish."""
        if not self.state.stopped:
            logger.info("Crawl stop requested", seed=self.seed_url, results=len(self.state.results))
        self.state.stopped = True

    def _in_scope(self, url: str) -> bool:
        if self.config.same_domain_only and host_of(url) != self.seed_host:
            return False
        if self.config.exclude_paths and path_matches(url, self.config.exclude_paths):
            return False
        if self.config.include_paths and not path_matches(url, self.config.include_paths):
            return False
        return True

    def _admit_batch(self, budget: int) -> List[Tuple[str, int]]:
        batch: List[Tuple[str, int]] = []
        frontier = self.state.frontier
        while frontier and len(batch) < budget:
            url, depth = frontier.popleft()
            if url in self.state.visited:
                continue
            if depth > self.config.max_depth:
                continue
            # The seed is always admitted
            if depth > 0 and not self._in_scope(url):
                continue
            self.state.visited.add(url)
            batch.append((url, depth))
        return batch

    def _expand(self, result: FetchResult, depth: int) -> None:
        added = 0
        for link in result.links:
            url = canonicalize_url(link)
            if url in self.state.discovered or url in self.state.visited:
                continue
            if not self._in_scope(url):
                continue
            self.state.discovered.add(url)
            self.state.frontier.append((url, depth + 1))
            added += 1
        if added:
            logger.debug("Frontier expanded", url=result.url, added=added, depth=depth + 1)

    async def run(self) -> List[FetchResult]:
        """Crawl until the frontier empties, the page budget is spent or :meth:`stop` is called."""
        state = self.state
        max_pages = self.config.max_pages
        state.frontier.append((self.seed_url, 0))
        state.discovered.add(self.seed_url)
        logger.info(
            "Crawl started",
            seed=self.seed_url,
            max_pages=max_pages,
            max_depth=self.config.max_depth,
            same_domain_only=self.config.same_domain_only,
        )

        while state.frontier and not state.stopped and len(state.results) < max_pages:
            batch = self._admit_batch(min(self.batch_size, max_pages - len(state.results)))
            if not batch:
                continue

            outcomes = await asyncio.gather(
                *(self.pipeline.fetch(self.config.request_for(url)) for url, _ in batch),
                return_exceptions=True,
            )
            for (url, depth), outcome in zip(batch, outcomes):
                if isinstance(outcome, FetchError):
                    state.failed[url] = str(outcome)
                    METRICS["crawl_pages_total"].labels(outcome="failed").inc()
                    logger.warning("Crawl page failed", url=url, depth=depth, kind=outcome.kind.value, error=outcome.message)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome

                state.results.append(outcome)
                METRICS["crawl_pages_total"].labels(outcome="fetched").inc()
                if depth < self.config.max_depth and len(state.results) < max_pages:
                    self._expand(outcome, depth)

        logger.info(
            "Crawl finished",
            seed=self.seed_url,
            results=len(state.results),
            failed=len(state.failed),
            frontier=len(state.frontier),
            stopped=state.stopped,
        )
        return list(state.results)

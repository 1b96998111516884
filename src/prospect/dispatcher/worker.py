"""
Worker loop consuming the Redis job queue.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from prospect.errors import FetchError
from prospect.pipeline import Pipeline
from prospect.protocols import JobRecord

from .redis_queue import RedisJobQueue

logger = structlog.get_logger(__name__)


class DispatchWorker:
    """Runs queued requests through :meth:`Pipeline.fetch`, unchanged."""

    def __init__(self, queue: RedisJobQueue, pipeline: Pipeline, concurrency: int = 1):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self._stop = asyncio.Event()
        self.processed = 0

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    async def _process(self, job: JobRecord) -> None:
        log = logger.bind(job_id=job.job_id, url=job.request.url, attempt=job.attempts)
        try:
            result = await self.pipeline.fetch(job.request)
        except FetchError as e:
            log.warning("Job attempt failed", kind=e.kind.value, error=e.message)
            await self.queue.fail(job, e.to_dict(), retryable=e.retryable)
        except Exception as e:
            log.error("Job attempt crashed", error=str(e), exc_info=True)
            await self.queue.fail(job, {"kind": "internal", "message": str(e), "type": type(e).__name__})
        else:
            await self.queue.complete(job, result)
        finally:
            self.processed += 1

    async def run_once(self, timeout: float = 0.0) -> bool:
        """Process at most one job; False when none was available."""
        job = await self.queue.claim(timeout)
        if job is None:
            return False
        await self._process(job)
        return True

    async def _loop(self, index: int) -> None:
        while not self._stop.is_set():
            if not await self.run_once():
                try:
                    await asyncio.wait_for(self._stop.wait(), self.queue.poll_interval)
                except asyncio.TimeoutError:
                    continue

    async def _watch(self, max_jobs: Optional[int]) -> None:
        if max_jobs is None:
            await self._stop.wait()
            return
        while self.processed < max_jobs and not self._stop.is_set():
            await asyncio.sleep(self.queue.poll_interval / 5)

    async def run(self, max_jobs: Optional[int] = None) -> None:
        """Run worker loops until :meth:`stop` is called or ``max_jobs`` were processed.

        Raises:
            Exception: whatever ended a worker loop early, e.g. a Redis
                connection error from :meth:`RedisJobQueue.claim`. The
                remaining loops are stopped first.
        """
        logger.info("Dispatch worker started", queue=self.queue.queue_name, concurrency=self.concurrency)
        loops = [asyncio.create_task(self._loop(index)) for index in range(self.concurrency)]
        watcher = asyncio.create_task(self._watch(max_jobs))
        try:
            done, _ = await asyncio.wait([*loops, watcher], return_when=asyncio.FIRST_COMPLETED)
            self._stop.set()
            for task in done:
                if task is not watcher and task.exception() is not None:
                    error = task.exception()
                    logger.error("Dispatch worker loop failed", error=str(error), type=type(error).__name__)
                    raise error
            await asyncio.gather(*loops)
        finally:
            for task in [*loops, watcher]:
                task.cancel()
            await asyncio.gather(*loops, watcher, return_exceptions=True)
            logger.info("Dispatch worker stopped", processed=self.processed)

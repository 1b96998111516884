"""
Bounded worker pool for acquisition tasks.

Tasks enter a FIFO queue and are executed by a fixed number of worker
coroutines, so at most ``max_concurrency`` operations are ever in flight.
Before an operation starts, the worker waits for the window limiter and for
the politeness delay of the task's host, then hands the operation the
currently rotated proxy. Each operation runs in its own child task so that a
per-task deadline cancels only that operation, never the worker.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from prospect.config import Config
from prospect.errors import ErrorKind, FetchError
from prospect.observability.metrics import METRICS
from prospect.protocols import ProxyDescriptor
from prospect.utils.urls import host_of

from .proxies import ProxyRotator
from .rate_limiter import PolitenessLimiter, WindowLimiter

Operation = Callable[[Optional[ProxyDescriptor]], Awaitable[Any]]

logger = structlog.get_logger(__name__)


@dataclass
class _Task:
    op: Operation
    key: str
    future: asyncio.Future
    runner: Optional[asyncio.Task] = None
    abandoned: bool = False

    def abandon(self) -> None:
        self.abandoned = True
        if self.runner is not None and not self.runner.done():
            self.runner.cancel()


@dataclass
class SchedulerStats:
    waiting: int = 0
    active: int = 0
    max_active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "max_active": self.max_active,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


class Scheduler:
    def __init__(
        self,
        max_concurrency: int = 3,
        *,
        politeness: Optional[PolitenessLimiter] = None,
        window: Optional[WindowLimiter] = None,
        proxies: Optional[ProxyRotator] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.politeness = politeness
        self.window = window
        self.proxies = proxies
        self._queue: Optional[asyncio.Queue[_Task]] = None
        self._workers: List[asyncio.Task] = []
        self._closed = False
        self.stats = SchedulerStats()

    @classmethod
    def from_config(cls, config: Config) -> "Scheduler":
        scheduler_config = config.scheduler
        return cls(
            scheduler_config.max_concurrency,
            politeness=PolitenessLimiter(scheduler_config.politeness_delay),
            window=WindowLimiter(scheduler_config.interval_seconds, scheduler_config.interval_cap),
            proxies=ProxyRotator.from_config(config.proxy),
        )

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"prospect-worker-{index}")
            for index in range(self.max_concurrency)
        ]
        logger.info("Scheduler started", workers=self.max_concurrency)

    async def submit(self, op: Operation, key: str = "", timeout: Optional[float] = None) -> Any:
        """Queue ``op`` and wait for its result.

        Args:
            op: Coroutine function receiving the proxy chosen for this run.
            key: URL the operation targets; its host drives politeness.
            timeout: Deadline covering queue wait and execution.

        Raises:
            FetchError: ``timeout`` when the deadline passes first.
            Exception: whatever ``op`` raised.
        """
        self.start()
        assert self._queue is not None

        loop = asyncio.get_running_loop()
        task = _Task(op=op, key=key, future=loop.create_future())
        self._set_waiting(self.stats.waiting + 1)
        await self._queue.put(task)

        try:
            if timeout is None:
                return await asyncio.shield(task.future)
            return await asyncio.wait_for(asyncio.shield(task.future), timeout)
        except asyncio.TimeoutError:
            task.abandon()
            self.stats.cancelled += 1
            logger.warning("Task deadline exceeded", key=key, timeout=timeout)
            raise FetchError(ErrorKind.TIMEOUT, key, f"task deadline of {timeout}s exceeded") from None
        except asyncio.CancelledError:
            task.abandon()
            self.stats.cancelled += 1
            raise

    def _set_waiting(self, value: int) -> None:
        self.stats.waiting = value
        METRICS["scheduler_waiting"].set(value)

    def _set_active(self, value: int) -> None:
        self.stats.active = value
        self.stats.max_active = max(self.stats.max_active, value)
        METRICS["scheduler_active"].set(value)

    async def _admit(self, task: _Task) -> None:
        if self.window is not None:
            await self.window.acquire()
        host = host_of(task.key) if task.key else ""
        if self.politeness is not None and host:
            await self.politeness.wait_for_host(host)

    def _note_failure(self, task: _Task, error: BaseException) -> None:
        if isinstance(error, FetchError) and error.retry_after and self.politeness is not None and task.key:
            self.politeness.defer(host_of(task.key), error.retry_after)

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            task = await self._queue.get()
            try:
                self._set_waiting(self.stats.waiting - 1)
                if task.abandoned:
                    continue
                await self._admit(task)
                if task.abandoned:
                    continue

                self._set_active(self.stats.active + 1)
                try:
                    task.runner = asyncio.create_task(task.op(self.proxies.current() if self.proxies else None))
                    await asyncio.wait({task.runner})
                finally:
                    self._set_active(self.stats.active - 1)

                if task.runner.cancelled():
                    if not task.abandoned:
                        self.stats.cancelled += 1
                    if not task.future.done():
                        task.future.cancel()
                    continue
                error = task.runner.exception()
                if error is not None:
                    self.stats.failed += 1
                    self._note_failure(task, error)
                    if not task.future.done() and not task.abandoned:
                        task.future.set_exception(error)
                else:
                    self.stats.completed += 1
                    if not task.future.done() and not task.abandoned:
                        task.future.set_result(task.runner.result())
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued task has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Finish queued work, then stop the workers."""
        if self._closed:
            return
        self._closed = True
        if self._workers:
            await self.drain()
            for worker in self._workers:
                worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []
        logger.info("Scheduler closed", **self.stats.to_dict())

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self.stats.to_dict())
        stats["max_concurrency"] = self.max_concurrency
        if self.proxies is not None:
            stats["proxies"] = self.proxies.get_stats()
        return stats

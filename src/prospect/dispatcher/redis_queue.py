"""
Redis-backed job queue for distributed acquisition.

Layout, for a queue named ``q``:

- ``q:waiting``   list of job ids ready to run (FIFO)
- ``q:active``    list of job ids claimed by a worker
- ``q:delayed``   sorted set of job ids scored by the time they become due
- ``q:job:<id>``  hash holding the serialised request, status, attempts,
  result or error, and timestamps
- ``q:completed`` / ``q:failed``  counters

A failed job goes back to the queue through ``q:delayed`` with exponential
backoff until it has used ``max_attempts``; it is then marked failed with a
``queue-exhausted`` error and leaves the queue.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis
import structlog

from prospect.config import DispatcherConfig
from prospect.errors import QueueExhaustedError
from prospect.observability.metrics import METRICS
from prospect.protocols import FetchRequest, FetchResult, JobRecord, JobStatus, QueueStatus

logger = structlog.get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RedisJobQueue:
    def __init__(
        self,
        client: redis.Redis,
        queue_name: str = "prospect-queue",
        *,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 300.0,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.queue_name = queue_name
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.poll_interval = poll_interval
        self._clock = clock

        self.waiting_key = f"{queue_name}:waiting"
        self.active_key = f"{queue_name}:active"
        self.delayed_key = f"{queue_name}:delayed"
        self.completed_key = f"{queue_name}:completed"
        self.failed_key = f"{queue_name}:failed"

    @classmethod
    def from_config(cls, config: DispatcherConfig) -> "RedisJobQueue":
        client = redis.Redis.from_url(config.redis_url, decode_responses=True)
        return cls(
            client,
            config.queue_name,
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
            poll_interval=config.poll_interval,
        )

    def job_key(self, job_id: str) -> str:
        return f"{self.queue_name}:job:{job_id}"

    async def close(self) -> None:
        await self.client.aclose()

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, request: FetchRequest) -> str:
        """Validate and queue ``request``; returns the job id."""
        request.validate()
        job_id = uuid4().hex
        now = _now_iso()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(
                self.job_key(job_id),
                mapping={
                    "id": job_id,
                    "request": json.dumps(request.to_dict()),
                    "status": JobStatus.WAITING.value,
                    "attempts": 0,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            pipe.rpush(self.waiting_key, job_id)
            await pipe.execute()
        logger.info("Job enqueued", job_id=job_id, url=request.url)
        return job_id

    async def status(self) -> QueueStatus:
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.llen(self.waiting_key)
            pipe.zcard(self.delayed_key)
            pipe.llen(self.active_key)
            pipe.get(self.completed_key)
            pipe.get(self.failed_key)
            waiting, delayed, active, completed, failed = await pipe.execute()
        return QueueStatus(
            waiting=int(waiting) + int(delayed),
            active=int(active),
            completed=int(completed or 0),
            failed=int(failed or 0),
        )

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        data = await self.client.hgetall(self.job_key(job_id))
        if not data:
            return None
        return JobRecord(
            job_id=data["id"],
            status=JobStatus(data["status"]),
            attempts=int(data.get("attempts", 0)),
            request=FetchRequest.from_dict(json.loads(data["request"])),
            result=FetchResult.from_dict(json.loads(data["result"])) if data.get("result") else None,
            error=json.loads(data["error"]) if data.get("error") else None,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    async def promote_due(self) -> int:
        """Move delayed jobs whose backoff has elapsed back to ``waiting``."""
        due = await self.client.zrangebyscore(self.delayed_key, "-inf", self._clock())
        promoted = 0
        for job_id in due:
            # Only the worker that removes the id promotes it
            if await self.client.zrem(self.delayed_key, job_id):
                async with self.client.pipeline(transaction=True) as pipe:
                    pipe.hset(
                        self.job_key(job_id),
                        mapping={"status": JobStatus.WAITING.value, "updated_at": _now_iso()},
                    )
                    pipe.rpush(self.waiting_key, job_id)
                    await pipe.execute()
                promoted += 1
        if promoted:
            logger.debug("Promoted delayed jobs", count=promoted)
        return promoted

    async def claim(self, timeout: float = 0.0) -> Optional[JobRecord]:
        """Claim the next waiting job, polling for up to ``timeout`` seconds."""
        deadline = self._clock() + timeout
        while True:
            await self.promote_due()
            job_id = await self.client.lmove(self.waiting_key, self.active_key, "LEFT", "RIGHT")
            if job_id is not None:
                break
            if self._clock() >= deadline:
                return None
            await asyncio.sleep(self.poll_interval)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hincrby(self.job_key(job_id), "attempts", 1)
            pipe.hset(
                self.job_key(job_id),
                mapping={"status": JobStatus.ACTIVE.value, "updated_at": _now_iso()},
            )
            await pipe.execute()
        return await self.get_job(job_id)

    async def complete(self, job: JobRecord, result: FetchResult) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job.job_id)
            pipe.hset(
                self.job_key(job.job_id),
                mapping={
                    "status": JobStatus.COMPLETED.value,
                    "result": json.dumps(result.to_dict(), default=str),
                    "updated_at": _now_iso(),
                },
            )
            pipe.hdel(self.job_key(job.job_id), "error")
            pipe.incr(self.completed_key)
            await pipe.execute()
        METRICS["dispatch_jobs_total"].labels(status="completed").inc()
        logger.info("Job completed", job_id=job.job_id, url=job.request.url, attempts=job.attempts)

    def backoff_delay(self, attempts: int) -> float:
        return min(self.backoff_base * (2 ** max(attempts - 1, 0)), self.backoff_max)

    async def fail(self, job: JobRecord, error: Dict[str, Any], *, retryable: bool = True) -> JobStatus:
        """Record a failed attempt; re-queue with backoff or give up.

        Returns:
            ``DELAYED`` when the job will run again, ``FAILED`` otherwise.
        """
        if retryable and job.attempts < self.max_attempts:
            delay = self.backoff_delay(job.attempts)
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.lrem(self.active_key, 1, job.job_id)
                pipe.zadd(self.delayed_key, {job.job_id: self._clock() + delay})
                pipe.hset(
                    self.job_key(job.job_id),
                    mapping={
                        "status": JobStatus.DELAYED.value,
                        "error": json.dumps(error, default=str),
                        "updated_at": _now_iso(),
                    },
                )
                await pipe.execute()
            METRICS["dispatch_jobs_total"].labels(status="retried").inc()
            logger.warning(
                "Job failed, retrying",
                job_id=job.job_id,
                url=job.request.url,
                attempts=job.attempts,
                delay=delay,
                error=error.get("message"),
            )
            return JobStatus.DELAYED

        exhausted = QueueExhaustedError(job.request.url, job.attempts, last_error=error)
        payload = exhausted.to_dict()
        payload["last_error"] = error
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job.job_id)
            pipe.hset(
                self.job_key(job.job_id),
                mapping={
                    "status": JobStatus.FAILED.value,
                    "error": json.dumps(payload, default=str),
                    "updated_at": _now_iso(),
                },
            )
            pipe.incr(self.failed_key)
            await pipe.execute()
        METRICS["dispatch_jobs_total"].labels(status="failed").inc()
        logger.error("Job failed permanently", job_id=job.job_id, url=job.request.url, attempts=job.attempts)
        return JobStatus.FAILED

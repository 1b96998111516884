"""
Single-flight de-duplication of concurrent identical operations.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Generic, TypeVar

import structlog

from prospect.observability.metrics import METRICS

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class SingleFlight(Generic[T]):
    """Collapse concurrent calls for the same key into one underlying call.

    The first caller for a key runs ``factory``; callers arriving while it
    is in flight await the same future and receive its result or exception.
    The key is released as soon as the flight settles, so later calls start
    a new flight.
    """

    def __init__(self) -> None:
        self._flights: Dict[str, asyncio.Future[T]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._flights

    def __len__(self) -> int:
        return len(self._flights)

    async def do(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        existing = self._flights.get(key)
        if existing is not None:
            METRICS["cache_events_total"].labels(event="joined").inc()
            logger.debug("Joining in-flight acquisition", key=key)
            # Shielded so one waiter's cancellation does not cancel the flight
            return await asyncio.shield(existing)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._flights[key] = future
        try:
            result = await factory()
        except BaseException as exc:
            if not future.done():
                if isinstance(exc, asyncio.CancelledError):
                    future.cancel()
                else:
                    future.set_exception(exc)
            # Mark the exception retrieved when nobody joined the flight
            if not future.cancelled():
                future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._flights.pop(key, None)

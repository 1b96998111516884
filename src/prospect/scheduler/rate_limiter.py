"""
Politeness and windowed admission limits for outbound requests.

:class:`PolitenessLimiter` spaces requests to the same host by a minimum
interval and honours server-requested ``Retry-After`` delays.
:class:`WindowLimiter` caps how many operations may start within any sliding
window of ``interval`` seconds, across all hosts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class HostState:
    last_request_time: Optional[float] = None
    forced_until: float = 0.0
    requests: int = 0
    total_delay: float = 0.0


class PolitenessLimiter:
    """Per-host minimum spacing between request starts."""

    def __init__(self, min_interval: float = 1.0, *, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._hosts: Dict[str, HostState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_host_lock(self, host: str) -> asyncio.Lock:
        if host not in self._locks:
            self._locks[host] = asyncio.Lock()
        return self._locks[host]

    def _get_host_state(self, host: str) -> HostState:
        if host not in self._hosts:
            self._hosts[host] = HostState()
        return self._hosts[host]

    def delay_for(self, host: str) -> float:
        """Seconds the next request to ``host`` would have to wait right now."""
        state = self._get_host_state(host)
        now = self._clock()
        delay = max(0.0, state.forced_until - now)
        if state.last_request_time is not None:
            delay = max(delay, state.last_request_time + self.min_interval - now)
        return delay

    async def wait_for_host(self, host: str) -> float:
        """
        Wait until a request to ``host`` may start, then record the start.

        Returns:
            Delay applied in seconds
        """
        async with self._get_host_lock(host):
            delay = self.delay_for(host)
            if delay > 0:
                logger.debug(f"Politeness delay for {host}: {delay:.2f}s")
                await self._sleep(delay)

            state = self._get_host_state(host)
            state.last_request_time = self._clock()
            state.requests += 1
            state.total_delay += delay
            return delay

    def defer(self, host: str, seconds: float) -> None:
        """Hold every request to ``host`` for ``seconds`` from now."""
        state = self._get_host_state(host)
        state.forced_until = max(state.forced_until, self._clock() + seconds)
        logger.info(f"Server requested {seconds}s delay for {host}")

    def update_from_response(self, host: str, headers: Mapping[str, str]) -> None:
        retry_after = headers.get("Retry-After") or headers.get("retry-after")
        if not retry_after:
            return
        try:
            self.defer(host, float(retry_after))
        except ValueError:
            # HTTP-date form is not interpreted
            logger.debug(f"Ignoring non-numeric Retry-After for {host}: {retry_after}")

    def get_host_stats(self, host: str) -> Dict[str, Any]:
        if host not in self._hosts:
            return {"exists": False}
        state = self._hosts[host]
        return {
            "exists": True,
            "requests": state.requests,
            "total_delay": state.total_delay,
            "forced_delay_remaining": max(0.0, state.forced_until - self._clock()),
        }

    def reset_host(self, host: str) -> None:
        self._hosts.pop(host, None)
        self._locks.pop(host, None)


class WindowLimiter:
    """Sliding-window cap on operation starts."""

    def __init__(self, interval: float = 1.0, cap: int = 3, *, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if cap < 1:
            raise ValueError("cap must be at least 1")
        self.interval = interval
        self.cap = cap
        self._clock = clock
        self._sleep = sleep
        self._starts: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._starts and self._starts[0] <= now - self.interval:
            self._starts.popleft()

    async def acquire(self) -> float:
        """Wait for a free slot in the current window; return the delay applied."""
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._starts) < self.cap:
                    self._starts.append(now)
                    return waited
                delay = self._starts[0] + self.interval - now
                logger.debug(f"Window cap of {self.cap} reached, waiting {delay:.2f}s")
                await self._sleep(delay)
                waited += delay

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._starts)

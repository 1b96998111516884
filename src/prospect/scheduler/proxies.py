"""
Time-based round-robin proxy rotation.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

from prospect.config import ProxyConfig
from prospect.protocols import ProxyDescriptor

logger = logging.getLogger(__name__)


class ProxyRotator:
    """Selects the current proxy; the selection advances every ``interval`` seconds.

    The rotation position is derived from elapsed time rather than from call
    counts, so concurrent callers within one interval share a proxy.
    """

    def __init__(
        self,
        proxies: Sequence[ProxyDescriptor],
        interval: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.proxies: List[ProxyDescriptor] = list(proxies)
        self.interval = interval
        self._clock = clock
        self._started_at = clock()
        self._last_index: Optional[int] = None
        if self.proxies:
            logger.info(f"Proxy rotation enabled with {len(self.proxies)} proxies every {interval}s")

    @classmethod
    def from_config(cls, config: ProxyConfig, *, clock: Callable[[], float] = time.monotonic) -> "ProxyRotator":
        proxies = [ProxyDescriptor(url=p.url, username=p.username, password=p.password) for p in config.proxies]
        return cls(proxies, config.rotation_interval, clock=clock)

    def __len__(self) -> int:
        return len(self.proxies)

    def current(self) -> Optional[ProxyDescriptor]:
        if not self.proxies:
            return None
        index = int((self._clock() - self._started_at) // self.interval) % len(self.proxies)
        if index != self._last_index:
            if self._last_index is not None:
                logger.debug(f"Rotated to proxy {index}: {self.proxies[index].url}")
            self._last_index = index
        return self.proxies[index]

    def get_stats(self) -> Dict[str, object]:
        return {"proxy_count": len(self.proxies), "current_index": self._last_index, "interval": self.interval}

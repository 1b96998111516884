"""
Bounded concurrent scheduling with politeness, windowed admission and proxy
rotation.
"""

from .proxies import ProxyRotator
from .rate_limiter import PolitenessLimiter, WindowLimiter
from .scheduler import Scheduler, SchedulerStats

__all__ = ["PolitenessLimiter", "ProxyRotator", "Scheduler", "SchedulerStats", "WindowLimiter"]

"""
Distributed mode: a Redis job queue and the workers that drain it.
"""

from .redis_queue import RedisJobQueue
from .worker import DispatchWorker

__all__ = ["DispatchWorker", "RedisJobQueue"]

#!/usr/bin/env python3
"""
Production entry point for Prospect distributed workers.

    python main.py worker   # drain the Redis job queue until SIGINT/SIGTERM
    python main.py health   # print a JSON health snapshot, exit 1 when unhealthy
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from prospect.config import Config, find_config_file
from prospect.dispatcher import DispatchWorker, RedisJobQueue
from prospect.observability import MetricsManager, configure_logging, set_metrics_manager
from prospect.pipeline import Pipeline

logger = structlog.get_logger(__name__)


def load_config() -> Config:
    config_path = os.getenv("PROSPECT_CONFIG")
    path: Optional[Path] = Path(config_path) if config_path else find_config_file()
    if path is not None:
        return Config.from_yaml(path)
    return Config()


async def health_check(config: Config) -> Dict[str, Any]:
    """Health snapshot for container orchestration."""
    queue = RedisJobQueue.from_config(config.dispatcher)
    try:
        await queue.ping()
        status = await queue.status()
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "queue": config.dispatcher.queue_name,
            **status.to_dict(),
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e), "timestamp": time.time()}
    finally:
        await queue.close()


async def run_worker(config: Config) -> None:
    metrics = MetricsManager(config.monitoring)
    set_metrics_manager(metrics)
    metrics.start()

    queue = RedisJobQueue.from_config(config.dispatcher)
    try:
        async with Pipeline(config) as pipeline:
            worker = DispatchWorker(queue, pipeline, concurrency=config.dispatcher.workers)

            loop = asyncio.get_running_loop()
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(signum, worker.stop)

            logger.info("Prospect worker starting", queue=config.dispatcher.queue_name)
            await worker.run()
    finally:
        await queue.close()
        logger.info("Prospect worker stopped")


async def main() -> int:
    config = load_config()
    configure_logging(config.monitoring)

    command = sys.argv[1] if len(sys.argv) > 1 else "worker"
    if command == "health":
        health = await health_check(config)
        print(json.dumps(health, indent=2))
        return 0 if health["status"] == "healthy" else 1
    if command == "worker":
        await run_worker(config)
        return 0

    print(f"unknown command: {command}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

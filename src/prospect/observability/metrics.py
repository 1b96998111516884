"""
Defines and manages Prometheus metrics for the acquisition engine.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Dict, Optional

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from prospect.config.config import MonitoringConfig

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Importing this module more than once (test reloads, multiple pipelines in
# one process) must not trip prometheus_client's duplicate registration check.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race; fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "fetch_latency_seconds": Histogram(
            "prospect_fetch_latency_seconds",
            "Wall-clock time of a successful acquisition including fallbacks and retries",
            ["method"],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
        ),
        "fetch_attempts_total": Counter(
            "prospect_fetch_attempts_total",
            "Individual fetch attempts by method and outcome",
            ["method", "outcome"],
        ),
        "fallbacks_total": Counter(
            "prospect_fallbacks_total",
            "Times the fallback method was attempted after the chosen one failed",
            ["from_method", "to_method"],
        ),
        "cache_events_total": Counter(
            "prospect_cache_events_total",
            "Result cache lookups by outcome",
            ["event"],
        ),
        "scheduler_active": Gauge(
            "prospect_scheduler_active",
            "Tasks currently executing in the scheduler worker pool",
        ),
        "scheduler_waiting": Gauge(
            "prospect_scheduler_waiting",
            "Tasks admitted to the scheduler queue and not yet started",
        ),
        "crawl_pages_total": Counter(
            "prospect_crawl_pages_total",
            "Pages processed by crawl sessions by outcome",
            ["outcome"],
        ),
        "dispatch_jobs_total": Counter(
            "prospect_dispatch_jobs_total",
            "Distributed jobs by terminal or retry status",
            ["status"],
        ),
        "browser_pages_total": Counter(
            "prospect_browser_pages_total",
            "Browser pages opened by the rendered fetcher",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


class MetricsManager:
    """Starts the Prometheus exporter and exposes a snapshot for health checks."""

    def __init__(self, config: MonitoringConfig) -> None:
        self.config = config
        self._started = False
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._started or not self.config.enabled or self.config.prometheus_port is None:
                return
            start_http_server(self.config.prometheus_port)
            self._started = True

    @property
    def started(self) -> bool:
        return self._started

    def get_current_metrics(self) -> Dict[str, Any]:
        """Flatten gauge values into a plain dict."""
        return {
            "scheduler_active": METRICS["scheduler_active"]._value.get(),
            "scheduler_waiting": METRICS["scheduler_waiting"]._value.get(),
        }


_metrics_manager: Optional[MetricsManager] = None


def get_metrics_manager() -> Optional[MetricsManager]:
    return _metrics_manager


def set_metrics_manager(manager: MetricsManager) -> None:
    global _metrics_manager
    _metrics_manager = manager

"""
Observability: structured logging and Prometheus metrics.
"""

from .logging import configure_logging
from .metrics import METRICS, MetricsManager, get_metrics_manager, set_metrics_manager

__all__ = ["METRICS", "MetricsManager", "configure_logging", "get_metrics_manager", "set_metrics_manager"]

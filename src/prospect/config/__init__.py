"""
Configuration package for Prospect.
"""

from .config import (
    BrowserConfig,
    CacheConfig,
    Config,
    CrawlDefaults,
    DebugConfig,
    DispatcherConfig,
    FetcherConfig,
    MonitoringConfig,
    ProxyConfig,
    ProxyEntry,
    SchedulerConfig,
    find_config_file,
    settings,
)

__all__ = [
    "BrowserConfig",
    "CacheConfig",
    "Config",
    "CrawlDefaults",
    "DebugConfig",
    "DispatcherConfig",
    "FetcherConfig",
    "MonitoringConfig",
    "ProxyConfig",
    "ProxyEntry",
    "SchedulerConfig",
    "find_config_file",
    "settings",
]

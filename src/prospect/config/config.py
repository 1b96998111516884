"""
Configuration management for Prospect using Pydantic.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Optional, cast

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Nested Configuration Models ---


class FetcherConfig(BaseModel):
    """HTTP fetch configuration shared by the static fetcher and the probe."""

    timeout: float = Field(default=30.0, gt=0, description="Per-attempt request timeout in seconds.")
    retries: int = Field(default=3, ge=0, description="Retry rounds after the first fallback round.")
    user_agent: str = Field(
        default="ProspectBot/1.0 (+https://github.com/prospect-engine/prospect)",
        description="User-Agent string for HTTP requests.",
    )
    default_headers: Dict[str, str] = Field(
        default_factory=lambda: {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        },
        description="Headers sent with every request unless overridden.",
    )
    max_redirects: int = Field(default=5, ge=0, description="Redirect budget per request.")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Base delay for exponential backoff.")
    retry_max_delay: float = Field(default=60.0, ge=0, description="Upper bound for a single backoff delay.")
    retry_jitter: bool = Field(default=True, description="Add jitter to backoff delays.")
    probe_timeout: float = Field(default=5.0, gt=0, description="Timeout for strategy probes.")
    probe_bytes: int = Field(default=65536, gt=0, description="Maximum bytes read by a truncated GET probe.")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates.")
    pdf_max_pages: Optional[int] = Field(default=100, gt=0, description="Pages of a PDF body to extract text from; all when None.")


class BrowserConfig(BaseModel):
    """Headless browser pool configuration."""

    browser_type: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True
    launch_args: List[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-accelerated-2d-canvas",
            "--no-first-run",
            "--no-zygote",
            "--disable-gpu",
        ]
    )
    viewport_width: int = Field(default=1280, gt=0)
    viewport_height: int = Field(default=720, gt=0)
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "networkidle"
    pool_size: int = Field(default=2, ge=1, description="Maximum concurrently open browser contexts.")
    recycle_after: int = Field(default=100, ge=1, description="Relaunch the browser after this many pages.")
    ws_endpoint: Optional[str] = Field(default=None, description="Remote browser endpoint instead of a local launch.")
    screenshot_dir: Path = Field(default_factory=lambda: Path.home() / ".prospect" / "screenshots")


class CacheConfig(BaseModel):
    """Result cache configuration."""

    enabled: bool = True
    ttl_seconds: float = Field(default=300.0, gt=0, description="Time-to-live of cached results.")


class SchedulerConfig(BaseModel):
    """Bounded worker pool configuration."""

    max_concurrency: int = Field(default=3, ge=1, description="Maximum fetch pipelines in flight.")
    politeness_delay: float = Field(default=1.0, ge=0, description="Minimum seconds between requests to one host.")
    interval_seconds: float = Field(default=1.0, gt=0, description="Length of a scheduling window.")
    interval_cap: int = Field(default=3, ge=1, description="Operations started per scheduling window.")
    task_timeout: Optional[float] = Field(
        default=None, gt=0, description="Deadline for a whole task, queue wait included. None disables it."
    )


class ProxyEntry(BaseModel):
    url: str
    username: Optional[str] = None
    password: Optional[str] = None


class ProxyConfig(BaseModel):
    """Proxy rotation configuration."""

    proxies: List[ProxyEntry] = Field(default_factory=list)
    rotation_interval: float = Field(default=60.0, gt=0, description="Seconds each proxy stays current.")


class CrawlDefaults(BaseModel):
    max_pages: int = Field(default=10, ge=1)
    max_depth: int = Field(default=2, ge=0)
    same_domain_only: bool = True


class DispatcherConfig(BaseModel):
    """Redis-backed job queue configuration."""

    redis_url: str = Field(default="redis://localhost:6379/2", description="Redis URL for the job queue.")
    queue_name: str = Field(default="prospect-queue")
    workers: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=3, ge=1, description="Attempts before a job is marked failed.")
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_max: float = Field(default=300.0, ge=0)
    poll_interval: float = Field(default=0.5, gt=0)


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    enabled: bool = True
    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    prometheus_port: int | None = Field(default=None, description="Port for the Prometheus exporter. None disables.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


class DebugConfig(BaseModel):
    test_mode: bool = False


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "Prospect"
    version: str = "0.1.0"
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    crawl: CrawlDefaults = Field(default_factory=CrawlDefaults)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)

    model_config = SettingsConfigDict(env_prefix="PROSPECT_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "config.yaml", current_dir / "config.yml"):
        if path.exists():
            return path
    return None


# --- Lazy Configuration Loader ---


class LazyConfig:
    """
    A proxy for the Config object that delays its loading and validation
    until an attribute is first accessed. This prevents configuration errors
    from crashing the application on import.
    """

    _config: ClassVar[Config | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __getattr__(self, name: str) -> Any:
        if self.__class__._config is None:
            with self.__class__._lock:
                if self.__class__._config is None:
                    self.__class__._config = self._load_config_with_fallback()
        return getattr(self.__class__._config, name)

    def _load_config_with_fallback(self) -> Config:
        """Load configuration from file or fall back to defaults."""
        config_path = find_config_file()
        if config_path:
            try:
                log.info("Lazy loading configuration from: %s", config_path)
                return Config.from_yaml(config_path)
            except (ValidationError, FileNotFoundError, yaml.YAMLError) as e:
                log.error(
                    "Failed to load or validate configuration from '%s': %s. "
                    "Falling back to default settings. Please check your config file.",
                    config_path,
                    e,
                    exc_info=log.getEffectiveLevel() <= logging.DEBUG,
                )
        else:
            log.info("No config file found. Using default settings for lazy load.")

        try:
            return Config()
        except ValidationError as e:
            log.critical("FATAL: Default configuration is invalid: %s", e, exc_info=True)
            raise RuntimeError(f"Default configuration is invalid, cannot start: {e}") from e


# --- Global Settings Instance ---
settings: "Config" = cast("Config", LazyConfig())

"""
Prospect - adaptive content acquisition engine.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .crawler import Crawler
from .errors import ErrorKind, FetchError, InvalidRequestError, QueueExhaustedError, RenderError
from .pipeline import Pipeline
from .protocols import (
    AuthDescriptor,
    CrawlConfig,
    ExtractionRule,
    FetchMethod,
    FetchRequest,
    FetchResult,
    LocatorKind,
    ProxyDescriptor,
    TransformKind,
)

__all__ = [
    "__version__",
    "AuthDescriptor",
    "Config",
    "CrawlConfig",
    "Crawler",
    "ErrorKind",
    "ExtractionRule",
    "FetchError",
    "FetchMethod",
    "FetchRequest",
    "FetchResult",
    "InvalidRequestError",
    "LocatorKind",
    "Pipeline",
    "ProxyDescriptor",
    "QueueExhaustedError",
    "RenderError",
    "TransformKind",
]

"""
Core contracts and dataclasses for the Prospect acquisition engine.

This module defines the data model shared by every stage of the pipeline:

- Requests and their immutable proxy/auth descriptors
- Extraction rules (closed locator and transform enumerations)
- Results, performance records and cache entries
- Crawl configuration and per-session crawl state
- Queue status snapshots and job records for distributed mode
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional, Protocol, Set, Tuple, runtime_checkable
from uuid import uuid4

from jsonpath_ng import parse as parse_jsonpath
from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError

from .errors import InvalidRequestError
from .utils.urls import is_absolute_url

# ============================================================================
# Enums
# ============================================================================


class FetchMethod(Enum):
    """Acquisition methods. ``AUTO`` is a preference only, never a result."""

    STATIC = "static"
    RENDERED = "rendered"
    STREAM = "stream"
    AUTO = "auto"

    @classmethod
    def coerce(cls, value: "FetchMethod | str") -> "FetchMethod":
        if isinstance(value, cls):
            return value
        aliases = {"dynamic": cls.RENDERED, "websocket": cls.STREAM}
        text = str(value).lower()
        return aliases.get(text) or cls(text)


class LocatorKind(Enum):
    SELECTOR = "selector"
    PATH = "path"
    REGEX = "regex"


class TransformKind(Enum):
    """Closed set of value transforms; arbitrary code is not accepted."""

    TEXT = "text"
    HTML = "html"
    ATTRIBUTE = "attribute"
    STRUCTURED = "structured"


class AuthType(Enum):
    BASIC = "basic"
    BEARER = "bearer"
    COOKIES = "cookies"
    HEADERS = "headers"


class JobStatus(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Descriptors
# ============================================================================


@dataclass(frozen=True)
class ProxyDescriptor:
    """Proxy endpoint with optional credentials."""

    url: str
    username: Optional[str] = None
    password: Optional[str] = None

    def as_url(self) -> str:
        """Proxy URL with credentials embedded, as HTTP clients expect."""
        if self.username and self.password and "://" in self.url:
            scheme, rest = self.url.split("://", 1)
            return f"{scheme}://{self.username}:{self.password}@{rest}"
        return self.url

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProxyDescriptor:
        return cls(url=data["url"], username=data.get("username"), password=data.get("password"))


@dataclass(frozen=True)
class AuthDescriptor:
    """Authentication applied to a request.

    ``credentials`` is stored as sorted key/value pairs so the descriptor
    stays hashable and immutable once a request starts.
    """

    type: AuthType
    credentials: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def create(cls, auth_type: AuthType | str, credentials: Optional[Mapping[str, Any]] = None) -> AuthDescriptor:
        kind = auth_type if isinstance(auth_type, AuthType) else AuthType(str(auth_type).lower())
        pairs = tuple(sorted((str(k), str(v)) for k, v in (credentials or {}).items()))
        return cls(type=kind, credentials=pairs)

    def as_mapping(self) -> Dict[str, str]:
        return dict(self.credentials)

    def validate(self, url: str) -> None:
        creds = self.as_mapping()
        if self.type is AuthType.BASIC and "username" not in creds:
            raise InvalidRequestError(url, "basic auth requires a username")
        if self.type is AuthType.BEARER and not creds.get("token"):
            raise InvalidRequestError(url, "bearer auth requires a token")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "credentials": self.as_mapping()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuthDescriptor:
        try:
            return cls.create(data["type"], data.get("credentials"))
        except ValueError as e:
            raise InvalidRequestError("", f"unsupported auth type: {data.get('type')!r}") from e


# ============================================================================
# Extraction rules
# ============================================================================


@dataclass(frozen=True)
class ExtractionRule:
    """Named locator plus transform producing one field of the output map."""

    name: str
    locator: LocatorKind
    query: str
    transform: Optional[TransformKind] = None
    attribute: Optional[str] = None
    multiple: bool = False
    required: bool = False
    default: Any = None

    def validate(self, url: str = "") -> None:
        if not self.name:
            raise InvalidRequestError(url, "extraction rule requires a name")
        if not self.query:
            raise InvalidRequestError(url, f"extraction rule '{self.name}' has an empty query")
        if self.transform is TransformKind.ATTRIBUTE and not self.attribute:
            raise InvalidRequestError(url, f"extraction rule '{self.name}' needs an attribute name")
        if self.locator is LocatorKind.REGEX:
            try:
                re.compile(self.query)
            except re.error as e:
                raise InvalidRequestError(url, f"extraction rule '{self.name}' has a bad pattern: {e}") from e
        elif self.locator is LocatorKind.PATH:
            try:
                parse_jsonpath(self.query)
            except (JsonPathLexerError, JsonPathParserError) as e:
                raise InvalidRequestError(url, f"extraction rule '{self.name}' has a bad path query: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "locator": self.locator.value,
            "query": self.query,
            "transform": self.transform.value if self.transform else None,
            "attribute": self.attribute,
            "multiple": self.multiple,
            "required": self.required,
            "default": self.default,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExtractionRule:
        """Build a rule from either the canonical shape or the legacy one.

        The legacy shape names the locator by key (``selector``, ``jsonPath``
        or ``regex``) instead of ``locator``/``query``.
        """
        name = str(data.get("name", ""))
        if "locator" in data:
            locator = LocatorKind(data["locator"])
            query = str(data.get("query", ""))
        else:
            for key, kind in (("selector", LocatorKind.SELECTOR), ("jsonPath", LocatorKind.PATH), ("regex", LocatorKind.REGEX)):
                if data.get(key):
                    locator, query = kind, str(data[key])
                    break
            else:
                raise InvalidRequestError("", f"extraction rule '{name}' has no locator")

        transform_value = data.get("transform")
        if transform_value in ("custom",) or data.get("postProcess"):
            raise InvalidRequestError("", f"extraction rule '{name}' requests a custom transform, which is not supported")
        legacy_transforms = {"json": TransformKind.STRUCTURED}
        transform = None
        if transform_value:
            transform = legacy_transforms.get(transform_value) or TransformKind(transform_value)

        return cls(
            name=name,
            locator=locator,
            query=query,
            transform=transform,
            attribute=data.get("attribute"),
            multiple=bool(data.get("multiple", False)),
            required=bool(data.get("required", False)),
            default=data.get("default"),
        )


# ============================================================================
# Requests
# ============================================================================


@dataclass
class FetchRequest:
    """Input contract of the pipeline."""

    url: str
    method: FetchMethod = FetchMethod.AUTO
    timeout: float = 30.0
    retries: int = 3
    headers: Dict[str, str] = field(default_factory=dict)
    proxy: Optional[ProxyDescriptor] = None
    auth: Optional[AuthDescriptor] = None
    rules: List[ExtractionRule] = field(default_factory=list)
    wait_for_selector: Optional[str] = None
    extract_links: bool = True
    extract_images: bool = False
    screenshot: bool = False
    request_id: str = field(default_factory=lambda: uuid4().hex)

    def validate(self) -> None:
        """Reject malformed requests before any network activity."""
        if not is_absolute_url(self.url):
            raise InvalidRequestError(str(self.url), "url must be an absolute http(s) or ws(s) URI")
        if not isinstance(self.method, FetchMethod):
            raise InvalidRequestError(self.url, f"unknown method: {self.method!r}")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise InvalidRequestError(self.url, "timeout must be greater than zero")
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise InvalidRequestError(self.url, "retries must be a non-negative integer")
        if self.auth is not None:
            self.auth.validate(self.url)
        names: Set[str] = set()
        for rule in self.rules:
            rule.validate(self.url)
            if rule.name in names:
                raise InvalidRequestError(self.url, f"duplicate extraction rule name '{rule.name}'")
            names.add(rule.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method.value,
            "timeout": self.timeout,
            "retries": self.retries,
            "headers": dict(self.headers),
            "proxy": asdict(self.proxy) if self.proxy else None,
            "auth": self.auth.to_dict() if self.auth else None,
            "rules": [rule.to_dict() for rule in self.rules],
            "wait_for_selector": self.wait_for_selector,
            "extract_links": self.extract_links,
            "extract_images": self.extract_images,
            "screenshot": self.screenshot,
            "request_id": self.request_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FetchRequest:
        url = str(data.get("url", ""))
        try:
            method = FetchMethod.coerce(data.get("method", FetchMethod.AUTO.value))
        except ValueError as e:
            raise InvalidRequestError(url, f"unknown method: {data.get('method')!r}") from e
        kwargs: Dict[str, Any] = {
            "url": url,
            "method": method,
            "headers": dict(data.get("headers") or {}),
            "proxy": ProxyDescriptor.from_dict(data["proxy"]) if data.get("proxy") else None,
            "auth": AuthDescriptor.from_dict(data["auth"]) if data.get("auth") else None,
            "rules": [ExtractionRule.from_dict(rule) for rule in data.get("rules") or []],
            "wait_for_selector": data.get("wait_for_selector"),
        }
        for key in ("timeout", "retries", "extract_links", "extract_images", "screenshot", "request_id"):
            if data.get(key) is not None:
                kwargs[key] = data[key]
        return cls(**kwargs)


# ============================================================================
# Results
# ============================================================================


@dataclass
class PageMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    published: Optional[str] = None
    keywords: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PerformanceRecord:
    """Timing and attempt accounting for one request."""

    load_time_ms: float = 0.0
    attempts: int = 1
    method: FetchMethod = FetchMethod.STATIC
    proxy: Optional[str] = None
    from_cache: bool = False

    def __post_init__(self) -> None:
        if self.load_time_ms < 0:
            raise ValueError("Load time cannot be negative")


@dataclass
class FetchResult:
    """Output contract of the pipeline."""

    url: str
    method: FetchMethod
    final_url: str = ""
    status_code: int = 0
    content_type: str = ""
    content: str = ""
    text: str = ""
    markdown: str = ""
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    metadata: PageMetadata = field(default_factory=PageMetadata)
    fields: Dict[str, Any] = field(default_factory=dict)
    performance: PerformanceRecord = field(default_factory=PerformanceRecord)
    warnings: List[str] = field(default_factory=list)
    screenshot_path: Optional[str] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.method is FetchMethod.AUTO:
            raise ValueError("A result must record the method actually used")
        if not self.final_url:
            self.final_url = self.url

    def with_performance(self, **changes: Any) -> FetchResult:
        return replace(self, performance=replace(self.performance, **changes))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["method"] = self.method.value
        data["performance"]["method"] = self.performance.method.value
        data["fetched_at"] = self.fetched_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FetchResult:
        payload = dict(data)
        perf = dict(payload.get("performance") or {})
        if "method" in perf:
            perf["method"] = FetchMethod(perf["method"])
        payload["performance"] = PerformanceRecord(**perf)
        payload["metadata"] = PageMetadata(**(payload.get("metadata") or {}))
        payload["method"] = FetchMethod(payload["method"])
        if payload.get("fetched_at"):
            payload["fetched_at"] = datetime.fromisoformat(payload["fetched_at"])
        return cls(**payload)


@dataclass(frozen=True)
class CacheEntry:
    """A cached result and the absolute (monotonic) time it expires."""

    result: FetchResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


# ============================================================================
# Crawling
# ============================================================================


@dataclass
class CrawlConfig:
    """Crawl-session configuration plus the template for every page request."""

    seed_url: str
    max_pages: int = 10
    max_depth: int = 2
    same_domain_only: bool = True
    include_paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    method: FetchMethod = FetchMethod.AUTO
    timeout: float = 30.0
    retries: int = 3
    headers: Dict[str, str] = field(default_factory=dict)
    rules: List[ExtractionRule] = field(default_factory=list)
    extract_images: bool = False

    def validate(self) -> None:
        if not is_absolute_url(self.seed_url, schemes=("http", "https")):
            raise InvalidRequestError(str(self.seed_url), "seed url must be an absolute http(s) URI")
        if self.max_pages < 1:
            raise InvalidRequestError(self.seed_url, "max_pages must be at least 1")
        if self.max_depth < 0:
            raise InvalidRequestError(self.seed_url, "max_depth must not be negative")

    def request_for(self, url: str) -> FetchRequest:
        return FetchRequest(
            url=url,
            method=self.method,
            timeout=self.timeout,
            retries=self.retries,
            headers=dict(self.headers),
            rules=list(self.rules),
            extract_links=True,
            extract_images=self.extract_images,
        )


@dataclass
class CrawlState:
    """Mutable per-session state, owned exclusively by the crawler."""

    visited: Set[str] = field(default_factory=set)
    frontier: Deque[Tuple[str, int]] = field(default_factory=deque)
    discovered: Set[str] = field(default_factory=set)
    results: List[FetchResult] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    stopped: bool = False


# ============================================================================
# Distributed mode
# ============================================================================


@dataclass(frozen=True)
class QueueStatus:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class JobRecord:
    job_id: str
    status: JobStatus
    attempts: int
    request: FetchRequest
    result: Optional[FetchResult] = None
    error: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============================================================================
# Collaborators
# ============================================================================


@runtime_checkable
class ResultSink(Protocol):
    """Persistence collaborator receiving finished results."""

    async def store(self, result: FetchResult) -> None:
        ...

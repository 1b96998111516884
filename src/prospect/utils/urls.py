"""
URL canonicalization and filtering helpers.

Canonical URLs are the identity used by the result cache and by the
crawler's visited set, so two spellings of the same resource must map to
the same string:

- Lowercase scheme and host
- Strip default ports (80 for http/ws, 443 for https/wss)
- Empty path becomes ``/``; trailing slashes on other paths are removed
- Fragments are dropped, except ``#!`` hash-bang routes which address content
- Query strings are kept verbatim
"""

from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}
FETCHABLE_SCHEMES = frozenset(DEFAULT_PORTS)
LINK_SCHEMES = frozenset({"http", "https"})


def is_absolute_url(url: str, schemes: Iterable[str] = FETCHABLE_SCHEMES) -> bool:
    """Return True for a well-formed absolute URI with a supported scheme."""
    if not isinstance(url, str) or not url or any(ch.isspace() for ch in url):
        return False
    try:
        parts = urlsplit(url)
        # Accessing .port validates the numeric range
        parts.port
    except ValueError:
        return False
    return parts.scheme.lower() in set(schemes) and bool(parts.hostname)


def canonicalize_url(url: str) -> str:
    """Return the canonical spelling of ``url``."""
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()

    netloc = host
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{host}"
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    fragment = parts.fragment if parts.fragment.startswith("!") else ""
    return urlunsplit((scheme, netloc, path, parts.query, fragment))


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; None for non-http(s) targets.

    Fragments are dropped like in :func:`canonicalize_url`, hash-bang routes kept.
    """
    href = (href or "").strip()
    if not href or href.startswith(("javascript:", "mailto:", "tel:", "data:")):
        return None
    try:
        absolute = urljoin(base_url, href)
        parts = urlsplit(absolute)
    except ValueError:
        return None
    if parts.scheme.lower() not in LINK_SCHEMES or not parts.hostname:
        return None
    fragment = parts.fragment if parts.fragment.startswith("!") else ""
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", parts.query, fragment))


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def same_host(url: str, other: str) -> bool:
    return host_of(url) == host_of(other)


def path_matches(url: str, patterns: Iterable[str]) -> bool:
    """True when any pattern is a substring of the URL's path and query."""
    parts = urlsplit(url)
    target = parts.path + (f"?{parts.query}" if parts.query else "")
    return any(pattern and pattern in target for pattern in patterns)

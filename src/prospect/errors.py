"""
Typed error taxonomy for the acquisition pipeline.

Every failure surfaced to a caller is a :class:`FetchError` (or subclass)
carrying enough context to diagnose it without server-side logs: the URL,
the methods that were attempted, how many attempts were made and the
per-attempt history that led to a terminal failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorKind(Enum):
    """Failure categories recognised by the pipeline."""

    NETWORK = "network"
    HTTP = "http"
    TIMEOUT = "timeout"
    RENDER = "render"
    VALIDATION = "validation"
    EXTRACTION_PARTIAL = "extraction-partial"
    QUEUE_EXHAUSTED = "queue-exhausted"


# Kinds that trigger the fallback policy and retry rounds.
RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.HTTP, ErrorKind.TIMEOUT, ErrorKind.RENDER})


class FetchError(Exception):
    """A failed acquisition attempt, or the terminal failure of a request."""

    def __init__(
        self,
        kind: ErrorKind,
        url: str,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        attempted_methods: Optional[Sequence[str]] = None,
        attempts: int = 1,
        history: Optional[List["FetchError"]] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.url = url
        self.message = message or kind.value
        self.status_code = status_code
        self.attempted_methods: List[str] = list(attempted_methods or [])
        self.attempts = attempts
        self.history: List[FetchError] = list(history or [])
        self.retry_after = retry_after
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [f"{self.kind.value} error for {self.url}: {self.message}"]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.attempted_methods:
            parts.append(f"methods={','.join(self.attempted_methods)}")
        if self.attempts > 1:
            parts.append(f"attempts={self.attempts}")
        return " ".join(parts)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable payload for queues and callers."""
        return {
            "kind": self.kind.value,
            "url": self.url,
            "message": self.message,
            "status_code": self.status_code,
            "attempted_methods": list(self.attempted_methods),
            "attempts": self.attempts,
            "history": [
                {"kind": err.kind.value, "message": err.message, "methods": list(err.attempted_methods)}
                for err in self.history
            ],
        }


class InvalidRequestError(FetchError):
    """Malformed request, rejected before any network activity."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(ErrorKind.VALIDATION, url, message, attempts=0)


class RenderError(FetchError):
    """Headless-browser failure: ``render-timeout`` or ``render-crash``."""

    RENDER_TIMEOUT = "render-timeout"
    RENDER_CRASH = "render-crash"

    def __init__(self, url: str, reason: str, message: str = "", **kwargs: Any) -> None:
        self.reason = reason
        super().__init__(ErrorKind.RENDER, url, message or reason, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class QueueExhaustedError(FetchError):
    """A distributed job exceeded its attempt budget."""

    def __init__(self, url: str, attempts: int, last_error: Optional[Dict[str, Any]] = None) -> None:
        self.last_error = last_error or {}
        detail = self.last_error.get("message", "job failed")
        super().__init__(ErrorKind.QUEUE_EXHAUSTED, url, f"gave up after {attempts} attempts: {detail}", attempts=attempts)


@dataclass(frozen=True)
class ExtractionWarning:
    """Non-fatal failure of a single extraction rule."""

    rule: str
    reason: str
    kind: ErrorKind = ErrorKind.EXTRACTION_PARTIAL

    def __str__(self) -> str:
        return f"{self.kind.value}: rule '{self.rule}' {self.reason}"

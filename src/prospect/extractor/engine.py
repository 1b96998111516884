"""
Rule-driven field extraction over fetched content.

Each :class:`ExtractionRule` runs independently against the raw content of a
result. A rule locates zero or more matches (CSS selector, JSONPath query or
regular expression) and maps each match through one transform drawn from a
closed, statically registered set. A failing rule never aborts the pass: it
contributes its default value and an ``extraction-partial`` warning.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from bs4 import BeautifulSoup, Tag
from jsonpath_ng import parse as parse_jsonpath

from prospect.errors import ExtractionWarning
from prospect.protocols import ExtractionRule, LocatorKind, TransformKind

logger = structlog.get_logger(__name__)

PARSER = "html.parser"

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ExtractionOutcome:
    fields: Dict[str, Any] = field(default_factory=dict)
    warnings: List[ExtractionWarning] = field(default_factory=list)

    @property
    def warning_messages(self) -> List[str]:
        return [str(warning) for warning in self.warnings]


class _Document:
    """Lazily parsed views of one piece of content, shared by every rule."""

    def __init__(self, content: str):
        self.content = content
        self._soup: Optional[BeautifulSoup] = None
        self._json: Any = None
        self._json_loaded = False

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.content, PARSER)
        return self._soup

    @property
    def json(self) -> Any:
        if not self._json_loaded:
            self._json = json.loads(self.content)
            self._json_loaded = True
        return self._json


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


def _text(match: Any, rule: ExtractionRule) -> Any:
    if isinstance(match, Tag):
        return _WHITESPACE.sub(" ", match.get_text(" ")).strip()
    if isinstance(match, (dict, list)):
        return json.dumps(match)
    if match is None:
        return None
    return str(match).strip()


def _html(match: Any, rule: ExtractionRule) -> Any:
    if isinstance(match, Tag):
        return match.decode_contents().strip()
    return _text(match, rule)


def _attribute(match: Any, rule: ExtractionRule) -> Any:
    name = rule.attribute or ""
    if isinstance(match, Tag):
        value = match.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value
    if isinstance(match, dict):
        return match.get(name)
    raise ValueError(f"attribute transform cannot read '{name}' from {type(match).__name__}")


def _structured(match: Any, rule: ExtractionRule) -> Any:
    if isinstance(match, Tag):
        return json.loads(match.get_text())
    if isinstance(match, str):
        return json.loads(match)
    return match


TRANSFORMS: Dict[TransformKind, Callable[[Any, ExtractionRule], Any]] = {
    TransformKind.TEXT: _text,
    TransformKind.HTML: _html,
    TransformKind.ATTRIBUTE: _attribute,
    TransformKind.STRUCTURED: _structured,
}


def _identity(match: Any, rule: ExtractionRule) -> Any:
    return match


# Applied when a rule names no transform
DEFAULT_TRANSFORMS: Dict[LocatorKind, Callable[[Any, ExtractionRule], Any]] = {
    LocatorKind.SELECTOR: _text,
    LocatorKind.PATH: _identity,
    LocatorKind.REGEX: _identity,
}


# ---------------------------------------------------------------------------
# Locators
# ---------------------------------------------------------------------------


def _locate_selector(document: _Document, rule: ExtractionRule) -> List[Any]:
    if rule.multiple:
        return list(document.soup.select(rule.query))
    found = document.soup.select_one(rule.query)
    return [found] if found is not None else []


def _locate_path(document: _Document, rule: ExtractionRule) -> List[Any]:
    matches = [match.value for match in parse_jsonpath(rule.query).find(document.json)]
    return matches if rule.multiple else matches[:1]


def _locate_regex(document: _Document, rule: ExtractionRule) -> List[Any]:
    pattern = re.compile(rule.query)
    group = 1 if pattern.groups else 0
    if rule.multiple:
        return [match.group(group) for match in pattern.finditer(document.content)]
    found = pattern.search(document.content)
    return [found.group(group)] if found else []


LOCATORS: Dict[LocatorKind, Callable[[_Document, ExtractionRule], List[Any]]] = {
    LocatorKind.SELECTOR: _locate_selector,
    LocatorKind.PATH: _locate_path,
    LocatorKind.REGEX: _locate_regex,
}


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


class ExtractionEngine:
    """Applies extraction rules to content."""

    def extract(self, content: str, rules: Sequence[ExtractionRule]) -> ExtractionOutcome:
        outcome = ExtractionOutcome()
        if not rules:
            return outcome

        document = _Document(content or "")
        for rule in rules:
            try:
                value = self._apply(document, rule)
            except Exception as e:
                logger.warning("Extraction rule failed", rule=rule.name, error=str(e))
                outcome.fields[rule.name] = rule.default
                outcome.warnings.append(ExtractionWarning(rule.name, f"failed: {e}"))
                continue

            if _is_empty(value):
                if rule.required:
                    outcome.fields[rule.name] = rule.default
                    outcome.warnings.append(ExtractionWarning(rule.name, "matched nothing; default used"))
                else:
                    outcome.fields[rule.name] = None
                continue
            outcome.fields[rule.name] = value

        return outcome

    def _apply(self, document: _Document, rule: ExtractionRule) -> Any:
        matches = LOCATORS[rule.locator](document, rule)
        transform = TRANSFORMS[rule.transform] if rule.transform else DEFAULT_TRANSFORMS[rule.locator]
        values = [transform(match, rule) for match in matches]
        if rule.multiple:
            return [value for value in values if value is not None]
        return values[0] if values else None

"""Tests for rule-driven field extraction."""

import json

import pytest
import structlog.testing

from prospect.extractor import ExtractionEngine
from prospect.protocols import ExtractionRule, LocatorKind, TransformKind

PRODUCT_HTML = """
<html><head>
<script type="application/ld+json">{"@type": "Product", "sku": "A-17"}</script>
</head><body>
  <h1 class="name">  Trail   Shoe </h1>
  <div class="desc"><p>Light <em>and</em> fast</p></div>
  <span class="price" data-currency="EUR">89.00</span>
  <ul class="tags"><li>running</li><li>outdoor</li><li> </li></ul>
  <a class="next" href="/page/2" rel="next nofollow">next</a>
  <p>Order code SKU-1001 or SKU-2002.</p>
</body></html>
"""

API_JSON = json.dumps({"data": {"items": [{"id": 1, "name": "alpha"}, {"id": 2, "name": "beta"}], "total": 2}})


def rule(name, locator, query, **kwargs):
    return ExtractionRule(name=name, locator=locator, query=query, **kwargs)


@pytest.fixture
def engine():
    return ExtractionEngine()


@pytest.mark.unit
class TestSelectorRules:
    def test_text_is_default_transform(self, engine):
        outcome = engine.extract(PRODUCT_HTML, [rule("name", LocatorKind.SELECTOR, "h1.name")])
        assert outcome.fields == {"name": "Trail Shoe"}
        assert outcome.warnings == []

    def test_html_transform(self, engine):
        outcome = engine.extract(PRODUCT_HTML, [rule("desc", LocatorKind.SELECTOR, ".desc", transform=TransformKind.HTML)])
        assert outcome.fields["desc"] == "<p>Light <em>and</em> fast</p>"

    def test_attribute_transform(self, engine):
        rules = [
            rule("currency", LocatorKind.SELECTOR, ".price", transform=TransformKind.ATTRIBUTE, attribute="data-currency"),
            rule("rel", LocatorKind.SELECTOR, "a.next", transform=TransformKind.ATTRIBUTE, attribute="rel"),
        ]
        outcome = engine.extract(PRODUCT_HTML, rules)
        assert outcome.fields == {"currency": "EUR", "rel": "next nofollow"}

    def test_multiple_collects_all_matches(self, engine):
        outcome = engine.extract(PRODUCT_HTML, [rule("tags", LocatorKind.SELECTOR, ".tags li", multiple=True)])
        assert outcome.fields["tags"] == ["running", "outdoor", ""]

    def test_structured_transform_parses_json(self, engine):
        outcome = engine.extract(
            PRODUCT_HTML,
            [rule("ld", LocatorKind.SELECTOR, 'script[type="application/ld+json"]', transform=TransformKind.STRUCTURED)],
        )
        assert outcome.fields["ld"] == {"@type": "Product", "sku": "A-17"}


@pytest.mark.unit
class TestPathAndRegexRules:
    def test_path_single_and_multiple(self, engine):
        rules = [
            rule("total", LocatorKind.PATH, "$.data.total"),
            rule("names", LocatorKind.PATH, "$.data.items[*].name", multiple=True),
            rule("first", LocatorKind.PATH, "$.data.items[*]"),
        ]
        outcome = engine.extract(API_JSON, rules)
        assert outcome.fields == {"total": 2, "names": ["alpha", "beta"], "first": {"id": 1, "name": "alpha"}}

    def test_path_with_attribute_reads_mapping_key(self, engine):
        outcome = engine.extract(
            API_JSON,
            [rule("ids", LocatorKind.PATH, "$.data.items[*]", transform=TransformKind.ATTRIBUTE, attribute="id", multiple=True)],
        )
        assert outcome.fields["ids"] == [1, 2]

    def test_regex_uses_first_group(self, engine):
        rules = [
            rule("sku", LocatorKind.REGEX, r"SKU-(\d+)"),
            rule("skus", LocatorKind.REGEX, r"SKU-(\d+)", multiple=True),
            rule("whole", LocatorKind.REGEX, r"SKU-\d+"),
        ]
        outcome = engine.extract(PRODUCT_HTML, rules)
        assert outcome.fields == {"sku": "1001", "skus": ["1001", "2002"], "whole": "SKU-1001"}


@pytest.mark.unit
class TestPartialFailure:
    def test_required_rule_without_match_uses_default_and_warns(self, engine):
        rules = [
            rule("name", LocatorKind.SELECTOR, "h1.name"),
            rule("rating", LocatorKind.SELECTOR, ".rating", required=True, default="n/a"),
        ]
        outcome = engine.extract(PRODUCT_HTML, rules)
        assert outcome.fields == {"name": "Trail Shoe", "rating": "n/a"}
        assert outcome.warning_messages == ["extraction-partial: rule 'rating' matched nothing; default used"]

    def test_optional_rule_without_match_is_none(self, engine):
        outcome = engine.extract(PRODUCT_HTML, [rule("rating", LocatorKind.SELECTOR, ".rating", default="n/a")])
        assert outcome.fields == {"rating": None}
        assert outcome.warnings == []

    def test_failing_rule_does_not_abort_others(self, engine):
        rules = [
            rule("broken", LocatorKind.PATH, "$.data", default={}),
            rule("name", LocatorKind.SELECTOR, "h1.name"),
        ]
        outcome = engine.extract(PRODUCT_HTML, rules)
        assert outcome.fields == {"broken": {}, "name": "Trail Shoe"}
        assert len(outcome.warnings) == 1
        assert outcome.warnings[0].rule == "broken"
        assert outcome.warnings[0].reason.startswith("failed:")

    def test_attribute_on_plain_match_fails_rule(self, engine):
        outcome = engine.extract(
            PRODUCT_HTML,
            [rule("bad", LocatorKind.REGEX, r"SKU-\d+", transform=TransformKind.ATTRIBUTE, attribute="href", default="x")],
        )
        assert outcome.fields == {"bad": "x"}
        assert "attribute transform" in outcome.warning_messages[0]

    def test_no_rules(self, engine):
        outcome = engine.extract(PRODUCT_HTML, [])
        assert outcome.fields == {}
        assert outcome.warnings == []

    def test_failing_rule_logged_as_structured_event(self, engine):
        with structlog.testing.capture_logs() as logs:
            engine.extract(PRODUCT_HTML, [rule("broken", LocatorKind.PATH, "$.data", default={})])
        failed = [entry for entry in logs if entry["event"] == "Extraction rule failed"]
        assert len(failed) == 1
        assert failed[0]["log_level"] == "warning"
        assert failed[0]["rule"] == "broken"
        assert failed[0]["error"]

"""Tests for URL canonicalisation and link helpers."""

import pytest

from prospect.utils.urls import canonicalize_url, host_of, is_absolute_url, path_matches, resolve_link, same_host


@pytest.mark.unit
class TestIsAbsoluteUrl:
    @pytest.mark.parametrize(
        "url",
        ["http://example.test/", "https://example.test/a?b=1", "wss://feed.example.test/live", "http://example.test:8080"],
    )
    def test_accepts_supported_schemes(self, url):
        assert is_absolute_url(url)

    @pytest.mark.parametrize(
        "url",
        ["", "/relative/path", "ftp://example.test/file", "example.test", "http:///nohost", "http://exa mple.test/"],
    )
    def test_rejects_malformed(self, url):
        assert not is_absolute_url(url)

    def test_rejects_out_of_range_port(self):
        assert not is_absolute_url("http://example.test:99999/")

    def test_scheme_filter(self):
        assert not is_absolute_url("ws://example.test/", schemes=("http", "https"))


@pytest.mark.unit
class TestCanonicalizeUrl:
    def test_lowercases_scheme_and_host_and_strips_default_port(self):
        assert canonicalize_url("HTTP://Example.TEST:80/Docs/") == "http://example.test/Docs"

    def test_empty_path_becomes_slash(self):
        assert canonicalize_url("https://example.test") == "https://example.test/"

    def test_keeps_non_default_port_and_query(self):
        assert canonicalize_url("https://example.test:8443/x?b=2&a=1#frag") == "https://example.test:8443/x?b=2&a=1"

    def test_keeps_hashbang_route(self):
        assert canonicalize_url("https://example.test/app#!/inbox") == "https://example.test/app#!/inbox"

    def test_spellings_collapse_to_one_key(self):
        variants = ["https://example.test/a/", "HTTPS://EXAMPLE.test:443/a", "https://example.test/a#top"]
        assert {canonicalize_url(v) for v in variants} == {"https://example.test/a"}


@pytest.mark.unit
class TestLinks:
    def test_resolve_relative(self):
        assert resolve_link("../b", "https://x.test/a/c") == "https://x.test/b"

    def test_resolve_drops_fragment(self):
        assert resolve_link("page#section", "https://x.test/dir/") == "https://x.test/dir/page"

    def test_resolve_keeps_hashbang_route(self):
        assert resolve_link("#!/inbox", "https://mail.x.test/") == "https://mail.x.test/#!/inbox"
        assert resolve_link("/app#!/settings", "https://mail.x.test/") == canonicalize_url("https://mail.x.test/app#!/settings")

    @pytest.mark.parametrize("href", ["", "javascript:void(0)", "mailto:a@b.test", "tel:123", "ftp://x.test/f"])
    def test_resolve_rejects_non_http(self, href):
        assert resolve_link(href, "https://x.test/") is None

    def test_host_helpers(self):
        assert host_of("https://Docs.Example.test:8443/a") == "docs.example.test"
        assert same_host("https://x.test/a", "http://X.test/b")
        assert not same_host("https://x.test/a", "https://y.x.test/")

    def test_path_matches_path_and_query(self):
        assert path_matches("https://x.test/docs/intro?lang=en", ["/docs"])
        assert path_matches("https://x.test/search?lang=en", ["lang=en"])
        assert not path_matches("https://x.test/blog", ["/docs", ""])

"""
Tests for proxyroute/matcher.py - match pattern compilation and URL matching.
"""
import pytest
from proxyroute.matcher import (
    ALL_URLS,
    ALLOWED_PROTOCOLS,
    AnyHost,
    ExactHost,
    PatternCache,
    PatternCompiler,
    SuffixHost,
    UrlMatcher,
    classify_host,
    compile_pattern,
    glob_to_regex,
    pattern_cache,
)


class TestUrlMatcherAllUrls:
    """Tests for <all_urls> pattern."""

    def test_all_urls_matches_http(self):
        assert UrlMatcher.test("<all_urls>", "http://example.com/page")

    def test_all_urls_matches_https(self):
        assert UrlMatcher.test("<all_urls>", "https://example.com/page")

    def test_all_urls_matches_any_domain(self):
        assert UrlMatcher.test("<all_urls>", "https://subdomain.google.com/search?q=test")

    def test_all_urls_does_not_parse_url(self):
        # Sentinel short-circuits before URL parsing
        assert UrlMatcher.test("<all_urls>", "not a url at all")

    def test_all_urls_compiled_sentinel(self):
        assert compile_pattern("<all_urls>") is ALL_URLS
        assert UrlMatcher.test(ALL_URLS, "ftp://example.com/file")


class TestUrlMatcherScheme:
    """Tests for scheme matching."""

    def test_http_scheme_match(self):
        assert UrlMatcher.test("http://*/*", "http://example.com/path")

    def test_http_scheme_no_match_https(self):
        assert not UrlMatcher.test("http://*/*", "https://example.com/path")

    def test_https_scheme_match(self):
        assert UrlMatcher.test("https://*/*", "https://example.com/path")

    def test_wildcard_scheme_matches_http(self):
        assert UrlMatcher.test("*://example.com/*", "http://example.com/a")

    def test_wildcard_scheme_matches_https(self):
        assert UrlMatcher.test("*://example.com/*", "https://example.com/a")

    def test_wildcard_scheme_rejects_other_protocols(self):
        assert not UrlMatcher.test("*://*/*", "ftp://example.com/file")
        assert not UrlMatcher.test("*://*/*", "ws://example.com/socket")

    def test_url_without_protocol_no_match(self):
        assert not UrlMatcher.test("*://*/*", "example.com/path")

    def test_uppercase_url_scheme(self):
        assert UrlMatcher.test("http://*/*", "HTTP://example.com/path")


class TestUrlMatcherHost:
    """Tests for host matching."""

    def test_exact_host_match(self):
        assert UrlMatcher.test("https://example.com/*", "https://example.com/page")

    def test_exact_host_no_match(self):
        assert not UrlMatcher.test("https://example.com/*", "https://other.com/page")

    def test_exact_host_is_case_sensitive(self):
        assert not UrlMatcher.test("https://example.com/*", "https://Example.com/page")

    def test_wildcard_host_match(self):
        assert UrlMatcher.test("https://*/*", "https://any-domain.com/page")

    def test_subdomain_wildcard_match(self):
        assert UrlMatcher.test("http://*.example.com/*", "http://foo.example.com/x")

    def test_subdomain_wildcard_exact_domain(self):
        assert UrlMatcher.test("http://*.example.com/*", "http://example.com/x")

    def test_subdomain_wildcard_protocol_mismatch(self):
        assert not UrlMatcher.test("http://*.example.com/*", "https://foo.example.com/x")

    def test_subdomain_wildcard_nested(self):
        assert UrlMatcher.test("https://*.example.com/*", "https://deep.sub.example.com/page")

    def test_subdomain_wildcard_no_match_different_domain(self):
        assert not UrlMatcher.test("https://*.example.com/*", "https://example.org/page")

    def test_subdomain_wildcard_requires_label_boundary(self):
        assert not UrlMatcher.test("https://*.example.com/*", "https://badexample.com/page")

    def test_host_ignores_userinfo(self):
        assert UrlMatcher.test("https://example.com/*", "https://user:pw@example.com/page")


class TestUrlMatcherPort:
    """Tests for port matching (remote = host[:port])."""

    def test_explicit_port_match(self):
        assert UrlMatcher.test("http://localhost:3000/*", "http://localhost:3000/page")

    def test_explicit_port_no_match(self):
        assert not UrlMatcher.test("http://localhost:3000/*", "http://localhost:8080/page")

    def test_port_pattern_without_url_port(self):
        assert not UrlMatcher.test("http://localhost:3000/*", "http://localhost/page")

    def test_url_port_without_pattern_port(self):
        assert not UrlMatcher.test("http://example.com/*", "http://example.com:8080/page")

    def test_suffix_host_with_port(self):
        assert UrlMatcher.test("http://*.example.com:8080/*", "http://a.example.com:8080/x")
        assert not UrlMatcher.test("http://*.example.com:8080/*", "http://a.example.com/x")

    def test_port_compared_as_written(self):
        assert UrlMatcher.test("http://example.com:0080/*", "http://example.com:0080/x")
        assert not UrlMatcher.test("http://example.com:0080/*", "http://example.com:80/x")


class TestUrlMatcherPath:
    """Tests for path matching."""

    def test_wildcard_path_match(self):
        assert UrlMatcher.test("https://example.com/*", "https://example.com/any/path/here")

    def test_prefix_path_match(self):
        assert UrlMatcher.test("http://example.com/foo/*", "http://example.com/foo/bar/baz")

    def test_prefix_path_no_match(self):
        assert not UrlMatcher.test("http://example.com/foo/*", "http://example.com/fob/bar")

    def test_exact_path_match(self):
        assert UrlMatcher.test("https://example.com/page", "https://example.com/page")

    def test_exact_path_is_anchored(self):
        assert not UrlMatcher.test("https://example.com/page", "https://example.com/page2")
        assert not UrlMatcher.test("https://example.com/page", "https://example.com/x/page")

    def test_question_mark_single_char(self):
        assert UrlMatcher.test("http://example.com/foo?", "http://example.com/food")

    def test_question_mark_not_multi_char(self):
        assert not UrlMatcher.test("http://example.com/foo?", "http://example.com/foo12")

    def test_question_mark_requires_a_char(self):
        assert not UrlMatcher.test("http://example.com/foo?", "http://example.com/foo")

    def test_multiple_stars(self):
        assert UrlMatcher.test("http://example.com/*/v?/*.json", "http://example.com/api/v2/users.json")
        assert not UrlMatcher.test("http://example.com/*/v?/*.json", "http://example.com/api/v2/users.xml")

    def test_regex_metacharacters_are_literal(self):
        assert UrlMatcher.test("http://example.com/a.b+(c)", "http://example.com/a.b+(c)")
        assert not UrlMatcher.test("http://example.com/a.b", "http://example.com/aXb")

    def test_root_path_for_bare_host(self):
        assert UrlMatcher.test("http://example.com/", "http://example.com")

    def test_query_not_part_of_path(self):
        assert UrlMatcher.test("https://example.com/search", "https://example.com/search?q=test&page=1")

    def test_fragment_not_part_of_path(self):
        assert UrlMatcher.test("https://example.com/page", "https://example.com/page#section")


class TestUrlMatcherInvalidPatterns:
    """Structurally invalid patterns never match and never raise."""

    @pytest.mark.parametrize("pattern", [
        "notaurl",
        "http//example.com/*",
        "",
        "ftp://example.com/*",
        "http://example.com",
        "http:///path",
        "http://*.example.com",
        "http://*./*",
        "http://ex*ample.com/*",
        "http://*foo.com/*",
        "httphttp://example.com/*",
        None,
        123,
        ["http://*/*"],
    ])
    def test_invalid_pattern_never_matches(self, pattern):
        assert PatternCompiler.compile(pattern) is None
        for url in ("http://example.com/", "https://example.com/a", "notaurl"):
            assert UrlMatcher.test(pattern, url) is False


class TestUrlMatcherMalformedUrls:
    @pytest.mark.parametrize("url", [
        "not a url at all",
        "",
        None,
        "http://",
        "http://example.com:99999/x",
        "http://example.com:abc/x",
        "http://[::1/x",
    ])
    def test_malformed_url_returns_false(self, url):
        assert UrlMatcher.test("*://*/*", url) is False


class TestUrlMatcherAlias:
    def test_match_is_alias_of_test(self):
        assert UrlMatcher.match("*://*.google.com/*", "https://www.google.com/search?q=test")
        assert not UrlMatcher.match("*://*.google.com/*", "https://www.bing.com/")


class TestPatternCompiler:
    def test_wildcard_scheme_expands(self):
        compiled = PatternCompiler.compile("*://example.com/*")
        assert compiled.protocols == frozenset(ALLOWED_PROTOCOLS)

    def test_literal_scheme(self):
        compiled = PatternCompiler.compile("https://example.com/*")
        assert compiled.protocols == frozenset(["https"])

    def test_host_stored_raw(self):
        compiled = PatternCompiler.compile("http://*.example.com:8080/x")
        assert compiled.host == "*.example.com:8080"

    def test_host_spec_classification(self):
        assert isinstance(PatternCompiler.compile("http://*/x").host_spec, AnyHost)
        assert PatternCompiler.compile("http://*.a.com/x").host_spec == SuffixHost("a.com")
        assert PatternCompiler.compile("http://a.com:81/x").host_spec == ExactHost("a.com:81")

    def test_compilation_is_deterministic(self):
        first = PatternCompiler.compile("*://*.example.com/foo/*?")
        second = PatternCompiler.compile("*://*.example.com/foo/*?")
        assert first is not second
        assert first == second

    def test_independent_compilations_behave_identically(self):
        first = PatternCompiler.compile("http://*.example.com/a?/*")
        second = PatternCompiler.compile("http://*.example.com/a?/*")
        urls = [
            "http://example.com/ab/c",
            "http://x.example.com/a/c",
            "http://x.example.com/ab/",
            "https://x.example.com/ab/c",
            "http://example.org/ab/c",
        ]
        assert [UrlMatcher.test(first, u) for u in urls] == [UrlMatcher.test(second, u) for u in urls]


class TestClassifyHost:
    def test_any_host(self):
        assert classify_host("*") == AnyHost()

    def test_suffix_host(self):
        spec = classify_host("*.example.com")
        assert spec == SuffixHost("example.com")
        assert spec.matches("example.com")
        assert spec.matches("a.b.example.com")
        assert not spec.matches("notexample.com")

    def test_exact_host(self):
        spec = classify_host("example.com:8080")
        assert spec.matches("example.com:8080")
        assert not spec.matches("example.com")


class TestGlobToRegex:
    def test_star_matches_empty(self):
        assert glob_to_regex("/foo*").match("/foo")

    def test_question_mark_exactly_one(self):
        regex = glob_to_regex("/?")
        assert regex.match("/a")
        assert not regex.match("/")
        assert not regex.match("/ab")

    def test_anchored_against_trailing_newline(self):
        assert not glob_to_regex("/foo").match("/foo\n")

    def test_escapes_metacharacters(self):
        regex = glob_to_regex("/[a]$^{1}|\\")
        assert regex.match("/[a]$^{1}|\\")
        assert not regex.match("/a")


class TestPatternCache:
    def test_cache_reuses_compilation(self):
        first = compile_pattern("http://example.com/*")
        second = compile_pattern("http://example.com/*")
        assert first is second
        assert "http://example.com/*" in pattern_cache

    def test_invalid_patterns_are_cached(self):
        assert compile_pattern("notaurl") is None
        assert "notaurl" in pattern_cache

    def test_evicts_oldest_entry(self):
        cache = PatternCache(maxsize=2)
        cache.get("http://a.com/*")
        cache.get("http://b.com/*")
        cache.get("http://c.com/*")
        assert len(cache) == 2
        assert "http://a.com/*" not in cache
        assert "http://c.com/*" in cache

    def test_disabled_cache(self):
        cache = PatternCache(maxsize=0)
        assert cache.get("http://a.com/*") == cache.get("http://a.com/*")
        assert len(cache) == 0

    def test_non_string_key(self):
        cache = PatternCache()
        assert cache.get(["http://a.com/*"]) is None

    def test_resize_clears(self):
        compile_pattern("http://example.com/*")
        pattern_cache.resize(10)
        assert len(pattern_cache) == 0
        assert pattern_cache.maxsize == 10

"""Unit tests for fetch resolution and URL validation."""

import pytest

from vesper.ingestion.errors import ValidationError
from vesper.ingestion.interfaces import ProxyRoute
from vesper.ingestion.resolver import FetchResolver, flip_protocol, normalize_url
from vesper.ingestion.validation import is_private_host, validate_feed_url


class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_adds_scheme(self):
        assert normalize_url("example.com/feed") == "https://example.com/feed"

    def test_feed_scheme(self):
        assert normalize_url("feed://example.com/rss") == "https://example.com/rss"

    def test_lowercases_host_and_drops_fragment(self):
        assert normalize_url("  HTTPS://Example.COM/Feed?x=1#top ") == "https://example.com/Feed?x=1"

    def test_empty_path(self):
        assert normalize_url("https://example.com") == "https://example.com/"

    @pytest.mark.parametrize("url", [
        "",
        "ftp://example.com/feed",
        "file:///etc/passwd",
        "http://localhost/feed",
        "http://127.0.0.1:8080/rss",
        "http://192.168.1.10/rss",
        "http://10.0.0.5/rss",
        "http://172.20.0.1/rss",
        "http://169.254.169.254/latest",
        "http://[::1]/rss",
        "http://metadata.internal/rss",
        "http://printer.local/rss",
    ])
    def test_rejected(self, url):
        """Non-http schemes and private hosts are refused."""
        with pytest.raises(ValidationError):
            normalize_url(url)


class TestPrivateHosts:
    """Tests for the private-host block list."""

    def test_public_hosts_allowed(self):
        assert is_private_host("example.com") is False
        assert is_private_host("8.8.8.8") is False
        assert is_private_host("172.32.0.1") is False

    def test_private_hosts_blocked(self):
        for host in ("localhost", "ip6-localhost", "127.0.0.1", "::1", "10.1.2.3",
                     "192.168.0.1", "172.16.0.1", "172.31.255.255", "169.254.1.1",
                     "db.internal", "nas.local"):
            assert is_private_host(host) is True, host

    def test_validate_returns_url(self):
        assert validate_feed_url("https://example.com/rss") == "https://example.com/rss"


class TestCandidates:
    """Tests for URL candidate generation."""

    def test_plain_url(self):
        resolver = FetchResolver()
        urls = [c.url for c in resolver.candidates("https://example.com/feed")]
        assert urls == ["https://example.com/feed", "http://example.com/feed"]

    def test_reasons(self):
        candidates = FetchResolver().candidates("http://example.com/feed")
        assert [c.reason for c in candidates] == ["primary", "protocol_flip"]

    def test_feedburner_quirk(self):
        """FeedBurner gets format=xml and the canonical host, then flips."""
        urls = [c.url for c in FetchResolver().candidates("http://feeds2.feedburner.com/~r/Example/")]
        assert urls == [
            "http://feeds2.feedburner.com/~r/Example/",
            "http://feeds2.feedburner.com/~r/Example/?format=xml",
            "http://feeds.feedburner.com/Example?format=xml",
            "https://feeds2.feedburner.com/~r/Example/",
            "https://feeds2.feedburner.com/~r/Example/?format=xml",
            "https://feeds.feedburner.com/Example?format=xml",
        ]

    def test_feedburner_with_format_untouched(self):
        urls = [c.url for c in FetchResolver().candidates("https://feeds.feedburner.com/Example?format=rss")]
        assert urls == [
            "https://feeds.feedburner.com/Example?format=rss",
            "http://feeds.feedburner.com/Example?format=rss",
        ]

    def test_no_duplicates(self):
        """Quirk rewrites that equal an earlier candidate are dropped."""
        urls = [c.url for c in FetchResolver().candidates("https://feeds.feedburner.com/Example")]
        assert len(urls) == len(set(urls))
        assert urls[0] == "https://feeds.feedburner.com/Example"
        assert "https://feeds.feedburner.com/Example?format=xml" in urls


class TestProxyRoutes:
    """Tests for proxy route ordering."""

    def test_direct_when_unconfigured(self, test_settings):
        routes = FetchResolver(test_settings).proxy_routes()
        assert [r.kind for r in routes] == ["direct"]

    def test_prefer_external(self, proxy_settings):
        routes = FetchResolver(proxy_settings).proxy_routes(prefer_external=True)
        assert [r.name for r in routes] == ["relay", "first_party"]

    def test_prefer_first_party(self, proxy_settings):
        routes = FetchResolver(proxy_settings).proxy_routes(prefer_external=False)
        assert [r.name for r in routes] == ["first_party", "relay"]

    def test_refresh_forces_first_party(self, proxy_settings):
        """An explicit refresh never prefers the external relay."""
        plan = FetchResolver(proxy_settings).plan("https://example.com/feed", refresh=True)
        assert all(routes[0].name == "first_party" for _, routes in plan)

    def test_default_plan_prefers_external(self, proxy_settings):
        plan = FetchResolver(proxy_settings).plan("https://example.com/feed")
        candidate, routes = plan[0]
        assert candidate.url == "https://example.com/feed"
        assert routes[0].name == "relay"

    def test_request_urls(self):
        target = "https://example.com/feed?a=1&b=2"
        first_party = ProxyRoute("first_party", "first_party", "https://proxy.example.net/api/fetch-feed")
        relay = ProxyRoute("relay", "relay", "https://relay.example.org/raw?url=")
        direct = ProxyRoute("direct", "direct")

        assert first_party.request_url(target, refresh=True) == (
            "https://proxy.example.net/api/fetch-feed"
            "?url=https%3A%2F%2Fexample.com%2Ffeed%3Fa%3D1%26b%3D2&refresh=true"
        )
        assert relay.request_url(target) == (
            "https://relay.example.org/raw?url=https%3A%2F%2Fexample.com%2Ffeed%3Fa%3D1%26b%3D2"
        )
        assert direct.request_url(target) == target


def test_flip_protocol():
    assert flip_protocol("https://a.com/") == "http://a.com/"
    assert flip_protocol("http://a.com/") == "https://a.com/"

"""Fetch resolution: URL variants and proxy routes for a subscription."""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from .errors import ValidationError
from .interfaces import FetchCandidate, ProxyRoute
from .validation import validate_feed_url
from ..config.settings import Settings, settings as default_settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class HostQuirk:
    """URL rewrite for a syndication host with non-standard requirements."""
    name: str
    hosts: Tuple[str, ...]
    rewrite: Callable[[str], List[str]]


def _feedburner_variants(url: str) -> List[str]:
    """FeedBurner serves HTML unless ``format=xml`` is given.

    Legacy hosts and ``~r/`` redirect paths are rewritten onto the canonical
    ``feeds.feedburner.com/<name>`` form.
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == "format" for key, _ in query):
        return []

    with_format = urlencode(query + [("format", "xml")])
    variants = [urlunsplit((parts.scheme, parts.netloc, parts.path, with_format, ""))]

    path = re.sub(r"^/~r/", "/", parts.path)
    name = path.strip("/").split("/")[0] if path.strip("/") else ""
    if name:
        variants.append(
            urlunsplit((parts.scheme, "feeds.feedburner.com", f"/{name}", with_format, ""))
        )
    return variants


HOST_QUIRKS: List[HostQuirk] = [
    HostQuirk(
        name="feedburner",
        hosts=("feeds.feedburner.com", "feeds2.feedburner.com", "feedproxy.google.com"),
        rewrite=_feedburner_variants,
    ),
]


def normalize_url(url: str) -> str:
    """Canonical form of a subscription URL.

    Raises:
        ValidationError: not an absolute public http(s) URL after normalization.
    """
    url = (url or "").strip()
    if not url:
        raise ValidationError("Feed URL is empty")

    if url.lower().startswith("feed://"):
        url = "https://" + url[len("feed://"):]
    elif "://" not in url:
        url = "https://" + url

    try:
        parts = urlsplit(url)
    except ValueError:
        raise ValidationError(f"Invalid URL: {url!r}")

    netloc = parts.netloc.lower()
    path = parts.path or "/"
    normalized = urlunsplit((parts.scheme.lower(), netloc, path, parts.query, ""))
    return validate_feed_url(normalized)


def flip_protocol(url: str) -> str:
    """https -> http and http -> https."""
    if url.startswith("https://"):
        return "http://" + url[len("https://"):]
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


class FetchResolver:
    """Plans which URLs to try, and through which proxies, for one feed."""

    def __init__(self, settings: Settings = None, quirks: List[HostQuirk] = None):
        self.settings = settings or default_settings
        self.quirks = HOST_QUIRKS if quirks is None else quirks

    def candidates(self, url: str) -> List[FetchCandidate]:
        """Ordered, de-duplicated URL variants: primary, quirks, protocol flips."""
        primary = normalize_url(url)
        ordered: List[FetchCandidate] = [FetchCandidate(primary, "primary")]

        host = urlsplit(primary).hostname or ""
        for quirk in self.quirks:
            if host in quirk.hosts:
                ordered.extend(FetchCandidate(v, quirk.name) for v in quirk.rewrite(primary))

        flipped = [FetchCandidate(flip_protocol(c.url), "protocol_flip") for c in ordered]

        seen = set()
        unique = []
        for candidate in ordered + flipped:
            if candidate.url not in seen:
                seen.add(candidate.url)
                unique.append(candidate)
        return unique

    def proxy_routes(self, prefer_external: Optional[bool] = None) -> List[ProxyRoute]:
        """Proxy routes in the order they should be attempted."""
        if prefer_external is None:
            prefer_external = self.settings.prefer_external_proxy

        first_party = (
            ProxyRoute("first_party", "first_party", self.settings.proxy_url)
            if self.settings.proxy_url else None
        )
        relay = (
            ProxyRoute("relay", "relay", self.settings.relay_url)
            if self.settings.relay_url else None
        )

        ordered = [relay, first_party] if prefer_external else [first_party, relay]
        routes = [r for r in ordered if r is not None]
        return routes or [ProxyRoute("direct", "direct")]

    def plan(self, url: str, refresh: bool = False) -> List[Tuple[FetchCandidate, List[ProxyRoute]]]:
        """Candidate/route matrix for one fetch.

        An explicit refresh prefers the first-party proxy, which honours
        ``refresh=true`` and bypasses its cache.
        """
        routes = self.proxy_routes(prefer_external=False if refresh else None)
        plan = [(candidate, list(routes)) for candidate in self.candidates(url)]
        logger.debug(
            "fetch_plan",
            url=url,
            candidates=[c.url for c, _ in plan],
            routes=[r.name for r in routes],
        )
        return plan

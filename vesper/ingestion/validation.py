"""URL checks shared by the fetch resolver and the transport proxy."""

import ipaddress
from urllib.parse import urlsplit

from .errors import ValidationError

ALLOWED_SCHEMES = ("http", "https")
BLOCKED_HOSTNAMES = {"localhost", "ip6-localhost", "ip6-loopback"}
BLOCKED_SUFFIXES = (".internal", ".local", ".localhost")


def is_private_host(hostname: str) -> bool:
    """True for loopback, private, link-local and internal-only hosts."""
    host = (hostname or "").strip("[]").lower().rstrip(".")
    if not host:
        return True
    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_SUFFIXES):
        return True

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False

    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
    )


def validate_feed_url(url: str) -> str:
    """Return the URL if it is an absolute, public http(s) URL.

    Raises:
        ValidationError: malformed URL, unsupported scheme or private host.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        raise ValidationError(f"Invalid URL: {url!r}")

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError(f"Only http and https URLs are supported: {url!r}")
    if not hostname:
        raise ValidationError(f"URL has no host: {url!r}")
    if is_private_host(hostname):
        raise ValidationError(f"Target host is not allowed: {hostname}")
    return url


def is_absolute_http_url(url: str) -> bool:
    """True when ``url`` parses as an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(url)
        return parts.scheme.lower() in ALLOWED_SCHEMES and bool(parts.hostname)
    except ValueError:
        return False

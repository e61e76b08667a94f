"""Transport proxy: fetches a feed on behalf of a browser client.

Only public http(s) targets are allowed, the response body is capped and
the upstream request is bounded by a timeout. Non-2xx upstream statuses
are relayed to the caller.
"""

import asyncio
from typing import Optional, Tuple
from urllib.parse import urljoin, urlsplit

import aiohttp
import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import Response

from ..config.settings import Settings, settings as default_settings
from ..ingestion.fetcher import FEED_ACCEPT
from ..ingestion.validation import ALLOWED_SCHEMES, is_private_host

logger = structlog.get_logger()

MAX_REDIRECTS = 5
CHUNK_SIZE = 64 * 1024


class PayloadTooLarge(Exception):
    """Upstream body exceeded the byte cap."""


class BlockedRedirect(Exception):
    """Upstream redirected to a disallowed or unsupported location."""


async def fetch_upstream(url: str, refresh: bool, settings: Settings) -> Tuple[int, bytes]:
    """GET ``url`` and return (status, body), enforcing the byte cap.

    Redirects are followed by hand so every hop passes the host check.
    """
    headers = {"User-Agent": settings.user_agent, "Accept": FEED_ACCEPT}
    if refresh:
        headers["Cache-Control"] = "no-cache"

    timeout = aiohttp.ClientTimeout(total=settings.proxy_timeout_seconds)
    async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
        for _ in range(MAX_REDIRECTS + 1):
            async with session.get(url, allow_redirects=False) as response:
                if response.status in (301, 302, 303, 307, 308) and "Location" in response.headers:
                    url = urljoin(url, response.headers["Location"])
                    target = urlsplit(url)
                    if target.scheme not in ALLOWED_SCHEMES or is_private_host(target.hostname or ""):
                        raise BlockedRedirect(url)
                    continue

                if not 200 <= response.status < 300:
                    return response.status, b""

                length = response.content_length
                if length is not None and length > settings.proxy_max_bytes:
                    raise PayloadTooLarge(length)

                received = 0
                chunks = []
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    received += len(chunk)
                    if received > settings.proxy_max_bytes:
                        raise PayloadTooLarge(received)
                    chunks.append(chunk)
                return response.status, b"".join(chunks)

    raise aiohttp.ClientError(f"More than {MAX_REDIRECTS} redirects")


def create_app(settings: Settings = None) -> FastAPI:
    """Build the proxy application."""
    settings = settings or default_settings
    app = FastAPI(title="Vesper feed proxy")

    def respond(request: Request, content, status_code: int = 200,
                media_type: str = "text/plain; charset=utf-8", cache_control: str = None) -> Response:
        headers = {
            "Access-Control-Allow-Origin": (
                settings.proxy_allowed_origin or request.headers.get("origin") or "*"
            ),
            "Vary": "Origin",
        }
        if cache_control:
            headers["Cache-Control"] = cache_control
        return Response(content=content, status_code=status_code, media_type=media_type, headers=headers)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for load balancers."""
        return {"status": "healthy"}

    @app.get("/api/fetch-feed")
    async def fetch_feed(request: Request, url: Optional[str] = Query(None), refresh: str = "false"):
        """Relay a feed document: GET /api/fetch-feed?url=<target>&refresh=<bool>."""
        if not url:
            return respond(request, "Missing url parameter", 400)

        try:
            target = urlsplit(url)
            hostname = target.hostname
        except ValueError:
            return respond(request, "Invalid url parameter", 400)

        if target.scheme not in ALLOWED_SCHEMES or not hostname:
            return respond(request, "Only http/https allowed", 400)
        if is_private_host(hostname):
            logger.warning("proxy_blocked_host", host=hostname)
            return respond(request, "Target host is not allowed", 403)

        force = refresh == "true"
        try:
            status, body = await fetch_upstream(url, force, settings)
        except PayloadTooLarge:
            logger.warning("proxy_payload_too_large", url=url)
            return respond(request, "Feed too large", 413)
        except BlockedRedirect:
            logger.warning("proxy_blocked_redirect", url=url)
            return respond(request, "Redirect target is not allowed", 403)
        except asyncio.TimeoutError:
            logger.warning("proxy_timeout", url=url)
            return respond(
                request, f"Feed request timeout after {settings.proxy_timeout_seconds:g} seconds", 504
            )
        except aiohttp.ClientError as e:
            logger.error("proxy_fetch_failed", url=url, error=str(e))
            return respond(request, f"Failed to fetch feed: {e}", 502)

        if not 200 <= status < 300:
            return respond(request, f"Feed returned {status}", status)

        return respond(
            request,
            body.decode("utf-8", errors="replace"),
            media_type="application/xml; charset=utf-8",
            cache_control="no-cache, no-store, must-revalidate" if force else "max-age=3600",
        )

    return app


app = create_app()

"""Feed fetcher with request de-duplication, retries and proxy fallback."""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from .errors import (
    FetchError, FetchFailure, FetchTimeoutError, HttpStatusError, NetworkError, ParseError,
)
from .interfaces import (
    FetchCandidate, FetcherInterface, FetchResponse, NormalizedFeed, ProxyRoute,
)
from .normalizer import parse_document
from .resolver import FetchResolver, normalize_url
from ..config.settings import Settings, settings as default_settings

logger = structlog.get_logger()

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*;q=0.9"
FEED_PREFIXES = ("<?xml", "<rss", "<feed", "<rdf")
HTML_PREFIXES = ("<!doctype html", "<html")


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, FetchFailure) and error.retryable


def looks_like_html(response: FetchResponse) -> bool:
    """True when a response is an HTML page rather than feed content."""
    head = response.body.lstrip()[:64].lower()
    if head.startswith(HTML_PREFIXES):
        return True
    if "text/html" in (response.content_type or "").lower():
        return not head.startswith(FEED_PREFIXES)
    return False


class FeedFetcher(FetcherInterface):
    """Async feed fetcher.

    Concurrent non-forced fetches of the same normalized URL share one
    in-flight task. Each URL candidate is retried on network-class
    failures; within an attempt every proxy route is tried in order.
    """

    def __init__(
        self,
        settings: Settings = None,
        resolver: FetchResolver = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        self.resolver = resolver or FetchResolver(self.settings)
        self.session: Optional[aiohttp.ClientSession] = None
        self._sleep = sleep
        self._in_flight: Dict[str, asyncio.Task] = {}

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            headers={"User-Agent": self.settings.user_agent, "Accept": FEED_ACCEPT}
        )
        return self

    async def __aexit__(self, *args):
        if self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, url: str, refresh: bool = False) -> NormalizedFeed:
        """Fetch and normalize one feed.

        Raises:
            ValidationError: the URL is not a public http(s) URL.
            FetchError: every candidate and proxy route failed.
        """
        key = normalize_url(url)

        if not refresh:
            existing = self._in_flight.get(key)
            if existing is not None:
                logger.debug("fetch_joined_in_flight", url=key)
                return await asyncio.shield(existing)

        task = asyncio.ensure_future(self._fetch_candidates(key, refresh))
        self._in_flight[key] = task
        task.add_done_callback(lambda done, key=key: self._release(key, done))
        return await asyncio.shield(task)

    def in_flight(self) -> List[str]:
        """URLs with a fetch currently running."""
        return list(self._in_flight)

    def _release(self, key: str, task: asyncio.Task) -> None:
        # A forced fetch may have replaced the entry; only the inserter removes it
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _fetch_candidates(self, url: str, refresh: bool) -> NormalizedFeed:
        start_time = time.time()
        last_failure: Optional[FetchFailure] = None

        for candidate, routes in self.resolver.plan(url, refresh=refresh):
            try:
                feed = await self._fetch_with_retry(candidate, routes, refresh)
            except FetchFailure as e:
                last_failure = e
                logger.warning(
                    "fetch_candidate_exhausted",
                    url=candidate.url,
                    reason=candidate.reason,
                    kind=e.kind,
                    error=str(e),
                )
                continue

            logger.info(
                "feed_fetched",
                url=url,
                candidate=candidate.url,
                items=len(feed.items),
                time_ms=int((time.time() - start_time) * 1000),
            )
            return feed

        raise FetchError(url, last_failure) from last_failure

    async def _fetch_with_retry(
        self,
        candidate: FetchCandidate,
        routes: List[ProxyRoute],
        refresh: bool,
    ) -> NormalizedFeed:
        """Retry one candidate, waiting base delay x attempt; parse errors are not retried."""
        delay = self.settings.fetch_retry_base_delay
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.fetch_max_retries + 1),
            wait=wait_incrementing(start=delay, increment=delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(candidate, routes, refresh)

    async def _attempt(
        self,
        candidate: FetchCandidate,
        routes: List[ProxyRoute],
        refresh: bool,
    ) -> NormalizedFeed:
        """Try each proxy route once; fail with the last route's failure."""
        last_failure: Optional[FetchFailure] = None

        for route in routes:
            request_url = route.request_url(candidate.url, refresh=refresh)
            try:
                response = await self._get(request_url, refresh)
                if not 200 <= response.status < 300:
                    raise HttpStatusError(response.status, f"{route.name} returned HTTP {response.status}")
                if looks_like_html(response):
                    raise HttpStatusError(response.status, f"{route.name} returned an HTML page")
                return parse_document(response.body, response.content_type)
            except FetchFailure as e:
                last_failure = e
                logger.debug(
                    "fetch_attempt_failed",
                    url=candidate.url,
                    route=route.name,
                    kind=e.kind,
                    error=str(e),
                )

        raise last_failure or NetworkError(f"No proxy routes for {candidate.url}")

    async def _get(self, url: str, refresh: bool = False) -> FetchResponse:
        """One HTTP GET bounded by the per-attempt timeout."""
        if self.session is None:
            raise RuntimeError("FeedFetcher session not open. Use 'async with FeedFetcher()'.")

        headers = {"Cache-Control": "no-cache"} if refresh else {}
        timeout = aiohttp.ClientTimeout(total=self.settings.fetch_timeout_seconds)
        try:
            async with self.session.get(url, headers=headers, timeout=timeout) as response:
                body = await response.text(errors="replace")
                return FetchResponse(
                    status=response.status,
                    content_type=response.headers.get("Content-Type", ""),
                    body=body,
                )
        except asyncio.TimeoutError:
            raise FetchTimeoutError(
                f"Request timed out after {self.settings.fetch_timeout_seconds:g}s: {url}"
            )
        except aiohttp.ClientError as e:
            raise NetworkError(f"{type(e).__name__}: {e}")

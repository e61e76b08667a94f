"""Single-feed synchronization: fetch, diff, backfill, triage, persist."""

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit

import structlog

from ..config.settings import Settings, settings as default_settings
from ..ingestion.errors import ValidationError
from ..ingestion.interfaces import (
    Article, Feed, FetcherInterface, LinkBackfill, NormalizedFeed, NormalizedItem,
    StorageInterface, SyncResult, utcnow,
)
from ..ingestion.normalizer import to_iso
from ..ingestion.resolver import normalize_url
from ..ingestion.sanitizer import make_snippet, sanitize_html
from ..ingestion.validation import is_absolute_http_url
from ..search.tokenizer import index_terms

logger = structlog.get_logger()


class SyncState(Enum):
    """Stages of one feed refresh."""
    IDLE = "idle"
    FETCHING = "fetching"
    FETCHED = "fetched"
    DIFFING = "diffing"
    PERSISTED = "persisted"
    FETCH_FAILED = "fetch_failed"


def resolve_link(link: str, guid: str, bases: Iterable[str]) -> str:
    """Absolute http(s) link for an item, or "" when none resolves.

    The item's own link is tried first, then its GUID, each against every
    base URL in order.
    """
    bases = [b for b in bases if b]
    for raw in (link, guid):
        raw = (raw or "").strip()
        if not raw:
            continue
        for base in bases or [""]:
            try:
                resolved = urljoin(base, raw)
            except ValueError:
                continue
            if is_absolute_http_url(resolved):
                return resolved
    return ""


def resolve_guid(item: NormalizedItem) -> str:
    """Source GUID, else comments link, link or title, else a random token."""
    for value in (item.guid, item.comments, item.link, item.title):
        if value and value.strip():
            return value.strip()
    return uuid.uuid4().hex


def _date_key(article: Article) -> datetime:
    try:
        moment = datetime.fromisoformat(article.iso_date)
    except (TypeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def triage(articles: List[Article], unread_limit: int) -> Tuple[List[Article], List[Article]]:
    """Split new articles into (unread, archived) by recency.

    The ``unread_limit`` most recent stay unread; older ones are stored read
    so a first subscribe or long gap does not flood the inbox.
    """
    ordered = sorted(articles, key=_date_key, reverse=True)
    unread, archived = ordered[:unread_limit], ordered[unread_limit:]
    for article in unread:
        article.read = False
    for article in archived:
        article.read = True
    return unread, archived


class SyncEngine:
    """Refreshes one feed end to end.

    Holds a lock per feed id for the whole sync, so a manual "sync now" and
    a sweep worker never diff and insert the same feed at the same time.
    """

    def __init__(
        self,
        storage: StorageInterface,
        fetcher: FetcherInterface,
        settings: Settings = None,
        sanitizer: Callable[[str], str] = sanitize_html,
    ):
        self.storage = storage
        self.fetcher = fetcher
        self.settings = settings or default_settings
        self.sanitizer = sanitizer
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, feed_id: int) -> asyncio.Lock:
        return self._locks.setdefault(feed_id, asyncio.Lock())

    def is_syncing(self, feed_id: int) -> bool:
        """True while a sync of this feed holds its lock."""
        lock = self._locks.get(feed_id)
        return lock is not None and lock.locked()

    async def sync_feed(
        self,
        feed: Feed,
        refresh: bool = False,
        prefetched: Optional[NormalizedFeed] = None,
    ) -> SyncResult:
        """Fetch, diff and store new articles for one feed.

        Raises:
            FetchError / ValidationError: the fetch failed; the message is
                recorded on the feed first and articles are untouched.
        """
        async with self._lock_for(feed.id):
            return await self._sync(feed, refresh, prefetched)

    async def _sync(
        self,
        feed: Feed,
        refresh: bool,
        prefetched: Optional[NormalizedFeed],
    ) -> SyncResult:
        log = logger.bind(feed_id=feed.id, url=feed.url)
        log.debug("sync_state", state=SyncState.FETCHING.value)

        try:
            data = prefetched if prefetched is not None else await self.fetcher.fetch(
                feed.url, refresh=refresh
            )
            now = utcnow()
            feed.title = feed.title or data.title or "Unknown Feed"
            feed.website = feed.website or data.link or ""
            feed.last_fetched = now
            feed.error = None
            await asyncio.to_thread(
                self.storage.update_feed,
                feed.id,
                title=feed.title,
                website=feed.website,
                last_fetched=now,
                error=None,
            )
        except Exception as e:
            feed.error = str(e)
            await asyncio.to_thread(self.storage.set_feed_error, feed.id, feed.error)
            log.warning("feed_sync_failed", state=SyncState.FETCH_FAILED.value, error=feed.error)
            raise

        log.debug("sync_state", state=SyncState.FETCHED.value, items=len(data.items))

        candidates = self._build_articles(feed, data, now)
        log.debug("sync_state", state=SyncState.DIFFING.value, candidates=len(candidates))

        existing = await asyncio.to_thread(
            self.storage.find_articles, feed.id, [a.guid for a in candidates]
        )
        existing_by_guid = {a.guid: a for a in existing}

        backfills, backfilled_guids = await self._plan_backfills(feed, candidates, existing_by_guid)

        new_articles = [
            a for a in candidates
            if a.guid not in existing_by_guid and a.guid not in backfilled_guids
        ]
        unread, archived = triage(new_articles, self.settings.unread_limit)

        inserted = 0
        if new_articles or backfills:
            inserted = await asyncio.to_thread(
                self.storage.apply_sync, feed.id, backfills, unread + archived
            )

        result = SyncResult(
            feed_id=feed.id,
            unread=len(unread),
            archived=len(archived),
            total=inserted,
            backfilled=len(backfills),
        )
        log.info(
            "feed_synced",
            state=SyncState.PERSISTED.value,
            new=result.total,
            unread=result.unread,
            archived=result.archived,
            backfilled=result.backfilled,
        )
        return result

    def _build_articles(self, feed: Feed, data: NormalizedFeed, now: datetime) -> List[Article]:
        """Map normalized items to candidate articles, first occurrence per GUID."""
        bases = [feed.website, feed.url]
        fallback_date = to_iso(now.replace(tzinfo=timezone.utc))

        articles: List[Article] = []
        seen: Set[str] = set()
        for item in data.items:
            guid = resolve_guid(item)
            if guid in seen:
                continue
            seen.add(guid)

            content = self.sanitizer(item.content or item.summary)
            title = item.title or "Untitled"
            snippet = make_snippet(content, self.settings.snippet_length)
            articles.append(Article(
                feed_id=feed.id,
                guid=guid,
                title=title,
                link=resolve_link(item.link, item.guid, bases),
                content=content,
                snippet=snippet,
                author=item.author,
                iso_date=item.iso_date or fallback_date,
                received_date=now,
                words=index_terms(title, snippet, content),
            ))
        return articles

    async def _plan_backfills(
        self,
        feed: Feed,
        candidates: List[Article],
        existing_by_guid: Dict[str, Article],
    ) -> Tuple[List[LinkBackfill], Set[str]]:
        """Find stored link-less articles that the incoming batch now links.

        Matches by GUID first; incoming items whose GUID is unknown fall back
        to a case-insensitive exact title match, for sources whose GUIDs
        drift between runs.
        """
        backfills: List[LinkBackfill] = []
        backfilled_guids: Set[str] = set()
        claimed: Set[int] = set()

        unmatched = []
        for article in candidates:
            stored = existing_by_guid.get(article.guid)
            if stored is None:
                if article.link:
                    unmatched.append(article)
                continue
            if not stored.link and article.link:
                backfills.append(LinkBackfill(stored.id, article.link, article.guid))
                backfilled_guids.add(article.guid)
                claimed.add(stored.id)

        if unmatched:
            linkless = await asyncio.to_thread(self.storage.get_linkless_articles, feed.id)
            by_title: Dict[str, List[Article]] = {}
            for stored in linkless:
                if stored.id not in claimed and stored.title:
                    by_title.setdefault(stored.title.strip().casefold(), []).append(stored)

            for article in unmatched:
                matches = by_title.get(article.title.strip().casefold())
                if not matches:
                    continue
                stored = matches.pop(0)
                backfills.append(LinkBackfill(stored.id, article.link, article.guid))
                backfilled_guids.add(article.guid)
                claimed.add(stored.id)

        return backfills, backfilled_guids

    async def subscribe(self, url: str, folder_id: int = None) -> Tuple[Feed, SyncResult]:
        """Validate, fetch and store a new subscription, then sync it.

        Raises:
            ValidationError: bad URL, or already subscribed.
            FetchError: the feed could not be fetched or parsed.
        """
        normalized = normalize_url(url)
        if await asyncio.to_thread(self.storage.get_feed_by_url, normalized):
            raise ValidationError(f"Already subscribed to {normalized}")

        data = await self.fetcher.fetch(normalized, refresh=True)
        feed = Feed(
            url=normalized,
            title=data.title or urlsplit(normalized).hostname or normalized,
            website=data.link or normalized,
            folder_id=folder_id,
        )
        saved = await asyncio.to_thread(self.storage.add_feed, feed)
        if saved is None:
            raise ValidationError(f"Already subscribed to {normalized}")

        logger.info("feed_subscribed", feed_id=saved.id, url=normalized, title=saved.title)
        result = await self.sync_feed(saved, prefetched=data)
        return saved, result

"""Interface definitions for feed ingestion."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Set
from urllib.parse import quote, urlencode


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class NormalizedItem:
    """One feed entry after dialect and namespace resolution.

    Every field is optional in the source document. Missing text fields
    are empty strings; ``iso_date`` is None when no date could be parsed
    (the sync engine then uses the ingestion time).
    """
    title: str = ""
    link: str = ""
    guid: str = ""
    pub_date: str = ""        # date exactly as the source wrote it
    iso_date: Optional[str] = None
    content: str = ""         # richest body: content:encoded > content > summary
    summary: str = ""
    author: str = ""
    comments: str = ""


@dataclass
class NormalizedFeed:
    """A parsed feed document."""
    title: str = ""
    link: str = ""
    description: str = ""
    items: List[NormalizedItem] = field(default_factory=list)


@dataclass
class Feed:
    """A subscribed source."""
    url: str
    title: str = ""
    website: str = ""
    id: Optional[int] = None
    folder_id: Optional[int] = None
    last_fetched: Optional[datetime] = None
    error: Optional[str] = None
    favicon: Optional[str] = None


@dataclass
class Article:
    """A stored feed item."""
    feed_id: int
    guid: str
    title: str = "Untitled"
    link: str = ""
    content: str = ""
    snippet: str = ""
    author: str = ""
    iso_date: str = ""
    received_date: datetime = field(default_factory=utcnow)
    read: bool = False
    starred: bool = False
    words: Set[str] = field(default_factory=set)
    id: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "feed_id": self.feed_id,
            "guid": self.guid,
            "title": self.title,
            "link": self.link,
            "content": self.content,
            "snippet": self.snippet,
            "author": self.author,
            "iso_date": self.iso_date,
            "received_date": self.received_date.isoformat() if self.received_date else None,
            "read": self.read,
            "starred": self.starred,
            "words": sorted(self.words),
        }


@dataclass
class FetchCandidate:
    """One URL variant to try for a subscription."""
    url: str
    reason: str = "primary"  # primary, quirk, protocol_flip


@dataclass
class ProxyRoute:
    """An HTTP endpoint that fetches a feed on our behalf."""
    name: str
    kind: str  # first_party, relay, direct
    base_url: str = ""

    def request_url(self, target: str, refresh: bool = False) -> str:
        """URL to GET for fetching ``target`` through this route."""
        if self.kind == "direct":
            return target
        if self.kind == "relay":
            return f"{self.base_url}{quote(target, safe='')}"
        separator = "&" if "?" in self.base_url else "?"
        query = urlencode({"url": target, "refresh": "true" if refresh else "false"})
        return f"{self.base_url}{separator}{query}"


@dataclass
class FetchResponse:
    """Raw result of one HTTP request."""
    status: int
    content_type: str = ""
    body: str = ""


@dataclass
class SyncResult:
    """Counts of newly stored articles for one feed refresh."""
    feed_id: int
    unread: int = 0
    archived: int = 0
    total: int = 0
    backfilled: int = 0


@dataclass
class LinkBackfill:
    """A stored link-less article that now resolves a link."""
    article_id: int
    link: str
    guid: str


class FetcherInterface:
    """Interface for feed fetching."""

    async def fetch(self, url: str, refresh: bool = False) -> NormalizedFeed:
        """Fetch and normalize one feed URL."""
        raise NotImplementedError


class StorageInterface:
    """Interface for feed and article storage."""

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        """Get feed by id."""
        raise NotImplementedError

    def get_feed_by_url(self, url: str) -> Optional[Feed]:
        """Get feed by subscription URL."""
        raise NotImplementedError

    def get_feeds(self) -> List[Feed]:
        """Get all subscribed feeds."""
        raise NotImplementedError

    def add_feed(self, feed: Feed) -> Optional[Feed]:
        """Insert a feed, return it with its id or None if the URL exists."""
        raise NotImplementedError

    def update_feed(self, feed_id: int, **fields) -> None:
        """Update feed fields in place."""
        raise NotImplementedError

    def set_feed_error(self, feed_id: int, message: Optional[str]) -> None:
        """Record the last fetch error of a feed."""
        raise NotImplementedError

    def find_articles(self, feed_id: int, guids: List[str]) -> List[Article]:
        """Get existing articles of a feed matching any of the guids."""
        raise NotImplementedError

    def get_linkless_articles(self, feed_id: int) -> List[Article]:
        """Get articles of a feed with an empty link."""
        raise NotImplementedError

    def apply_sync(self, feed_id: int, backfills: List[LinkBackfill], articles: List[Article]) -> int:
        """Store link backfills and new articles in one transaction."""
        raise NotImplementedError

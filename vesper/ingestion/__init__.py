"""Feed ingestion - resolving, fetching and normalizing feeds."""

from .interfaces import (
    Article, Feed, FetchCandidate, FetcherInterface, NormalizedFeed, NormalizedItem,
    ProxyRoute, StorageInterface, SyncResult,
)
from .errors import (
    FetchError, FetchTimeoutError, HttpStatusError, NetworkError, ParseError, ValidationError,
)
from .fetcher import FeedFetcher
from .resolver import FetchResolver

__all__ = [
    "Article", "Feed", "FetchCandidate", "FetcherInterface", "NormalizedFeed", "NormalizedItem",
    "ProxyRoute", "StorageInterface", "SyncResult",
    "FetchError", "FetchTimeoutError", "HttpStatusError", "NetworkError", "ParseError",
    "ValidationError", "FeedFetcher", "FetchResolver",
]

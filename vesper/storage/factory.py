"""Factory functions to create storage instances.

The database URL comes from DATABASE_URL, then VESPER_DATABASE_URL, then
the settings default (a local SQLite file).
"""

import os
from functools import lru_cache

import structlog

logger = structlog.get_logger()


def get_database_url() -> str:
    """Get database URL from environment, with fallback to SQLite."""
    # Check for DATABASE_URL first (standard for cloud platforms)
    url = os.environ.get('DATABASE_URL')
    if url:
        return url

    url = os.environ.get('VESPER_DATABASE_URL')
    if url:
        return url

    from ..config.settings import settings
    return settings.database_url


@lru_cache(maxsize=1)
def get_storage():
    """Get the shared FeedStorage instance."""
    from .database import FeedStorage

    url = get_database_url()
    logger.info("using_storage", url=url[:40] + "...")
    return FeedStorage(url)


def clear_cache():
    """Clear cached instances (useful for testing)."""
    get_storage.cache_clear()

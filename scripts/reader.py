#!/usr/bin/env python3
"""Command line access to the reader: subscribe, refresh, list, search."""

import asyncio
import sys
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from vesper.config.logging_setup import configure_logging
from vesper.config.settings import settings
from vesper.ingestion.errors import VesperError
from vesper.ingestion.fetcher import FeedFetcher
from vesper.storage.factory import get_storage
from vesper.sync.coordinator import RefreshCoordinator
from vesper.sync.engine import SyncEngine


def print_header(title):
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def print_progress(progress):
    if progress is not None:
        print(f"  [{progress.completed}/{progress.total}]", end="\r", flush=True)


async def cmd_subscribe(args):
    """Add a feed and ingest its current items."""
    storage = get_storage()
    async with FeedFetcher(settings) as fetcher:
        engine = SyncEngine(storage, fetcher, settings)
        feed, result = await engine.subscribe(args.url, folder_id=args.folder)

    print_header("SUBSCRIBED")
    print(f"\n  {feed.title}")
    print(f"    {feed.url}")
    print(f"    {result.unread} unread, {result.archived} archived")


async def cmd_refresh(args):
    """Refresh every feed, or one feed by id."""
    storage = get_storage()
    async with FeedFetcher(settings) as fetcher:
        engine = SyncEngine(storage, fetcher, settings)
        coordinator = RefreshCoordinator(storage, engine, settings, on_progress=print_progress)

        if args.feed is not None:
            result = await coordinator.refresh_feed(args.feed)
            print(f"Feed {args.feed}: {result.total} new ({result.unread} unread)")
            return

        outcomes = await coordinator.refresh_all(force=args.force)

    if outcomes is None:
        print("Refreshed recently; use --force to refresh now")
        return
    print_header(f"REFRESH ({len(outcomes)} feeds)")
    for outcome in outcomes:
        if outcome.ok:
            print(f"  {outcome.feed_id:5}  ok       {outcome.result.total} new")
        else:
            print(f"  {outcome.feed_id:5}  {outcome.status:8} {outcome.error or ''}")


def cmd_feeds(args):
    """List subscriptions."""
    feeds = get_storage().get_feeds()
    print_header(f"FEEDS ({len(feeds)})")
    for feed in feeds:
        status = f"ERROR: {feed.error}" if feed.error else "ok"
        print(f"\n  [{feed.id}] {feed.title or feed.url}")
        print(f"    {feed.url}")
        print(f"    last fetched: {feed.last_fetched or 'never'}  {status}")


def cmd_articles(args):
    """List recent articles."""
    articles = get_storage().get_articles(
        feed_id=args.feed, unread_only=args.unread, limit=args.limit
    )
    print_header(f"ARTICLES ({len(articles)})")
    for article in articles:
        marker = " " if article.read else "*"
        print(f"\n {marker} {article.title}")
        print(f"    {article.iso_date}  {article.link}")


def cmd_search(args):
    """Full-text search over stored articles."""
    results = get_storage().search(args.query, limit=args.limit)
    print_header(f"SEARCH: {args.query!r} ({len(results)} found)")
    for article in results:
        print(f"\n  {article.title}")
        print(f"    {article.snippet}")


def cmd_stats(args):
    """Show database statistics."""
    stats = get_storage().get_stats()
    print_header("READER STATISTICS")
    print(f"\nFeeds:     {stats['total_feeds']} ({stats['failing_feeds']} failing)")
    print(f"Articles:  {stats['total_articles']}")
    print(f"Unread:    {stats['unread_articles']}")
    print(f"Starred:   {stats['starred_articles']}")


def main():
    parser = argparse.ArgumentParser(description="Vesper feed reader")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p = subparsers.add_parser("subscribe", help="Subscribe to a feed URL")
    p.add_argument("url", help="Feed URL")
    p.add_argument("--folder", type=int, default=None, help="Folder id")

    p = subparsers.add_parser("refresh", help="Fetch new articles")
    p.add_argument("--force", action="store_true", help="Ignore throttle and backoff")
    p.add_argument("--feed", type=int, default=None, help="Refresh one feed by id")

    subparsers.add_parser("feeds", help="List subscriptions")

    p = subparsers.add_parser("articles", help="List recent articles")
    p.add_argument("--feed", type=int, default=None, help="Only this feed id")
    p.add_argument("--unread", action="store_true", help="Only unread articles")
    p.add_argument("--limit", type=int, default=20, help="Max results")

    p = subparsers.add_parser("search", help="Search stored articles")
    p.add_argument("query", help="Search query")
    p.add_argument("--limit", type=int, default=20, help="Max results")

    subparsers.add_parser("stats", help="Show statistics")

    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        if args.command == "subscribe":
            asyncio.run(cmd_subscribe(args))
        elif args.command == "refresh":
            asyncio.run(cmd_refresh(args))
        elif args.command == "feeds":
            cmd_feeds(args)
        elif args.command == "articles":
            cmd_articles(args)
        elif args.command == "search":
            cmd_search(args)
        elif args.command == "stats":
            cmd_stats(args)
        else:
            parser.print_help()
    except (VesperError, KeyError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

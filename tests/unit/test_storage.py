"""Unit tests for storage module."""

import pytest
from sqlalchemy.exc import IntegrityError

from vesper.ingestion.interfaces import Article, Feed, LinkBackfill
from vesper.storage.database import FeedStorage


def make_article(feed_id, guid, **overrides):
    fields = dict(
        feed_id=feed_id,
        guid=guid,
        title=f"Title {guid}",
        link=f"https://example.com/{guid}",
        content="<p>Body</p>",
        snippet="Body",
        iso_date="2026-02-13T10:00:00+00:00",
        words={"title", guid.replace("-", "")},
    )
    fields.update(overrides)
    return Article(**fields)


class TestFeeds:
    """Tests for feed rows."""

    def test_add_and_get_feed(self, storage):
        """Should save and retrieve a feed."""
        feed = storage.add_feed(Feed(url="https://example.com/rss", title="Example"))
        assert feed.id is not None

        by_id = storage.get_feed(feed.id)
        by_url = storage.get_feed_by_url("https://example.com/rss")
        assert by_id.title == "Example"
        assert by_url.id == feed.id

    def test_duplicate_url(self, storage):
        """Duplicate subscription URLs return None."""
        storage.add_feed(Feed(url="https://example.com/rss"))
        assert storage.add_feed(Feed(url="https://example.com/rss")) is None

    def test_update_and_error(self, storage, sample_feed):
        storage.update_feed(sample_feed.id, title="Renamed", website="https://example.com/")
        storage.set_feed_error(sample_feed.id, "Failed to fetch")

        feed = storage.get_feed(sample_feed.id)
        assert feed.title == "Renamed"
        assert feed.website == "https://example.com/"
        assert feed.error == "Failed to fetch"

        storage.set_feed_error(sample_feed.id, None)
        assert storage.get_feed(sample_feed.id).error is None

    def test_update_unknown_field(self, storage, sample_feed):
        with pytest.raises(ValueError):
            storage.update_feed(sample_feed.id, bogus=1)

    def test_get_feeds_and_missing(self, storage):
        storage.add_feed(Feed(url="https://a.example.com/rss"))
        storage.add_feed(Feed(url="https://b.example.com/rss"))
        assert [f.url for f in storage.get_feeds()] == [
            "https://a.example.com/rss", "https://b.example.com/rss",
        ]
        assert storage.get_feed(999) is None

    def test_delete_feed_removes_articles(self, storage, sample_feed):
        storage.apply_sync(sample_feed.id, [], [make_article(sample_feed.id, "a-1")])
        assert storage.delete_feed(sample_feed.id) is True
        assert storage.count_articles() == 0
        assert storage.delete_feed(sample_feed.id) is False


class TestArticles:
    """Tests for article rows."""

    def test_apply_sync_inserts(self, storage, sample_feed):
        articles = [make_article(sample_feed.id, f"g-{i}") for i in range(3)]
        inserted = storage.apply_sync(sample_feed.id, [], articles)

        assert inserted == 3
        assert all(a.id for a in articles)
        assert storage.count_articles(sample_feed.id) == 3

    def test_find_articles_batched(self, storage, sample_feed):
        """Lookup works across chunk boundaries."""
        articles = [make_article(sample_feed.id, f"g-{i}") for i in range(1200)]
        storage.apply_sync(sample_feed.id, [], articles)

        wanted = [f"g-{i}" for i in range(0, 1200, 2)] + ["missing"]
        found = storage.find_articles(sample_feed.id, wanted)
        assert len(found) == 600
        assert {a.guid for a in found} == set(wanted) - {"missing"}

    def test_find_articles_scoped_to_feed(self, storage, sample_feed):
        other = storage.add_feed(Feed(url="https://other.example.com/rss"))
        storage.apply_sync(other.id, [], [make_article(other.id, "shared")])
        assert storage.find_articles(sample_feed.id, ["shared"]) == []

    def test_duplicate_guid_rolls_back(self, storage, sample_feed):
        """A (feed_id, guid) conflict aborts the whole batch."""
        storage.apply_sync(sample_feed.id, [], [make_article(sample_feed.id, "dup", link="")])
        stored = storage.find_articles(sample_feed.id, ["dup"])[0]

        with pytest.raises(IntegrityError):
            storage.apply_sync(
                sample_feed.id,
                [LinkBackfill(stored.id, "https://example.com/new", "dup")],
                [make_article(sample_feed.id, "fresh"), make_article(sample_feed.id, "dup")],
            )

        assert storage.count_articles(sample_feed.id) == 1
        assert storage.get_article(stored.id).link == ""

    def test_backfill_and_linkless(self, storage, sample_feed):
        storage.apply_sync(sample_feed.id, [], [
            make_article(sample_feed.id, "no-link", link=""),
            make_article(sample_feed.id, "has-link"),
        ])
        linkless = storage.get_linkless_articles(sample_feed.id)
        assert [a.guid for a in linkless] == ["no-link"]

        storage.apply_sync(sample_feed.id, [LinkBackfill(linkless[0].id, "https://example.com/x", "no-link")], [])
        assert storage.get_linkless_articles(sample_feed.id) == []
        assert storage.get_article(linkless[0].id).link == "https://example.com/x"

    def test_backfill_adopts_incoming_guid(self, storage, sample_feed):
        storage.apply_sync(sample_feed.id, [], [make_article(sample_feed.id, "old-guid", link="")])
        stored = storage.find_articles(sample_feed.id, ["old-guid"])[0]

        storage.apply_sync(sample_feed.id, [LinkBackfill(stored.id, "https://example.com/s", "new-guid")], [])

        assert storage.find_articles(sample_feed.id, ["old-guid"]) == []
        assert storage.find_articles(sample_feed.id, ["new-guid"])[0].id == stored.id

    def test_words_round_trip(self, storage, sample_feed):
        article = make_article(sample_feed.id, "w-1", words={"python", "asyncio"})
        storage.apply_sync(sample_feed.id, [], [article])
        assert storage.get_article(article.id).words == {"python", "asyncio"}

    def test_get_articles_filters(self, storage, sample_feed):
        storage.apply_sync(sample_feed.id, [], [
            make_article(sample_feed.id, "old", iso_date="2026-01-01T00:00:00+00:00", read=True),
            make_article(sample_feed.id, "new", iso_date="2026-02-01T00:00:00+00:00"),
        ])

        assert [a.guid for a in storage.get_articles()] == ["new", "old"]
        assert [a.guid for a in storage.get_articles(unread_only=True)] == ["new"]

        old = storage.find_articles(sample_feed.id, ["old"])[0]
        storage.set_starred(old.id)
        assert [a.guid for a in storage.get_articles(starred_only=True)] == ["old"]


class TestReadState:
    """Tests for read/unread bookkeeping."""

    def test_mark_read_and_unread(self, storage, sample_feed):
        articles = [make_article(sample_feed.id, f"r-{i}") for i in range(3)]
        storage.apply_sync(sample_feed.id, [], articles)
        ids = [a.id for a in articles]

        assert storage.mark_read(ids[:2]) == 2
        assert storage.mark_read(ids[:2]) == 0
        assert storage.count_articles(unread_only=True) == 1
        assert storage.mark_unread([ids[0]]) == 1
        assert storage.mark_read([]) == 0

    def test_mark_feed_and_all_read(self, storage, sample_feed):
        other = storage.add_feed(Feed(url="https://other.example.com/rss"))
        storage.apply_sync(sample_feed.id, [], [make_article(sample_feed.id, "a")])
        storage.apply_sync(other.id, [], [make_article(other.id, "b")])

        assert storage.mark_feed_read(sample_feed.id) == 1
        assert storage.count_articles(other.id, unread_only=True) == 1
        assert storage.mark_all_read() == 1
        assert storage.count_articles(unread_only=True) == 0


class TestSearch:
    """Tests for term-index search."""

    def test_all_terms_must_match(self, storage, sample_feed):
        storage.apply_sync(sample_feed.id, [], [
            make_article(sample_feed.id, "s-1", words={"python", "release"}),
            make_article(sample_feed.id, "s-2", words={"python", "tutorial"}),
        ])

        assert {a.guid for a in storage.search("Python")} == {"s-1", "s-2"}
        assert [a.guid for a in storage.search("python release")] == ["s-1"]
        assert storage.search("the a") == []
        assert storage.search("golang") == []


class TestFoldersAndSettings:
    """Tests for folders, settings and stats."""

    def test_folders(self, storage):
        folder_id = storage.add_folder("Tech")
        assert folder_id is not None
        assert storage.add_folder("Tech") is None
        storage.add_folder("Art")
        assert [f["name"] for f in storage.get_folders()] == ["Art", "Tech"]

    def test_settings(self, storage):
        assert storage.get_setting("refreshInterval", 15) == 15
        storage.set_setting("refreshInterval", 30)
        storage.set_setting("refreshInterval", 45)
        storage.set_setting("theme", {"mode": "dark"})
        assert storage.get_setting("refreshInterval") == 45
        assert storage.get_setting("theme") == {"mode": "dark"}

    def test_stats(self, storage, sample_feed):
        storage.apply_sync(sample_feed.id, [], [
            make_article(sample_feed.id, "x"),
            make_article(sample_feed.id, "y", read=True, starred=True),
        ])
        storage.set_feed_error(sample_feed.id, "boom")

        assert storage.get_stats() == {
            "total_feeds": 1,
            "failing_feeds": 1,
            "total_articles": 2,
            "unread_articles": 1,
            "starred_articles": 1,
        }


def test_storage_creates_data_dir(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'reader.db'}"
    FeedStorage(url)
    assert (tmp_path / "nested").is_dir()

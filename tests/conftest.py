"""Pytest configuration and shared fixtures."""

import pytest
import tempfile
import os
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com/</link>
    <description>Posts about examples</description>
    <item>
      <title>First Post</title>
      <link>https://example.com/posts/first</link>
      <guid>https://example.com/posts/first</guid>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
      <dc:creator>Ada</dc:creator>
      <description>Short summary of the first post</description>
      <content:encoded><![CDATA[<p>Full <b>content</b> of the first post</p>]]></content:encoded>
    </item>
    <item>
      <title>Second Post</title>
      <link>/posts/second</link>
      <guid isPermaLink="false">post-2</guid>
      <pubDate>Thu, 12 Feb 2026 09:30:00 GMT</pubDate>
      <description>Second summary</description>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.com/"/>
  <id>urn:uuid:feed</id>
  <updated>2026-02-13T10:00:00Z</updated>
  <entry>
    <title>Atom Entry</title>
    <link href="https://atom.example.com/entries/1"/>
    <id>urn:uuid:entry-1</id>
    <updated>2026-02-13T10:00:00Z</updated>
    <author><name>Grace</name></author>
    <summary>Entry summary</summary>
    <content type="html">&lt;p&gt;Entry content&lt;/p&gt;</content>
  </entry>
</feed>
"""

MALFORMED_FEED = """<?xml version="1.0" encoding="ISO-8859-1"?>
<rss version="2.0">
  <channel>
    <title>Broken Feed</title>
    <link/>https://broken.example.com/</link>
    <item>
      <title>Broken Item</title>
      <link/>https://broken.example.com/a</link>
      <guid>broken-a</guid>
      <description><![CDATA[<p>Body of a]] ></description>
    </item>
  </channel>
</rss>
"""

UNCLOSED_CDATA_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Open Feed</title>
    <link>https://open.example.com/</link>
    <item>
      <title>Open Item</title>
      <link/>https://open.example.com/a</link>
      <guid>open-a</guid>
      <description><![CDATA[<p>Body of a</p></description>
    </item>
    <item>
      <title>Closed Item</title>
      <link>https://open.example.com/b</link>
      <guid>open-b</guid>
      <description><![CDATA[<p>Body of b</p>]]></description>
    </item>
  </channel>
</rss>
"""


def rss_with_items(count: int, title: str = "Bulk Feed") -> str:
    """RSS document with ``count`` items an hour apart, item 0 the newest."""
    newest = datetime(2026, 1, 31, 23, 0, tzinfo=timezone.utc)
    items = []
    for i in range(count):
        published = format_datetime(newest - timedelta(hours=i), usegmt=True)
        items.append(
            f"<item><title>Item {i}</title>"
            f"<link>https://bulk.example.com/items/{i}</link>"
            f"<guid>item-{i}</guid>"
            f"<pubDate>{published}</pubDate>"
            f"<description>Body {i}</description></item>"
        )
    # Oldest first in the document
    items.reverse()
    return (
        '<?xml version="1.0"?><rss version="2.0"><channel>'
        f"<title>{title}</title><link>https://bulk.example.com/</link>"
        + "".join(items)
        + "</channel></rss>"
    )


@pytest.fixture
def temp_db():
    """Provide a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield f"sqlite:///{db_path}"
    # Cleanup
    try:
        os.unlink(db_path)
    except FileNotFoundError:
        pass


@pytest.fixture
def storage(temp_db):
    """FeedStorage over a temporary SQLite file."""
    from vesper.storage.database import FeedStorage
    return FeedStorage(temp_db)


@pytest.fixture
def test_settings(temp_db):
    """Settings isolated from the environment, with no proxies configured."""
    from vesper.config.settings import Settings
    return Settings(
        _env_file=None,
        database_url=temp_db,
        proxy_url=None,
        relay_url=None,
    )


@pytest.fixture
def proxy_settings(test_settings):
    """Settings with both a first-party proxy and a relay configured."""
    return test_settings.model_copy(update={
        "proxy_url": "https://proxy.example.net/api/fetch-feed",
        "relay_url": "https://relay.example.org/raw?url=",
    })


@pytest.fixture
def sample_feed(storage):
    """A stored feed row."""
    from vesper.ingestion.interfaces import Feed
    return storage.add_feed(Feed(url="https://example.com/feed.xml"))


@pytest.fixture
def rss_feed():
    return RSS_FEED


@pytest.fixture
def atom_feed():
    return ATOM_FEED


@pytest.fixture
def malformed_feed():
    return MALFORMED_FEED


@pytest.fixture
def unclosed_cdata_feed():
    return UNCLOSED_CDATA_FEED


@pytest.fixture
def bulk_feed():
    """Builder for RSS documents with many items."""
    return rss_with_items

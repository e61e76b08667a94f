"""Feed normalization: markup repair followed by a structural parse.

Feeds in the wild are often not well-formed XML. Before handing a document
to feedparser we run a small set of named repair rules over the raw text.
Each rule is data (pattern -> replacement) so new quirks can be added
without touching the parser, and each can be tested on its own.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from time import struct_time
from typing import Any, Dict, List, Optional, Sequence

import feedparser
import structlog

from .errors import ParseError
from .interfaces import NormalizedFeed, NormalizedItem

logger = structlog.get_logger()

FRAGMENT_LENGTH = 200

CDATA_OPEN = "<![CDATA["
CDATA_CLOSE = "]]>"


@dataclass(frozen=True)
class RepairRule:
    """A regex rewrite applied to raw feed text before parsing."""
    name: str
    pattern: "re.Pattern[str]"
    replacement: str

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


REPAIR_RULES: List[RepairRule] = [
    # Text is already decoded, so the declared encoding no longer applies
    RepairRule(
        name="declared_encoding",
        pattern=re.compile(r"""\A(\s*<\?xml[^>]*?\bencoding\s*=\s*)(["'])[^"']*\2"""),
        replacement=r'\1"utf-8"',
    ),
    # <link/>http://example.com/a  ->  <link>http://example.com/a</link>
    RepairRule(
        name="self_closing_link",
        pattern=re.compile(
            r"<(link|guid)\s*/>\s*(https?://[^\s<]+)(?:\s*</\1\s*>)?",
            re.IGNORECASE,
        ),
        replacement=r"<\1>\2</\1>",
    ),
    # ]] >  ->  ]]>
    RepairRule(
        name="spaced_cdata_end",
        pattern=re.compile(r"\]\]\s+>"),
        replacement=CDATA_CLOSE,
    ),
]


# Opening tag ending right where a CDATA section starts
_ENCLOSING_TAG = re.compile(r"<([A-Za-z_][\w:.-]*)(?:\s[^<>]*)?(?<!/)>\s*\Z")


def _closer_position(text: str, start: int, body_start: int, next_open: int) -> int:
    """Where to close a CDATA section that opens at ``start`` and never ends.

    The closer goes before the end tag of the element holding the section,
    so the rest of the document stays markup. Without one it goes before the
    next section, and failing that at the end of the text.
    """
    limit = next_open if next_open >= 0 else len(text)
    lt = text.rfind("<", 0, start)
    enclosing = _ENCLOSING_TAG.match(text, lt, start) if lt >= 0 else None
    if enclosing:
        end_tag = re.compile(r"</\s*%s\s*>" % re.escape(enclosing.group(1)), re.IGNORECASE)
        found = end_tag.search(text, body_start, limit)
        if found:
            return found.start()
    return limit


def balance_cdata(text: str) -> str:
    """Close every CDATA section left open."""
    if CDATA_OPEN not in text:
        return text

    parts = []
    pos = 0
    while True:
        start = text.find(CDATA_OPEN, pos)
        if start < 0:
            parts.append(text[pos:])
            break
        body_start = start + len(CDATA_OPEN)
        close = text.find(CDATA_CLOSE, body_start)
        next_open = text.find(CDATA_OPEN, body_start)
        if close >= 0 and (next_open < 0 or close < next_open):
            end = close + len(CDATA_CLOSE)
            parts.append(text[pos:end])
            pos = end
            continue
        insert_at = _closer_position(text, start, body_start, next_open)
        parts.append(text[pos:insert_at])
        parts.append(CDATA_CLOSE)
        pos = insert_at
    return "".join(parts)


def repair_markup(text: str, rules: Sequence[RepairRule] = None) -> str:
    """Run every repair rule in order, then balance CDATA sections."""
    for rule in REPAIR_RULES if rules is None else rules:
        text = rule.apply(text)
    return balance_cdata(text)


def parse_document(body: str, content_type: str = "") -> NormalizedFeed:
    """Normalize a proxy response body, either feed XML or pre-normalized JSON."""
    stripped = (body or "").lstrip()
    if "json" in (content_type or "").lower() or stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except ValueError as e:
            raise ParseError(f"Invalid JSON feed: {e}", fragment=stripped[:FRAGMENT_LENGTH])
        return normalize_json(payload)
    return parse_xml(body)


def parse_xml(text: str) -> NormalizedFeed:
    """Parse RSS, RDF or Atom text into a NormalizedFeed.

    Raises:
        ParseError: the document is not recognisable as any feed dialect.
    """
    if not text or not text.strip():
        raise ParseError("Empty feed document")

    repaired = repair_markup(text)
    parsed = feedparser.parse(repaired)

    if not parsed.get("version") and not parsed.entries and not parsed.feed.get("title"):
        reason = parsed.get("bozo_exception") or "unrecognised feed format"
        raise ParseError(
            f"Not a valid RSS or Atom feed: {reason}",
            fragment=text.strip()[:FRAGMENT_LENGTH],
        )

    if parsed.bozo:
        logger.debug(
            "feed_markup_recovered",
            version=parsed.get("version"),
            error=str(parsed.get("bozo_exception")),
        )

    channel = parsed.feed
    return NormalizedFeed(
        title=_text(channel.get("title")),
        link=_text(channel.get("link")),
        description=_text(channel.get("subtitle") or channel.get("description")),
        items=[_normalize_entry(entry) for entry in parsed.entries],
    )


def _normalize_entry(entry) -> NormalizedItem:
    """Flatten a feedparser entry into a NormalizedItem."""
    summary = _text(entry.get("summary") or entry.get("description"))
    content = ""
    for block in entry.get("content") or []:
        value = block.get("value")
        if value:
            content = value
            break

    author = entry.get("author")
    if not author and entry.get("author_detail"):
        author = entry.author_detail.get("name")

    pub_date = _text(entry.get("published") or entry.get("updated"))

    iso_date = None
    for field in ("published_parsed", "updated_parsed"):
        iso_date = _struct_to_iso(entry.get(field))
        if iso_date:
            break
    if iso_date is None and pub_date:
        iso_date = normalize_date(pub_date)

    return NormalizedItem(
        title=_text(entry.get("title")),
        link=_text(entry.get("link")),
        guid=_text(entry.get("id") or entry.get("guid")),
        pub_date=pub_date,
        iso_date=iso_date,
        content=content or summary,
        summary=summary,
        author=_text(author),
        comments=_text(entry.get("comments")),
    )


def normalize_json(payload: Any) -> NormalizedFeed:
    """Map a pre-normalized JSON feed (rss-parser style keys) to a NormalizedFeed."""
    if not isinstance(payload, dict):
        raise ParseError(
            "JSON feed must be an object",
            fragment=json.dumps(payload)[:FRAGMENT_LENGTH],
        )

    items = payload.get("items") or []
    if not isinstance(items, list):
        raise ParseError("JSON feed 'items' must be a list", fragment=str(items)[:FRAGMENT_LENGTH])

    return NormalizedFeed(
        title=_text(payload.get("title")),
        link=_link(payload.get("link")),
        description=_text(payload.get("description")),
        items=[_normalize_json_item(item) for item in items if isinstance(item, dict)],
    )


def _normalize_json_item(item: Dict[str, Any]) -> NormalizedItem:
    summary = _text(item.get("summary") or item.get("description") or item.get("contentSnippet"))
    content = _text(item.get("content:encoded") or item.get("content")) or summary

    pub_date = ""
    iso_date = None
    for key in ("isoDate", "pubDate", "published", "updated"):
        raw = _text(item.get(key))
        if not raw:
            continue
        pub_date = pub_date or raw
        iso_date = normalize_date(raw)
        if iso_date:
            break

    return NormalizedItem(
        title=_text(item.get("title")),
        link=_link(item.get("link")),
        guid=_text(item.get("guid") or item.get("id")),
        pub_date=pub_date,
        iso_date=iso_date,
        content=content,
        summary=summary,
        author=_text(item.get("creator") or item.get("dc:creator") or item.get("author")),
        comments=_text(item.get("comments")),
    )


def normalize_date(value: str) -> Optional[str]:
    """Parse an ISO-8601 or RFC 822 date string into a UTC ISO timestamp."""
    value = (value or "").strip()
    if not value:
        return None

    parsed = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed is None:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return to_iso(parsed)


def to_iso(moment: datetime) -> str:
    """Canonical timestamp string used for ``iso_date``."""
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def _struct_to_iso(value) -> Optional[str]:
    if not isinstance(value, (struct_time, tuple)):
        return None
    try:
        return to_iso(datetime(*value[:6], tzinfo=timezone.utc))
    except (TypeError, ValueError, OverflowError):
        return None


def _link(value: Any) -> str:
    """Atom links may arrive as {"href": ...} objects or lists of them."""
    if isinstance(value, list):
        value = value[0] if value else ""
    if isinstance(value, dict):
        value = value.get("href", "")
    return _text(value)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        value = value.get("_") or value.get("value") or ""
    return str(value).strip()

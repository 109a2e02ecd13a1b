"""RSS/Atom parsing into article documents, used to seed the store."""

import hashlib
from calendar import timegm
from dataclasses import dataclass
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urlparse

import feedparser

from swipefeed.models import PUBLISHED, format_timestamp

MAX_ITEMS_PER_FEED = 50


@dataclass
class FeedSource:
    """An RSS feed articles are imported from."""

    id: str
    name: str
    url: str
    region: str | None = None


@dataclass
class ParsedFeed:
    """Article documents extracted from one feed."""

    title: str
    documents: dict[str, dict]
    warnings: list[str]


class FeedParseError(Exception):
    """Raised when a feed cannot be parsed."""


def fetch_and_parse(source: FeedSource) -> ParsedFeed:
    """Fetch an RSS or Atom feed and convert its entries to article documents.

    Args:
        source: The feed to fetch.

    Returns:
        ParsedFeed mapping document ids to published article documents.

    Raises:
        FeedParseError: If the URL is invalid, unreachable, or not a valid feed.
    """
    _validate_url(source.url)

    parsed = feedparser.parse(source.url)

    status = parsed.get("status", 200)
    if status >= 400:
        raise FeedParseError(f"Could not reach {source.url}: HTTP {status}")

    if not parsed.feed.get("title"):
        raise FeedParseError(f"{source.url} does not point to a valid RSS or Atom feed")

    warnings: list[str] = []
    if parsed.bozo:
        warnings.append(f"Feed has formatting issues: {parsed.bozo_exception}")

    documents = {}
    for entry in parsed.entries[:MAX_ITEMS_PER_FEED]:
        doc_id, doc = _entry_to_document(entry, source, warnings)
        if doc_id:
            documents[doc_id] = doc

    return ParsedFeed(
        title=parsed.feed.get("title", source.name),
        documents=documents,
        warnings=warnings,
    )


def document_id(source_id: str, guid: str) -> str:
    """Stable article id for an entry of a feed."""
    return hashlib.sha1(f"{source_id}:{guid}".encode()).hexdigest()[:20]


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FeedParseError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FeedParseError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FeedParseError("Invalid URL format: only http and https are supported")


def _entry_to_document(entry, source: FeedSource, warnings: list[str]):
    guid = entry.get("id") or entry.get("guid") or entry.get("link")
    if not guid:
        warnings.append(
            f"Skipping entry with no identifier: {entry.get('title', 'unknown')}"
        )
        return None, None

    now = format_timestamp(datetime.now(timezone.utc))
    published_at = _parse_date(entry)
    doc = {
        "title": entry.get("title", "Untitled"),
        "summary": entry.get("summary") or entry.get("description") or "",
        "sourceName": source.name,
        "originalUrl": entry.get("link") or guid,
        "publishedAt": format_timestamp(published_at) if published_at else now,
        "status": PUBLISHED,
        "topics": [t.get("term") for t in entry.get("tags", []) if t.get("term")],
        "priority": 0,
        "createdAt": now,
        "updatedAt": now,
    }
    image_url = _image_url(entry)
    if image_url:
        doc["imageUrl"] = image_url
    if source.region:
        doc["region"] = source.region
    return document_id(source.id, guid), doc


def _image_url(entry) -> str | None:
    for media in entry.get("media_content", []) or entry.get("media_thumbnail", []):
        if media.get("url"):
            return media["url"]
    for link in entry.get("links", []):
        if link.get("rel") == "enclosure" and str(link.get("type", "")).startswith("image/"):
            return link.get("href")
    return None


def _parse_date(entry) -> datetime | None:
    """Parse publication date from a feedparser entry (parsed structs are UTC)."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, (struct_time, tuple)):
            try:
                return datetime.fromtimestamp(timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError, TypeError):
                continue
    return None

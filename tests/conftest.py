"""Shared test fixtures for swipe feed tests."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
from feedparser import FeedParserDict

from swipefeed.database import ArticleStore
from swipefeed.models import format_timestamp

BASE_TIME = datetime(2026, 2, 13, 10, 0, 0, tzinfo=timezone.utc)


def make_document(
    published_at: datetime,
    title: str = "Story",
    status: str = "published",
    topics: list[str] | None = None,
    **overrides,
) -> dict:
    """A valid article document as written by the ingestion side."""
    doc = {
        "title": title,
        "summary": f"Summary of {title}",
        "sourceName": "CBC News",
        "originalUrl": f"https://example.com/{title.lower().replace(' ', '-')}",
        "imageUrl": "https://firebasestorage.googleapis.com/v0/b/app/o/story.jpg",
        "topics": topics or [],
        "region": "National",
        "publishedAt": format_timestamp(published_at),
        "priority": 0,
        "status": status,
        "createdAt": format_timestamp(published_at),
        "updatedAt": format_timestamp(published_at),
    }
    doc.update(overrides)
    return doc


def add_articles(store: ArticleStore, count: int, start: int = 0, **kwargs) -> list[str]:
    """Insert ``count`` published articles one minute apart, newest first.

    Returns the ids in feed order.
    """
    ids = []
    for i in range(start, start + count):
        doc_id = f"a{i:03d}"
        store.put(doc_id, make_document(BASE_TIME - timedelta(minutes=i), title=f"Story {i}", **kwargs))
        ids.append(doc_id)
    return ids


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def store(tmp_db_path):
    """A connected, empty article store."""
    article_store = ArticleStore(tmp_db_path)
    article_store.connect()
    yield article_store
    article_store.close()


class FakeClock:
    """Clock that advances one second per reading unless moved explicitly."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_feedparser_response():
    """A parsed RSS feed as feedparser would return it."""
    return FeedParserDict(
        status=200,
        bozo=False,
        feed=FeedParserDict(
            title="Test Feed",
            description="A test RSS feed",
            link="https://example.com",
        ),
        entries=[
            FeedParserDict(
                title="First Article",
                link="https://example.com/article-1",
                id="article-1",
                summary="Description of the first article",
                published_parsed=(2026, 2, 13, 10, 0, 0, 3, 44, 0),
                tags=[FeedParserDict(term="Politics"), FeedParserDict(term="Canada")],
                media_content=[{"url": "https://example.com/article-1.jpg"}],
            ),
            FeedParserDict(
                title="Second Article",
                link="https://example.com/article-2",
                id="article-2",
                summary="Description of the second article",
                published_parsed=(2026, 2, 13, 9, 0, 0, 3, 44, 0),
            ),
        ],
    )

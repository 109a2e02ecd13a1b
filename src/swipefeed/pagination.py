"""Cursor-based page fetching over the article store."""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field

from swipefeed.database import ArticleStore, Snapshot
from swipefeed.models import PUBLISHED, Article, DataShapeError

logger = logging.getLogger(__name__)

INITIAL_PAGE_SIZE = 12
LOAD_MORE_PAGE_SIZE = 8
DEFAULT_FETCH_TIMEOUT = 10.0  # seconds


class SourceUnavailableError(Exception):
    """Raised when the article store cannot be read."""


class CursorMismatchError(ValueError):
    """Raised when a cursor is used with a query other than its own."""


@dataclass(frozen=True)
class Cursor:
    """Opaque position after the last document of a page.

    Only valid for the query that produced it.
    """

    _query_key: str = field(repr=False)
    _position: Snapshot = field(repr=False)


@dataclass
class PageResult:
    """One page of articles plus continuation info."""

    articles: list[Article]
    next_cursor: Cursor | None
    has_more: bool


class PaginationClient:
    """Fetches bounded pages of published articles.

    Args:
        store: A connected ArticleStore. The client does not own its lifecycle.
        timeout: Wall-clock bound per store read, in seconds.
    """

    def __init__(self, store: ArticleStore, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def fetch_page(
        self,
        page_size: int,
        after: Cursor | None = None,
        topic: str | None = None,
    ) -> PageResult:
        """Fetch the next page of published articles, newest first.

        Args:
            page_size: Number of documents to request, at least 1.
            after: Cursor returned by a previous page of the same query.
            topic: Restrict to articles tagged with this topic.

        Returns:
            PageResult. An empty page is terminal: no cursor, has_more False.
            A page may hold fewer than ``page_size`` articles when malformed
            documents were skipped.

        Raises:
            SourceUnavailableError: If the store read fails or times out.
            CursorMismatchError: If ``after`` came from a different query.
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        query_key = _query_key(topic)
        start_after = None
        if after is not None:
            if after._query_key != query_key:
                raise CursorMismatchError(
                    f"Cursor from query '{after._query_key}' used with '{query_key}'"
                )
            start_after = after._position

        # A batch of only malformed documents is skipped over, never returned
        # as an empty page that would read as the end of the feed.
        articles: list[Article] = []
        last = start_after
        while not articles:
            snapshots = await self._query(page_size, topic, last)
            if not snapshots:
                return PageResult(articles=[], next_cursor=None, has_more=False)
            articles = _parse_page(snapshots)
            last = snapshots[-1]

        # Probe one document past the page instead of trusting len == page_size.
        lookahead = await self._query(1, topic, last)

        return PageResult(
            articles=articles,
            next_cursor=Cursor(query_key, last),
            has_more=bool(lookahead),
        )

    async def available_topics(self) -> list[str]:
        """Topics present on recent published articles; empty on failure."""
        try:
            return await self._run(self.store.topics, PUBLISHED)
        except SourceUnavailableError as e:
            logger.warning("Could not load topics: %s", e)
            return []

    async def _query(
        self, limit: int, topic: str | None, start_after: Snapshot | None
    ) -> list[Snapshot]:
        return await self._run(
            self.store.query,
            PUBLISHED,
            limit,
            topic,
            start_after,
        )

    async def _run(self, func, *args):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise SourceUnavailableError(
                f"Article store did not answer within {self.timeout:g}s"
            )
        except (sqlite3.Error, OSError, RuntimeError) as e:
            raise SourceUnavailableError(f"Failed to fetch articles: {e}") from e


def _query_key(topic: str | None) -> str:
    if topic is None:
        return PUBLISHED
    return f"{PUBLISHED}|topic={topic}"


def _parse_page(snapshots: list[Snapshot]) -> list[Article]:
    """Parse documents, skipping and logging any that are malformed."""
    articles = []
    for snap in snapshots:
        try:
            articles.append(Article.from_document(snap.id, snap.data))
        except DataShapeError as e:
            logger.warning("Skipping malformed article: %s", e)
    return articles

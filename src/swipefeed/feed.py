"""Feed state machine driving page loads from viewport signals."""

import logging
from enum import Enum

from swipefeed.models import Article
from swipefeed.pagination import (
    INITIAL_PAGE_SIZE,
    LOAD_MORE_PAGE_SIZE,
    Cursor,
    PageResult,
    PaginationClient,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)

LOAD_MORE_THRESHOLD = 3


class FeedStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOADING_MORE = "loading_more"
    EXHAUSTED = "exhausted"
    ERROR = "error"


def active_index_for(visible_index: int, count: int) -> int:
    """Clamp a reported visible index into the loaded range."""
    if count <= 0:
        return 0
    return max(0, min(visible_index, count - 1))


def should_load_more(index: int, count: int, has_more: bool, loading_more: bool) -> bool:
    """True when the index is within the threshold of the end and a load may start."""
    if not has_more or loading_more or count == 0:
        return False
    return index >= count - LOAD_MORE_THRESHOLD


class FeedController:
    """Owns the loaded articles, cursor and active position of one feed.

    Args:
        client: PaginationClient used for every page load.
        topic: Optional topic filter; the feed then pages the topic query.
        initial_page_size: Size of the first page.
        page_size: Size of each continuation page.
    """

    def __init__(
        self,
        client: PaginationClient,
        topic: str | None = None,
        initial_page_size: int = INITIAL_PAGE_SIZE,
        page_size: int = LOAD_MORE_PAGE_SIZE,
    ):
        self.client = client
        self.topic = topic
        self.initial_page_size = initial_page_size
        self.page_size = page_size

        self.articles: list[Article] = []
        self.cursor: Cursor | None = None
        self.has_more = False
        self.active_index = 0
        self.loading_more = False
        self.error: str | None = None

        self._phase = FeedStatus.IDLE
        self._seen_ids: set[str] = set()
        # Bumped on reset/close so late results from an older load are dropped.
        self._generation = 0
        self._closed = False

    @property
    def status(self) -> FeedStatus:
        if self._phase == FeedStatus.READY:
            if self.loading_more:
                return FeedStatus.LOADING_MORE
            if self.articles and not self.has_more:
                return FeedStatus.EXHAUSTED
        return self._phase

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Run the initial load. Only valid from the idle state."""
        if self._phase != FeedStatus.IDLE:
            logger.debug("start() ignored in state %s", self._phase.value)
            return
        await self._load_initial()

    async def retry(self) -> None:
        """Re-run the initial load after an error."""
        if self._phase != FeedStatus.ERROR:
            logger.debug("retry() ignored in state %s", self._phase.value)
            return
        await self._load_initial()

    async def report_visible(self, index: int) -> None:
        """Take a visibility signal: update the active item and maybe load more."""
        if self._closed or self._phase != FeedStatus.READY:
            return
        count = len(self.articles)
        self.active_index = active_index_for(index, count)
        if should_load_more(index, count, self.has_more, self.loading_more):
            await self._load_more()

    def go_next(self) -> int:
        """Move to the next article, clamped. Never fetches."""
        self.active_index = active_index_for(self.active_index + 1, len(self.articles))
        return self.active_index

    def go_previous(self) -> int:
        """Move to the previous article, clamped. Never fetches."""
        self.active_index = active_index_for(self.active_index - 1, len(self.articles))
        return self.active_index

    @property
    def active_article(self) -> Article | None:
        if not self.articles:
            return None
        return self.articles[self.active_index]

    def close(self) -> None:
        """Tear down; any fetch still in flight is discarded on arrival."""
        self._closed = True
        self._generation += 1

    # --- Loads ---

    async def _load_initial(self) -> None:
        self._generation += 1
        generation = self._generation
        self._reset()
        self._phase = FeedStatus.LOADING

        try:
            result = await self.client.fetch_page(self.initial_page_size, topic=self.topic)
        except SourceUnavailableError as e:
            if self._stale(generation):
                return
            logger.error("Initial feed load failed: %s", e)
            self._reset()
            self.error = "Failed to load articles. Please check your connection."
            self._phase = FeedStatus.ERROR
            return

        if self._stale(generation):
            logger.debug("Discarding initial page for a torn down feed")
            return

        self._append(result.articles)
        self.cursor = result.next_cursor
        self.has_more = result.has_more
        self.active_index = 0
        self._phase = FeedStatus.READY
        logger.info(
            "Loaded %d articles (has_more=%s)", len(self.articles), self.has_more
        )

    async def _load_more(self) -> None:
        # Guard is set before awaiting so a second signal in the meantime is a no-op.
        self.loading_more = True
        generation = self._generation
        try:
            result = await self.client.fetch_page(
                self.page_size, after=self.cursor, topic=self.topic
            )
        except SourceUnavailableError as e:
            if not self._stale(generation):
                logger.warning("Loading more articles failed: %s", e)
            return
        finally:
            if not self._stale(generation):
                self.loading_more = False

        if self._stale(generation):
            logger.debug("Discarding continuation page for a torn down feed")
            return
        self._apply_continuation(result)

    def _apply_continuation(self, result: PageResult) -> None:
        if not result.articles:
            self.has_more = False
            return
        added = self._append(result.articles)
        self.cursor = result.next_cursor
        self.has_more = result.has_more
        logger.info(
            "Appended %d articles, %d total (has_more=%s)",
            added, len(self.articles), self.has_more,
        )

    def _append(self, articles: list[Article]) -> int:
        added = 0
        for article in articles:
            if article.id in self._seen_ids:
                logger.warning("Duplicate article id %s in feed page, skipping", article.id)
                continue
            self._seen_ids.add(article.id)
            self.articles.append(article)
            added += 1
        return added

    def _reset(self) -> None:
        self.articles = []
        self._seen_ids = set()
        self.cursor = None
        self.has_more = False
        self.active_index = 0
        self.loading_more = False
        self.error = None

    def _stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

"""Tests for the feed controller state machine."""

import asyncio
import logging
from datetime import timedelta

import pytest

from conftest import BASE_TIME, add_articles, make_document
from swipefeed.feed import (
    FeedController,
    FeedStatus,
    active_index_for,
    should_load_more,
)
from swipefeed.models import Article
from swipefeed.pagination import PageResult, PaginationClient, SourceUnavailableError


class ScriptedClient:
    """Wraps a PaginationClient, recording calls and injecting failures or delays."""

    def __init__(self, inner: PaginationClient):
        self.inner = inner
        self.calls = []
        self.failures = 0
        self.gate: asyncio.Event | None = None
        self.next_result: PageResult | None = None

    async def fetch_page(self, page_size, after=None, topic=None):
        self.calls.append((page_size, after, topic))
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise SourceUnavailableError("network down")
        if self.next_result is not None:
            result, self.next_result = self.next_result, None
            return result
        return await self.inner.fetch_page(page_size, after=after, topic=topic)


@pytest.fixture
def client(store):
    return ScriptedClient(PaginationClient(store))


def article(doc_id):
    return Article.from_document(doc_id, make_document(BASE_TIME - timedelta(days=1), title=doc_id))


# --- Pure helpers ---


@pytest.mark.parametrize(
    "index,count,expected",
    [(0, 0, 0), (-1, 5, 0), (2, 5, 2), (9, 5, 4)],
)
def test_active_index_for_clamps(index, count, expected):
    assert active_index_for(index, count) == expected


@pytest.mark.parametrize(
    "index,count,has_more,loading,expected",
    [
        (9, 12, True, False, True),
        (8, 12, True, False, False),
        (11, 12, True, False, True),
        (11, 12, False, False, False),
        (11, 12, True, True, False),
        (0, 0, True, False, False),
        (0, 2, True, False, True),
    ],
)
def test_should_load_more(index, count, has_more, loading, expected):
    assert should_load_more(index, count, has_more, loading) is expected


# --- End-to-end scenarios ---


def test_fewer_articles_than_initial_page(store, client):
    add_articles(store, 8)
    feed = FeedController(client)

    asyncio.run(feed.start())

    assert feed.status == FeedStatus.EXHAUSTED
    assert len(feed.articles) == 8
    assert feed.has_more is False
    assert feed.active_index == 0
    assert client.calls == [(12, None, None)]


def test_initial_then_one_load_more(store, client):
    add_articles(store, 20)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        assert feed.status == FeedStatus.READY
        assert len(feed.articles) == 12
        assert feed.has_more is True

        await feed.report_visible(8)
        assert len(client.calls) == 1
        assert feed.active_index == 8

        await feed.report_visible(9)

    asyncio.run(scenario())

    assert len(feed.articles) == 20
    assert feed.has_more is False
    assert feed.status == FeedStatus.EXHAUSTED
    assert [a.id for a in feed.articles] == [f"a{i:03d}" for i in range(20)]
    assert client.calls[1][0] == 8


def test_initial_failure_then_retry(store, client):
    add_articles(store, 5)
    client.failures = 1
    feed = FeedController(client)

    asyncio.run(feed.start())

    assert feed.status == FeedStatus.ERROR
    assert feed.articles == []
    assert feed.error

    asyncio.run(feed.retry())

    assert client.calls == [(12, None, None), (12, None, None)]
    assert feed.status == FeedStatus.EXHAUSTED
    assert len(feed.articles) == 5
    assert feed.error is None


def test_load_more_failure_keeps_content(store, client, caplog):
    add_articles(store, 20)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        before = list(feed.articles)
        client.failures = 1
        with caplog.at_level(logging.WARNING, logger="swipefeed.feed"):
            await feed.report_visible(11)
        assert feed.status == FeedStatus.READY
        assert feed.articles == before
        assert feed.has_more is True
        assert feed.loading_more is False

        # A later signal tries again.
        await feed.report_visible(11)

    asyncio.run(scenario())

    assert "Loading more articles failed" in caplog.text
    assert len(client.calls) == 3
    assert len(feed.articles) == 20


def test_second_signal_while_loading_is_a_no_op(store, client):
    add_articles(store, 30)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        client.gate = asyncio.Event()
        first = asyncio.create_task(feed.report_visible(10))
        await asyncio.sleep(0)
        assert feed.status == FeedStatus.LOADING_MORE

        await feed.report_visible(11)
        await feed.report_visible(11)

        client.gate.set()
        await first

    asyncio.run(scenario())

    assert len(client.calls) == 2
    assert len(feed.articles) == 20


def test_loaded_never_shrinks_or_duplicates(store, client):
    add_articles(store, 30)
    feed = FeedController(client, initial_page_size=5, page_size=4)
    sizes = []

    async def scenario():
        await feed.start()
        sizes.append(len(feed.articles))
        while feed.has_more:
            await feed.report_visible(len(feed.articles) - 1)
            sizes.append(len(feed.articles))

    asyncio.run(scenario())

    assert sizes == sorted(sizes)
    assert sizes[-1] == 30
    ids = [a.id for a in feed.articles]
    assert len(ids) == len(set(ids))


def test_empty_continuation_ends_feed(store, client):
    add_articles(store, 20)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        client.next_result = PageResult(articles=[], next_cursor=None, has_more=False)
        await feed.report_visible(11)

    asyncio.run(scenario())

    assert len(feed.articles) == 12
    assert feed.has_more is False
    assert feed.status == FeedStatus.EXHAUSTED


def test_malformed_continuation_batch_does_not_end_feed(store, client):
    add_articles(store, 12)
    add_articles(store, 8, start=12, summary="")
    add_articles(store, 8, start=20)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        assert feed.has_more is True
        await feed.report_visible(9)

    asyncio.run(scenario())

    assert len(feed.articles) == 20
    assert feed.articles[-1].id == "a027"
    assert feed.has_more is False
    assert feed.status == FeedStatus.EXHAUSTED


def test_malformed_initial_batch_still_loads_older_articles(store, client):
    add_articles(store, 12, summary="")
    add_articles(store, 5, start=12)
    feed = FeedController(client)

    asyncio.run(feed.start())

    assert [a.id for a in feed.articles] == [f"a{i:03d}" for i in range(12, 17)]
    assert feed.has_more is False
    assert feed.status == FeedStatus.EXHAUSTED


def test_duplicate_ids_are_dropped_and_logged(store, client, caplog):
    add_articles(store, 20)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        dup = feed.articles[0]
        client.next_result = PageResult(
            articles=[dup, article("fresh")], next_cursor=feed.cursor, has_more=True
        )
        with caplog.at_level(logging.WARNING, logger="swipefeed.feed"):
            await feed.report_visible(11)

    asyncio.run(scenario())

    assert len(feed.articles) == 13
    assert feed.articles[-1].id == "fresh"
    assert "Duplicate article id a000" in caplog.text


def test_manual_navigation_clamps_and_never_fetches(store, client):
    add_articles(store, 20)
    feed = FeedController(client)
    asyncio.run(feed.start())

    assert feed.go_previous() == 0
    for _ in range(30):
        feed.go_next()

    assert feed.active_index == 11
    assert feed.active_article.id == "a011"
    assert len(client.calls) == 1


def test_navigation_on_empty_feed(store, client):
    feed = FeedController(client)
    asyncio.run(feed.start())

    assert feed.go_next() == 0
    assert feed.active_article is None
    assert feed.status == FeedStatus.READY


def test_visibility_before_start_is_ignored(client):
    feed = FeedController(client)

    asyncio.run(feed.report_visible(3))

    assert feed.status == FeedStatus.IDLE
    assert client.calls == []


def test_result_after_close_is_discarded(store, client):
    add_articles(store, 20)
    feed = FeedController(client)

    async def scenario():
        await feed.start()
        client.gate = asyncio.Event()
        pending = asyncio.create_task(feed.report_visible(11))
        await asyncio.sleep(0)
        feed.close()
        client.gate.set()
        await pending

    asyncio.run(scenario())

    assert feed.closed
    assert len(feed.articles) == 12


def test_initial_result_after_close_is_discarded(store, client):
    add_articles(store, 5)
    feed = FeedController(client)

    async def scenario():
        client.gate = asyncio.Event()
        pending = asyncio.create_task(feed.start())
        await asyncio.sleep(0)
        feed.close()
        client.gate.set()
        await pending

    asyncio.run(scenario())

    assert feed.articles == []


def test_topic_feed_uses_topic_query(store, client):
    add_articles(store, 3, topics=["Sports"])
    add_articles(store, 3, start=3, topics=["Politics"])
    feed = FeedController(client, topic="Politics")

    asyncio.run(feed.start())

    assert [a.id for a in feed.articles] == ["a003", "a004", "a005"]
    assert client.calls == [(12, None, "Politics")]


def test_retry_outside_error_is_ignored(store, client):
    add_articles(store, 3)
    feed = FeedController(client)
    asyncio.run(feed.start())

    asyncio.run(feed.retry())

    assert len(client.calls) == 1

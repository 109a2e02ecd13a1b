"""Entry point for the swipe feed reader: python -m swipefeed"""

import argparse
import asyncio
import logging
import os

import httpx

from swipefeed.app_state import AppStateStore
from swipefeed.cache_router import CacheRouter
from swipefeed.cache_storage import CacheStorage
from swipefeed.database import ArticleStore
from swipefeed.feed import FeedController, FeedStatus
from swipefeed.install import InstallLifecycle
from swipefeed.models import Article
from swipefeed.pagination import DEFAULT_FETCH_TIMEOUT, PaginationClient
from swipefeed.seed import import_rss_feeds, seed_sample_articles

DEFAULT_DB_PATH = "swipefeed.db"
DEFAULT_CACHE_PATH = "swipefeed_cache.db"
DEFAULT_STATE_PATH = "swipefeed_state.db"
DEFAULT_APP_ORIGIN = "http://localhost:5173"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger("swipefeed")


def render(article: Article, index: int, total: int) -> str:
    topics = ", ".join(article.topics) if article.topics else "-"
    return (
        f"\n[{index + 1}/{total}] {article.title}\n"
        f"  {article.source_name} | {article.published_at:%Y-%m-%d %H:%M} | {topics}\n"
        f"  {article.summary}\n"
        f"  {article.original_url}\n"
    )


async def prefetch_image(http: httpx.AsyncClient, article: Article | None) -> None:
    """Warm the image cache for an article so it can be shown offline.

    The request is tagged as an image load, so it matches the image route
    before the remote-image one and lands in the generic images cache for
    every host, storage origin included. The remote-images cache only serves
    untagged fetches of storage URLs.
    """
    if article is None or not article.image_url:
        return
    try:
        await http.get(article.image_url, headers={"Sec-Fetch-Dest": "image"})
    except httpx.HTTPError as e:
        logger.warning("Image prefetch failed for %s: %s", article.id, e)


async def reader_loop(feed: FeedController, http: httpx.AsyncClient | None) -> None:
    """Run the interactive reader loop."""
    print("Swipe feed ready! n/Enter = next, p = previous, r = retry, q = quit.\n")
    await feed.start()

    while True:
        status = feed.status
        if status == FeedStatus.ERROR:
            print(f"\n{feed.error} Press r to try again.")
        elif not feed.articles:
            print("\nNo stories yet. Check back soon for the latest news.")
        else:
            article = feed.active_article
            print(render(article, feed.active_index, len(feed.articles)))
            if http is not None:
                await prefetch_image(http, article)
            if status == FeedStatus.EXHAUSTED and feed.active_index == len(feed.articles) - 1:
                print("You're all caught up! Check back later for more stories.")

        try:
            command = (await asyncio.to_thread(input, "> ")).strip().lower()
        except EOFError:
            break

        if command == "q":
            break
        if command == "r":
            await feed.retry()
        elif command == "p":
            await feed.report_visible(feed.go_previous())
        elif command in ("", "n"):
            await feed.report_visible(feed.go_next())


async def run_reader() -> None:
    db_path = os.environ.get("SWIPEFEED_DB_PATH", DEFAULT_DB_PATH)
    cache_path = os.environ.get("SWIPEFEED_CACHE_PATH", DEFAULT_CACHE_PATH)
    state_path = os.environ.get("SWIPEFEED_STATE_PATH", DEFAULT_STATE_PATH)
    timeout = float(os.environ.get("SWIPEFEED_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT))
    prefetch = os.environ.get("SWIPEFEED_PREFETCH_IMAGES", "") == "1"
    app_origin = os.environ.get("SWIPEFEED_APP_ORIGIN", DEFAULT_APP_ORIGIN)

    store = ArticleStore(db_path)
    store.connect()
    cache = CacheStorage(cache_path)
    cache.connect()

    lifecycle = InstallLifecycle(AppStateStore(state_path))
    if await lifecycle.is_installed():
        logger.info("Running as installed app")

    router = CacheRouter(cache, app_origin)
    http = httpx.AsyncClient(transport=router) if prefetch else None
    feed = FeedController(PaginationClient(store, timeout=timeout))

    try:
        await reader_loop(feed, http)
    except KeyboardInterrupt:
        print("\nGoodbye!")
    finally:
        feed.close()
        try:
            if http is not None:
                await http.aclose()  # also closes the router transport
            else:
                await router.aclose()
        finally:
            cache.close()
            store.close()


async def run_seed(rss: bool) -> None:
    store = ArticleStore(os.environ.get("SWIPEFEED_DB_PATH", DEFAULT_DB_PATH))
    store.connect()
    try:
        if rss:
            count = await import_rss_feeds(store)
        else:
            count = seed_sample_articles(store)
        logger.info("Seeded %d articles", count)
    finally:
        store.close()


def main() -> None:
    parser = argparse.ArgumentParser(prog="swipefeed")
    sub = parser.add_subparsers(dest="command")
    seed = sub.add_parser("seed", help="populate the article store")
    seed.add_argument("--rss", action="store_true", help="import from the configured RSS feeds")
    args = parser.parse_args()

    if args.command == "seed":
        asyncio.run(run_seed(args.rss))
    else:
        asyncio.run(run_reader())


if __name__ == "__main__":
    main()

"""Populate the article store with sample data or articles from RSS feeds."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

from swipefeed.database import ArticleStore
from swipefeed.feed_parser import FeedParseError, FeedSource, fetch_and_parse
from swipefeed.models import PUBLISHED, format_timestamp

logger = logging.getLogger(__name__)

FEEDS = [
    FeedSource(
        id="cbc-top",
        name="CBC Top Stories",
        url="https://www.cbc.ca/cmlink/rss-topstories",
        region="National",
    ),
    FeedSource(
        id="global-national",
        name="Global News National",
        url="https://globalnews.ca/national/feed/",
        region="National",
    ),
    FeedSource(
        id="cbc-nb",
        name="CBC New Brunswick",
        url="https://www.cbc.ca/cmlink/rss-canada-newbrunswick",
        region="New Brunswick",
    ),
]

# (title, source, url path, topics, region, priority, hours ago)
SAMPLE_ARTICLES = [
    ("Federal Budget Introduces New Housing Initiatives", "CBC News",
     "https://cbc.ca/news/politics/budget-housing", ["Politics", "Housing", "Canada"],
     "National", 10, 2),
    ("Toronto Tech Startup Raises $50M for AI Healthcare Platform", "The Globe and Mail",
     "https://globeandmail.com/business/technology/toronto-ai-startup",
     ["Technology", "Healthcare", "Business"], "Ontario", 8, 4),
    ("BC Announces Climate Action Targets", "National Post",
     "https://nationalpost.com/news/canada/bc-climate-targets",
     ["Environment", "Climate", "BC"], "British Columbia", 7, 6),
    ("Canadian Dollar Strengthens Against USD", "Financial Post",
     "https://financialpost.com/markets/currencies/canadian-dollar-usd",
     ["Economy", "Finance", "Currency"], "National", 6, 8),
    ("Montreal's Metro System Gets Major Infrastructure Upgrade", "La Presse",
     "https://lapresse.ca/montreal/metro-infrastructure-upgrade",
     ["Transportation", "Infrastructure", "Montreal"], "Quebec", 5, 12),
    ("Indigenous Leaders Call for Stronger Land Rights Protection", "APTN News",
     "https://aptnnews.ca/indigenous-land-rights-framework",
     ["Indigenous", "Politics", "Environment"], "National", 9, 16),
    ("Canadian Olympic Team Prepares for Winter Games", "Sportsnet",
     "https://sportsnet.ca/olympics/team-canada-winter-roster",
     ["Sports", "Olympics", "Canada"], "National", 4, 20),
    ("Prairie Farmers Adapt to Changing Weather Patterns", "CBC Saskatchewan",
     "https://cbc.ca/news/canada/saskatchewan/prairie-farming-climate-adaptation",
     ["Agriculture", "Climate", "Prairie"], "Prairie Provinces", 6, 24),
]


def seed_sample_articles(store: ArticleStore, now: datetime | None = None) -> int:
    """Write the bundled sample articles, published relative to ``now``."""
    now = now or datetime.now(timezone.utc)
    stamp = format_timestamp(now)
    for title, source_name, url, topics, region, priority, hours_ago in SAMPLE_ARTICLES:
        store.put(
            uuid.uuid5(uuid.NAMESPACE_URL, url).hex,
            {
                "title": title,
                "summary": f"{title}. Full coverage from {source_name}.",
                "sourceName": source_name,
                "originalUrl": url,
                "topics": topics,
                "region": region,
                "status": PUBLISHED,
                "priority": priority,
                "publishedAt": format_timestamp(now - timedelta(hours=hours_ago)),
                "createdAt": stamp,
                "updatedAt": stamp,
            },
        )
        logger.info("Added article: %s", title)
    return len(SAMPLE_ARTICLES)


async def import_rss_feeds(store: ArticleStore, feeds: list[FeedSource] | None = None) -> int:
    """Import every configured feed once. Returns count of documents written."""
    total = 0
    for source in feeds if feeds is not None else FEEDS:
        try:
            parsed = await asyncio.to_thread(fetch_and_parse, source)
        except FeedParseError as e:
            logger.warning("Feed '%s' error: %s", source.name, e)
            continue

        for warning in parsed.warnings:
            logger.warning("Feed '%s': %s", source.name, warning)
        for doc_id, doc in parsed.documents.items():
            await asyncio.to_thread(store.put, doc_id, doc)
        total += len(parsed.documents)
        logger.info("Feed '%s': %d articles", source.name, len(parsed.documents))

    return total

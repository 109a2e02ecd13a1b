"""SQLite article document store backing the feed."""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any

from swipefeed.models import DataShapeError, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

TOPIC_SCAN_LIMIT = 100

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    status TEXT,
    published_at TEXT,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS article_topics (
    article_id TEXT NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    topic TEXT NOT NULL,
    PRIMARY KEY (article_id, topic)
);

CREATE INDEX IF NOT EXISTS idx_articles_feed ON articles(status, published_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_article_topics_topic ON article_topics(topic);
"""


@dataclass(frozen=True)
class Snapshot:
    """A document as returned by a query, usable as a start-after position."""

    id: str
    published_at: str
    data: Any


class ArticleStore:
    """Document collection of articles, queried newest first.

    Documents are kept as raw JSON so that whatever the ingestion side wrote
    is returned untouched; shape validation happens in the caller.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "ArticleStore":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("ArticleStore not connected. Call connect() first.")
        return self._conn

    # --- Writes ---

    def put(self, doc_id: str, data: dict[str, Any]) -> None:
        """Insert or replace a document and its topic index rows."""
        published_at = _sort_key(doc_id, data.get("publishedAt"))
        topics = data.get("topics")
        if not isinstance(topics, list):
            topics = []

        with self._lock:
            self.conn.execute(
                """INSERT INTO articles (id, status, published_at, data, updated_at)
                   VALUES (?, ?, ?, ?, datetime('now'))
                   ON CONFLICT(id) DO UPDATE SET
                       status = excluded.status,
                       published_at = excluded.published_at,
                       data = excluded.data,
                       updated_at = excluded.updated_at""",
                (doc_id, data.get("status"), published_at, json.dumps(data)),
            )
            self.conn.execute(
                "DELETE FROM article_topics WHERE article_id = ?", (doc_id,)
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO article_topics (article_id, topic) VALUES (?, ?)",
                [(doc_id, str(t)) for t in topics],
            )
            self.conn.commit()

    # --- Reads ---

    def query(
        self,
        status: str,
        limit: int,
        topic: str | None = None,
        start_after: Snapshot | None = None,
    ) -> list[Snapshot]:
        """Return documents with the given status, newest first.

        Ties on publish time are ordered by descending id. Documents without
        a usable publish time never match, like an ordered query on a
        missing field.

        Args:
            status: Equality filter on the document status.
            limit: Maximum number of documents, at least 1.
            topic: Optional array-contains filter on the topics list.
            start_after: Resume strictly after this document.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")

        query = """
            SELECT articles.id, articles.published_at, articles.data
            FROM articles
            WHERE articles.status = ? AND articles.published_at IS NOT NULL
        """
        params: list = [status]

        if topic is not None:
            query += """ AND EXISTS (
                SELECT 1 FROM article_topics
                WHERE article_topics.article_id = articles.id
                  AND article_topics.topic = ?)"""
            params.append(topic)
        if start_after is not None:
            query += """ AND (articles.published_at < ?
                OR (articles.published_at = ? AND articles.id < ?))"""
            params.extend(
                [start_after.published_at, start_after.published_at, start_after.id]
            )

        query += " ORDER BY articles.published_at DESC, articles.id DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def topics(self, status: str) -> list[str]:
        """Distinct topics across the most recent documents with a status."""
        with self._lock:
            rows = self.conn.execute(
                """SELECT DISTINCT article_topics.topic AS topic
                   FROM article_topics
                   WHERE article_topics.article_id IN (
                       SELECT id FROM articles WHERE status = ?
                       ORDER BY published_at DESC LIMIT ?)
                   ORDER BY topic""",
                (status, TOPIC_SCAN_LIMIT),
            ).fetchall()
        return [r["topic"] for r in rows]

    def count(self, status: str | None = None) -> int:
        """Count documents, optionally by status."""
        query = "SELECT COUNT(*) AS cnt FROM articles"
        params: list = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status)
        with self._lock:
            row = self.conn.execute(query, params).fetchone()
        return row["cnt"] if row else 0


# --- Helper functions ---


def _sort_key(doc_id: str, value: Any) -> str | None:
    """Normalized publish time column, or None if the document has none."""
    if value in (None, ""):
        return None
    try:
        return format_timestamp(parse_timestamp(value, doc_id))
    except DataShapeError:
        logger.warning("Article %s has unparseable publishedAt %r", doc_id, value)
        return None


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    """Convert a database row to a Snapshot, keeping undecodable data as None."""
    try:
        data = json.loads(row["data"])
    except (TypeError, ValueError):
        data = None
    return Snapshot(id=row["id"], published_at=row["published_at"], data=data)

"""Named response caches with per-cache expiration, stored in SQLite."""

import asyncio
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_name TEXT NOT NULL,
    url TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    headers TEXT NOT NULL,
    body BLOB NOT NULL,
    stored_at REAL NOT NULL,
    used_at REAL NOT NULL,
    PRIMARY KEY (cache_name, url)
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_used ON cache_entries(cache_name, used_at);
"""

# Stored bodies are already decoded, so these no longer describe them.
_BODY_FRAMING_HEADERS = {b"content-encoding", b"content-length", b"transfer-encoding"}


class QuotaExceededError(Exception):
    """Raised when a write would push total cache storage over its quota."""


@dataclass(frozen=True)
class ExpirationPolicy:
    """Eviction budget of one named cache."""

    max_entries: int | None = None
    max_age_seconds: float | None = None
    purge_on_quota_error: bool = False


class CacheStorage:
    """A set of independent named caches.

    Each named cache has its own lock; a write and the eviction check that
    follows it happen under that lock so concurrent writers cannot overshoot
    the entry cap.

    Args:
        db_path: SQLite file holding every named cache.
        quota_bytes: Optional limit on the total body size across all caches.
        clock: Time source, seconds since the epoch.
    """

    def __init__(self, db_path: str, quota_bytes: int | None = None, clock=time.time):
        self.db_path = db_path
        self.quota_bytes = quota_bytes
        self.clock = clock
        self._conn: sqlite3.Connection | None = None
        self._db_lock = threading.Lock()
        self._cache_locks: dict[str, asyncio.Lock] = {}

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("CacheStorage not connected. Call connect() first.")
        return self._conn

    def lock_for(self, cache_name: str) -> asyncio.Lock:
        lock = self._cache_locks.get(cache_name)
        if lock is None:
            lock = self._cache_locks[cache_name] = asyncio.Lock()
        return lock

    # --- Reads ---

    async def match(
        self, cache_name: str, url: str, policy: ExpirationPolicy | None = None
    ) -> httpx.Response | None:
        """Return a cached response, or None if absent or expired."""
        with self._db_lock:
            row = self.conn.execute(
                "SELECT * FROM cache_entries WHERE cache_name = ? AND url = ?",
                (cache_name, url),
            ).fetchone()
        if row is None:
            return None

        now = self.clock()
        if policy and policy.max_age_seconds is not None:
            if now - row["stored_at"] > policy.max_age_seconds:
                logger.debug("Expired entry in %s: %s", cache_name, url)
                async with self.lock_for(cache_name):
                    self._delete(cache_name, url)
                return None

        with self._db_lock:
            self.conn.execute(
                "UPDATE cache_entries SET used_at = ? WHERE cache_name = ? AND url = ?",
                (now, cache_name, url),
            )
            self.conn.commit()
        return _row_to_response(row)

    def keys(self, cache_name: str) -> list[str]:
        """URLs held by a named cache, least recently used first."""
        with self._db_lock:
            rows = self.conn.execute(
                "SELECT url FROM cache_entries WHERE cache_name = ? ORDER BY used_at, url",
                (cache_name,),
            ).fetchall()
        return [r["url"] for r in rows]

    def cache_names(self) -> list[str]:
        with self._db_lock:
            rows = self.conn.execute(
                "SELECT DISTINCT cache_name FROM cache_entries ORDER BY cache_name"
            ).fetchall()
        return [r["cache_name"] for r in rows]

    def total_bytes(self) -> int:
        with self._db_lock:
            row = self.conn.execute(
                "SELECT COALESCE(SUM(LENGTH(body)), 0) AS total FROM cache_entries"
            ).fetchone()
        return row["total"]

    # --- Writes ---

    async def put(
        self,
        cache_name: str,
        url: str,
        response: httpx.Response,
        policy: ExpirationPolicy | None = None,
    ) -> None:
        """Store a fully read response, then enforce the cache's policy.

        Raises:
            QuotaExceededError: If the write would exceed the storage quota.
        """
        body = response.content
        headers = json.dumps(
            [
                [k.decode("latin-1"), v.decode("latin-1")]
                for k, v in response.headers.raw
                if k.lower() not in _BODY_FRAMING_HEADERS
            ]
        )
        async with self.lock_for(cache_name):
            self._check_quota(cache_name, url, len(body))
            now = self.clock()
            with self._db_lock:
                self.conn.execute(
                    """INSERT INTO cache_entries
                       (cache_name, url, status_code, headers, body, stored_at, used_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(cache_name, url) DO UPDATE SET
                           status_code = excluded.status_code,
                           headers = excluded.headers,
                           body = excluded.body,
                           stored_at = excluded.stored_at,
                           used_at = excluded.used_at""",
                    (cache_name, url, response.status_code, headers, body, now, now),
                )
                self.conn.commit()
            if policy:
                self._expire(cache_name, policy, now)

    async def purge(self, cache_name: str) -> int:
        """Drop every entry of one named cache. Returns count removed."""
        async with self.lock_for(cache_name):
            with self._db_lock:
                cursor = self.conn.execute(
                    "DELETE FROM cache_entries WHERE cache_name = ?", (cache_name,)
                )
                self.conn.commit()
        return cursor.rowcount

    async def delete_cache(self, cache_name: str) -> bool:
        return await self.purge(cache_name) > 0

    def _delete(self, cache_name: str, url: str) -> None:
        with self._db_lock:
            self.conn.execute(
                "DELETE FROM cache_entries WHERE cache_name = ? AND url = ?",
                (cache_name, url),
            )
            self.conn.commit()

    def _check_quota(self, cache_name: str, url: str, size: int) -> None:
        if self.quota_bytes is None:
            return
        with self._db_lock:
            row = self.conn.execute(
                """SELECT COALESCE(SUM(LENGTH(body)), 0) AS total FROM cache_entries
                   WHERE NOT (cache_name = ? AND url = ?)""",
                (cache_name, url),
            ).fetchone()
        if row["total"] + size > self.quota_bytes:
            raise QuotaExceededError(
                f"Storing {size} bytes in {cache_name} exceeds quota of {self.quota_bytes}"
            )

    def _expire(self, cache_name: str, policy: ExpirationPolicy, now: float) -> None:
        """Remove entries past the age cap, then the least recently used over the count cap."""
        removed = 0
        with self._db_lock:
            if policy.max_age_seconds is not None:
                cursor = self.conn.execute(
                    "DELETE FROM cache_entries WHERE cache_name = ? AND stored_at < ?",
                    (cache_name, now - policy.max_age_seconds),
                )
                removed += cursor.rowcount
            if policy.max_entries is not None:
                cursor = self.conn.execute(
                    """DELETE FROM cache_entries WHERE cache_name = ? AND url IN (
                           SELECT url FROM cache_entries WHERE cache_name = ?
                           ORDER BY used_at DESC, url DESC LIMIT -1 OFFSET ?)""",
                    (cache_name, cache_name, policy.max_entries),
                )
                removed += cursor.rowcount
            self.conn.commit()
        if removed:
            logger.debug("Evicted %d entries from %s", removed, cache_name)


def _row_to_response(row: sqlite3.Row) -> httpx.Response:
    """Rebuild an httpx.Response from a stored row."""
    headers = [(k, v) for k, v in json.loads(row["headers"])]
    return httpx.Response(
        status_code=row["status_code"],
        headers=headers,
        content=bytes(row["body"]),
        extensions={"from_cache": True},
    )

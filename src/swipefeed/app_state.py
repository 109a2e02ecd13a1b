"""Durable flags that live outside the response caches."""

import asyncio
import json
import logging
import sqlite3
from typing import Any

logger = logging.getLogger(__name__)

INSTALLED_KEY = "installed"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class AppStateStore:
    """Advisory key/value flags, e.g. whether the app was installed.

    Every call opens its own connection. Read failures look like a missing
    key and write failures are only logged, so callers never see an error.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def get_flag(self, key: str) -> Any | None:
        """Return the stored value, or None when absent or unreadable."""
        try:
            return await asyncio.to_thread(self._get, key)
        except (sqlite3.Error, OSError, ValueError) as e:
            logger.warning("Failed to read app state '%s': %s", key, e)
            return None

    async def set_flag(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value; failures are logged and swallowed."""
        try:
            await asyncio.to_thread(self._set, key, value)
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.warning("Failed to store app state '%s': %s", key, e)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.executescript(SCHEMA_SQL)
        return conn

    def _get(self, key: str) -> Any | None:
        conn = self._open()
        try:
            row = conn.execute(
                "SELECT value FROM app_state WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return json.loads(row[0]) if row else None

    def _set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        conn = self._open()
        try:
            conn.execute(
                """INSERT INTO app_state (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (key, payload),
            )
            conn.commit()
        finally:
            conn.close()
